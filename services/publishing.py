"""
Publishing orchestrator: fans one post out to many connected accounts
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union
from uuid import UUID

from models.database import AccountStatus, ConnectedAccount, LinkStatus, Post, PostStatus, PostTargetLink
from schemas.publishing import MediaInput, PerAccountResult, PublishMedia, PublishResult, PublishTarget
from services.media_relay import MediaRelay
from services.platforms.connection_manager import OAuthConnectionManager
from services.platforms.registry import PlatformRegistry
from services.posts import PostStore
from services.vault import CredentialVault
from utils.error_codes import ErrorCode
from utils.exceptions import AuthenticationError, SocialFlowException, ValidationError
from utils.logging import bind_context, get_logger

logger = get_logger(__name__)


@dataclass
class _Attempt:
    target: PublishTarget
    account: Optional[ConnectedAccount] = None
    link: Optional[PostTargetLink] = None
    result: Optional[PublishResult] = None
    recorded: bool = False


class PublishingOrchestrator:
    """
    Publishes a post to each target account independently.

    Every attempted account gets exactly one terminal PostTargetLink; one account's
    failure never stops the others.
    """

    def __init__(
        self,
        registry: PlatformRegistry,
        vault: CredentialVault,
        store: PostStore,
        media_relay: Optional[MediaRelay] = None,
        connection_manager: Optional[OAuthConnectionManager] = None,
        max_concurrency: int = 4
    ):
        self.registry = registry
        self.vault = vault
        self.store = store
        self.media_relay = media_relay
        self.connection_manager = connection_manager
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def publish_to_accounts(
        self,
        post: Post,
        targets: Sequence[Union[PublishTarget, UUID]],
        media_inputs: Optional[List[MediaInput]] = None
    ) -> List[PerAccountResult]:
        targets = [t if isinstance(t, PublishTarget) else PublishTarget(account_id=t) for t in targets]
        if not targets:
            raise ValidationError("Select at least one account to publish to")

        media = await self._prepare_media(post, media_inputs)
        if not post.content and not media:
            raise ValidationError("A post needs text or media")

        attempts = [_Attempt(target=target) for target in targets]
        for attempt in attempts:
            try:
                await self._resolve(post, attempt)
            except SocialFlowException as e:
                attempt.result = PublishResult.fail(e.error_code, e.message)
            except Exception:
                logger.exception("Unexpected error preparing account", post_id=str(post.id), account_id=str(attempt.target.account_id))
                attempt.result = PublishResult.fail(ErrorCode.INTERNAL)

        runnable = [attempt for attempt in attempts if attempt.result is None]
        await asyncio.gather(*(self._run(post, media, attempt) for attempt in runnable))

        for attempt in attempts:
            await self._record(attempt)

        results = [self._to_result(attempt) for attempt in attempts]
        # Any PUBLISHED link from any run keeps the post PUBLISHED
        links = await self.store.list_links(post.id)
        status = PostStatus.PUBLISHED if any(link.status == LinkStatus.PUBLISHED for link in links) else PostStatus.FAILED
        await self.store.update_post_status(post.id, status)

        logger.info(
            "Post publish finished",
            post_id=str(post.id),
            status=status.value,
            succeeded=sum(1 for result in results if result.success),
            failed=sum(1 for result in results if not result.success)
        )
        return results

    async def _prepare_media(self, post: Post, media_inputs: Optional[List[MediaInput]]) -> List[PublishMedia]:
        """Stage raw media before any provider call, then read the post's media in order"""
        if media_inputs:
            if self.media_relay is None:
                raise ValidationError("Media upload is not configured")
            staged = [await self.media_relay.stage_input(item) for item in media_inputs]
            await self.store.replace_media(post.id, staged)
        return await self.store.list_media(post.id)

    async def _resolve(self, post: Post, attempt: _Attempt) -> None:
        """Look up the account, apply the re-publish guard and token checks, open the link"""
        account_id = attempt.target.account_id
        account = await self.vault.get_account(account_id)
        if (
            account is None
            or account.user_id != post.user_id
            or account.status == AccountStatus.PENDING
            or (attempt.target.provider is not None and attempt.target.provider != account.provider)
        ):
            attempt.result = PublishResult.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            return
        attempt.account = account

        published = await self.store.find_published_link(post.id, account.id)
        if published is not None:
            attempt.result = PublishResult.ok(published.post_url, "Already published")
            attempt.recorded = True
            return

        attempt.link = await self.store.open_link(post.id, account.id)

        if account.status == AccountStatus.REVOKED:
            attempt.result = PublishResult.fail(ErrorCode.AUTH_TOKEN_REVOKED)
        elif account.status == AccountStatus.EXPIRED:
            attempt.result = PublishResult.fail(ErrorCode.AUTH_TOKEN_EXPIRED)
        elif account.expires_at is not None and account.expires_at <= datetime.now(timezone.utc):
            await self._refresh_before_publish(attempt)

    async def _refresh_before_publish(self, attempt: _Attempt) -> None:
        account = attempt.account
        if self.connection_manager is None:
            await self.vault.mark_expired(account.id, "Access token expired")
            attempt.result = PublishResult.fail(ErrorCode.AUTH_TOKEN_EXPIRED)
            return
        try:
            attempt.account = await self.connection_manager.refresh_account(account)
        except AuthenticationError as e:
            attempt.result = PublishResult.fail(e.error_code)
        except SocialFlowException as e:
            attempt.result = PublishResult.fail(e.error_code, e.message)
        else:
            expires_at = attempt.account.expires_at
            if expires_at is not None and expires_at <= datetime.now(timezone.utc):
                await self.vault.mark_expired(account.id, "Access token expired")
                attempt.result = PublishResult.fail(ErrorCode.AUTH_TOKEN_EXPIRED)

    async def _run(self, post: Post, media: List[PublishMedia], attempt: _Attempt) -> None:
        account = attempt.account
        with bind_context(post_id=str(post.id), account_id=str(account.id), provider=account.provider.value):
            async with self._semaphore:
                try:
                    credentials = self.vault.decrypt_credentials(account)
                    publisher = self.registry.get_publisher(account.provider)
                    attempt.result = await publisher.publish(post.content, media, account, credentials)
                except SocialFlowException as e:
                    attempt.result = PublishResult.fail(e.error_code, e.message)
                except Exception:
                    logger.exception("Unexpected publish error")
                    attempt.result = PublishResult.fail(ErrorCode.INTERNAL)

            logger.info(
                "Account publish finished",
                success=attempt.result.success,
                error_code=attempt.result.error_code.value if attempt.result.error_code else None
            )

    async def _record(self, attempt: _Attempt) -> None:
        """Write the terminal link status and any account status change the outcome implies"""
        if attempt.recorded or attempt.link is None:
            return
        result = attempt.result
        account = attempt.account

        if result.error_code == ErrorCode.AUTH_TOKEN_EXPIRED:
            await self.vault.mark_expired(account.id, result.message)
        elif result.error_code == ErrorCode.AUTH_TOKEN_REVOKED:
            await self.vault.mark_revoked(account.id, result.message)

        await self.store.complete_link(
            attempt.link.id,
            LinkStatus.PUBLISHED if result.success else LinkStatus.FAILED,
            post_url=result.external_post_url if result.success else None,
            error=None if result.success else result.message
        )
        attempt.recorded = True

    @staticmethod
    def _to_result(attempt: _Attempt) -> PerAccountResult:
        result = attempt.result
        return PerAccountResult(
            account_id=attempt.target.account_id,
            provider=attempt.account.provider if attempt.account else attempt.target.provider,
            success=result.success,
            message=result.message,
            external_post_url=result.external_post_url,
            error_code=result.error_code,
        )
