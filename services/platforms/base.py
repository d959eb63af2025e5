"""
Base interfaces for provider connect strategies and publishers
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional, Tuple

import httpx

from models.database import ConnectedAccount, Provider
from schemas.publishing import (
    AccountFields,
    CallbackParams,
    ConnectStart,
    DecryptedCredentials,
    PublishMedia,
    PublishResult,
    TokenGrant,
)
from services.platforms.csrf import StateSigner
from services.vault import CredentialVault
from utils.config import Config, ProviderCredentials
from utils.error_codes import ErrorCode
from utils.exceptions import SocialFlowException, UnsupportedProvider, ValidationError
from utils.http_client import Sleep, raise_for_provider_status, send_with_retry
from utils.logging import get_logger

logger = get_logger(__name__)


class MediaKind(str, Enum):
    TEXT_ONLY = "text_only"
    SINGLE_IMAGE = "single_image"
    CAROUSEL = "carousel"
    SINGLE_VIDEO = "single_video"


def classify_media(media: List[PublishMedia]) -> MediaKind:
    if not media:
        return MediaKind.TEXT_ONLY
    if len(media) > 1:
        return MediaKind.CAROUSEL
    return MediaKind.SINGLE_VIDEO if media[0].is_video else MediaKind.SINGLE_IMAGE


class ProviderHttp:
    """Provider HTTP calls with bounded per-step retries and error mapping"""

    provider: Provider

    def __init__(self, config: Config, http_client: httpx.AsyncClient, sleep: Sleep = asyncio.sleep):
        self.config = config
        self.http = http_client
        self.sleep = sleep

    async def _request(self, method: str, url: str, action: str, *, retry: bool = True, **kwargs: Any) -> httpx.Response:
        """
        Send one provider call and raise the mapped error for non-2xx responses.

        Args:
            action: human-readable step name used in error messages
            retry: retry timeouts and 5xx; disable for calls that must not run twice
        """
        logger.debug("Provider call", provider=self.provider.value, action=action, method=method)
        response = await send_with_retry(
            self.http,
            method,
            url,
            retries=self.config.http_max_retries if retry else 0,
            backoff=self.config.http_retry_backoff,
            sleep=self.sleep,
            **kwargs
        )
        raise_for_provider_status(response, self.provider.value, action)
        return response


class ConnectStrategy(ProviderHttp, ABC):
    """One provider's OAuth handshake: begin, complete, refresh and revoke"""

    def __init__(
        self,
        config: Config,
        http_client: httpx.AsyncClient,
        vault: CredentialVault,
        state_signer: StateSigner,
        sleep: Sleep = asyncio.sleep
    ):
        super().__init__(config, http_client, sleep)
        self.vault = vault
        self.state_signer = state_signer

    @property
    def credentials(self) -> ProviderCredentials:
        return self.config.provider_credentials(self.provider)

    @abstractmethod
    async def begin_connect(self, user_id: str) -> ConnectStart:
        """Start the handshake and return the URL to send the user to"""

    @abstractmethod
    async def complete_connect(
        self,
        params: CallbackParams,
        user_id: str,
        state_cookie: Optional[str] = None
    ) -> ConnectedAccount:
        """Finish the handshake and persist an ACTIVE account"""

    async def refresh_token(self, credentials: DecryptedCredentials) -> Optional[TokenGrant]:
        """Return fresh tokens, or None when the provider's tokens do not expire"""
        return None

    async def revoke(self, credentials: DecryptedCredentials) -> None:
        """Revoke provider-side authorization where the provider supports it"""
        return None

    def _check_callback_error(self, params: CallbackParams) -> None:
        if params.error or params.denied:
            raise ValidationError(
                f"{self.provider.value} authorization was not granted",
                {"provider": self.provider.value, "error": params.error or "denied", "description": params.error_description}
            )


class OAuth2ConnectStrategy(ConnectStrategy):
    """Authorization-code flow with CSRF state; subclasses supply the provider endpoints"""

    async def begin_connect(self, user_id: str) -> ConnectStart:
        credentials = self.credentials
        state, cookie = self.state_signer.issue(user_id, self.provider.value)
        return ConnectStart(
            provider=self.provider,
            authorization_url=self.authorization_url(credentials, state),
            csrf_state=state,
            state_cookie=cookie,
        )

    async def complete_connect(
        self,
        params: CallbackParams,
        user_id: str,
        state_cookie: Optional[str] = None
    ) -> ConnectedAccount:
        self._check_callback_error(params)
        credentials = self.credentials
        self.state_signer.verify(params.state, state_cookie, user_id, self.provider.value)
        if not params.code:
            raise ValidationError("Missing authorization code", {"provider": self.provider.value})

        provider_account_id, fields = await self.exchange_and_fetch(params.code, credentials)
        account = await self.vault.upsert_account(self.provider, provider_account_id, user_id, fields)
        logger.info(
            "Account connected",
            provider=self.provider.value,
            account_id=str(account.id),
            username=account.username
        )
        return account

    @abstractmethod
    def authorization_url(self, credentials: ProviderCredentials, state: str) -> str:
        """Provider authorization URL carrying client id, redirect, scopes and state"""

    @abstractmethod
    async def exchange_and_fetch(self, code: str, credentials: ProviderCredentials) -> Tuple[str, AccountFields]:
        """Exchange the code and fetch the profile; return (provider account id, fields)"""


class ProviderPublisher(ProviderHttp, ABC):
    """
    Publishes one post to one account.

    `publish` never raises for expected provider failures; they come back as
    `PublishResult(success=False)` carrying an ErrorCode.
    """

    async def publish(
        self,
        content: str,
        media: List[PublishMedia],
        account: ConnectedAccount,
        credentials: DecryptedCredentials
    ) -> PublishResult:
        try:
            return await self._publish(content, media, account, credentials)
        except SocialFlowException as e:
            logger.warning(
                "Publish failed",
                provider=self.provider.value,
                account_id=str(account.id),
                error_code=e.error_code.value,
                error=e.message
            )
            return PublishResult.fail(e.error_code, e.message)
        except httpx.HTTPError as e:
            logger.warning("Publish failed on transport", provider=self.provider.value, account_id=str(account.id), error=type(e).__name__)
            return PublishResult.fail(ErrorCode.TRANSIENT, f"{self.provider.value} request failed: {type(e).__name__}")

    @abstractmethod
    async def _publish(
        self,
        content: str,
        media: List[PublishMedia],
        account: ConnectedAccount,
        credentials: DecryptedCredentials
    ) -> PublishResult:
        """Provider protocol; may raise SocialFlowException subclasses"""


class UnsupportedPublisher:
    """Stand-in for a provider with no publisher; always reports itself"""

    def __init__(self, provider_name: str):
        self.provider_name = provider_name

    async def publish(self, content, media, account, credentials) -> PublishResult:
        return PublishResult.fail(
            ErrorCode.UNSUPPORTED,
            f"Publishing to {self.provider_name} is not supported"
        )


def ensure_provider(value: Any) -> Provider:
    """Parse a provider name (any case) into the Provider enum"""
    if isinstance(value, Provider):
        return value
    try:
        return Provider(str(value).upper())
    except ValueError:
        raise UnsupportedProvider(f"Unsupported provider: {value}", {"provider": str(value)})
