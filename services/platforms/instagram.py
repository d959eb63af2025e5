"""
Instagram (Instagram Login for business): OAuth2 connect and async-container publisher
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

from models.database import ConnectedAccount, Provider
from schemas.publishing import (
    AccountFields,
    DecryptedCredentials,
    PublishMedia,
    PublishResult,
    TokenGrant,
)
from utils.config import ProviderCredentials
from utils.error_codes import ErrorCode
from utils.exceptions import PlatformError, ValidationError
from utils.http_client import json_or_empty
from utils.logging import get_logger

from .base import OAuth2ConnectStrategy, ProviderPublisher

logger = get_logger(__name__)

AUTHORIZE_URL = "https://www.instagram.com/oauth/authorize"
TOKEN_URL = "https://api.instagram.com/oauth/access_token"
GRAPH_URL = "https://graph.instagram.com"
GRAPH_API_URL = f"{GRAPH_URL}/v22.0"
PUBLIC_BASE = "https://instagram.com"

PUBLISHABLE_ACCOUNT_TYPES = {"BUSINESS", "MEDIA_CREATOR", "CREATOR"}


def _expiry(expires_in: Optional[int]) -> Optional[datetime]:
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None


class InstagramConnectStrategy(OAuth2ConnectStrategy):
    """Code -> short-lived token -> long-lived token -> profile"""

    provider = Provider.INSTAGRAM

    def authorization_url(self, credentials: ProviderCredentials, state: str) -> str:
        query = {
            "client_id": credentials.client_id,
            "redirect_uri": credentials.redirect_uri,
            "scope": ",".join(credentials.scopes),
            "response_type": "code",
            "state": state,
        }
        return f"{AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange_and_fetch(self, code: str, credentials: ProviderCredentials) -> Tuple[str, AccountFields]:
        response = await self._request(
            "POST",
            TOKEN_URL,
            "code exchange",
            data={
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": credentials.redirect_uri,
                "code": code,
            }
        )
        short_lived = json_or_empty(response).get("access_token")
        if not short_lived:
            raise PlatformError("Instagram did not return an access token", {"provider": self.provider.value})

        response = await self._request(
            "GET",
            f"{GRAPH_URL}/access_token",
            "long-lived token exchange",
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": credentials.client_secret,
                "access_token": short_lived,
            }
        )
        long_lived = json_or_empty(response)
        access_token = long_lived.get("access_token") or short_lived

        response = await self._request(
            "GET",
            f"{GRAPH_API_URL}/me",
            "profile lookup",
            params={
                "fields": "id,user_id,username,name,profile_picture_url,account_type,followers_count,media_count",
                "access_token": access_token,
            }
        )
        profile = json_or_empty(response)

        account_type = str(profile.get("account_type") or "").upper()
        if account_type not in PUBLISHABLE_ACCOUNT_TYPES:
            raise ValidationError(
                "Only Instagram business or creator accounts can publish",
                {"provider": self.provider.value, "account_type": account_type or None}
            )

        instagram_id = str(profile.get("user_id") or profile.get("id"))
        return instagram_id, AccountFields(
            access_token=access_token,
            expires_at=_expiry(long_lived.get("expires_in")),
            display_name=profile.get("name") or profile.get("username"),
            username=profile.get("username"),
            profile_image=profile.get("profile_picture_url"),
            followers_count=profile.get("followers_count"),
            posts_count=profile.get("media_count"),
        )

    async def refresh_token(self, credentials: DecryptedCredentials) -> Optional[TokenGrant]:
        response = await self._request(
            "GET",
            f"{GRAPH_URL}/refresh_access_token",
            "token refresh",
            params={"grant_type": "ig_refresh_token", "access_token": credentials.access_token}
        )
        data = json_or_empty(response)
        if not data.get("access_token"):
            raise PlatformError("Instagram refresh did not return a token", {"provider": self.provider.value})
        return TokenGrant(access_token=data["access_token"], expires_at=_expiry(data.get("expires_in")))


class InstagramPublisher(ProviderPublisher):
    """
    One container per media item, polled until FINISHED; several items are wrapped in a
    CAROUSEL container. The ready container is then published in one call.
    """

    provider = Provider.INSTAGRAM

    async def _publish(
        self,
        content: str,
        media: List[PublishMedia],
        account: ConnectedAccount,
        credentials: DecryptedCredentials
    ) -> PublishResult:
        limit = self.config.social.instagram.max_media_count
        if not media:
            raise ValidationError("Instagram posts need at least one image or video")
        if len(media) > limit:
            raise ValidationError(f"Instagram carousels hold at most {limit} items", {"count": len(media)})

        ig_user = account.provider_account_id
        token = credentials.access_token

        if len(media) == 1:
            container_id = await self._create_container(ig_user, token, media[0], caption=content)
            await self._wait_until_finished(container_id, token)
        else:
            children = []
            for item in media:
                child_id = await self._create_container(ig_user, token, item, carousel_item=True)
                await self._wait_until_finished(child_id, token)
                children.append(child_id)
            container_id = await self._create_carousel(ig_user, token, children, content)
            await self._wait_until_finished(container_id, token)

        response = await self._request(
            "POST",
            f"{GRAPH_API_URL}/{ig_user}/media_publish",
            "media publish",
            retry=False,
            params={"access_token": token},
            data={"creation_id": container_id}
        )
        media_id = json_or_empty(response).get("id")
        logger.info("Instagram media published", account_id=str(account.id), media_id=media_id, items=len(media))
        # The publish response has no permalink; link to the profile
        if account.username:
            return PublishResult.ok(f"{PUBLIC_BASE}/{account.username}", "Instagram post published")
        return PublishResult.ok(await self._permalink(media_id, token), "Instagram post published")

    async def _permalink(self, media_id: Optional[str], token: str) -> Optional[str]:
        """Look up the post's permalink; a failed lookup never fails an already published post"""
        if not media_id:
            return None
        try:
            response = await self._request(
                "GET",
                f"{GRAPH_API_URL}/{media_id}",
                "permalink lookup",
                params={"fields": "permalink", "access_token": token}
            )
        except PlatformError as e:
            logger.warning("Instagram permalink lookup failed", media_id=media_id, error=e.message)
            return None
        return json_or_empty(response).get("permalink")

    async def _create_container(
        self,
        ig_user: str,
        token: str,
        item: PublishMedia,
        caption: Optional[str] = None,
        carousel_item: bool = False
    ) -> str:
        payload: Dict[str, str] = {}
        if item.is_video:
            payload["media_type"] = "VIDEO" if carousel_item else "REELS"
            payload["video_url"] = item.url
            if item.thumbnail_url and not carousel_item:
                payload["cover_url"] = item.thumbnail_url
        elif item.is_image:
            payload["image_url"] = item.url
        else:
            raise ValidationError(f"Instagram cannot publish {item.mime_type}")

        if carousel_item:
            payload["is_carousel_item"] = "true"
        elif caption:
            payload["caption"] = caption

        response = await self._request(
            "POST",
            f"{GRAPH_API_URL}/{ig_user}/media",
            "container create",
            params={"access_token": token},
            data=payload
        )
        container_id = json_or_empty(response).get("id")
        if not container_id:
            raise PlatformError("Instagram did not return a container id", {"provider": self.provider.value})
        return str(container_id)

    async def _create_carousel(self, ig_user: str, token: str, children: List[str], caption: str) -> str:
        payload = {"media_type": "CAROUSEL", "children": ",".join(children)}
        if caption:
            payload["caption"] = caption
        response = await self._request(
            "POST",
            f"{GRAPH_API_URL}/{ig_user}/media",
            "carousel create",
            params={"access_token": token},
            data=payload
        )
        container_id = json_or_empty(response).get("id")
        if not container_id:
            raise PlatformError("Instagram did not return a carousel id", {"provider": self.provider.value})
        return str(container_id)

    async def _wait_until_finished(self, container_id: str, token: str) -> None:
        """Poll container status a bounded number of times"""
        attempts = self.config.instagram_poll_attempts
        for attempt in range(attempts):
            response = await self._request(
                "GET",
                f"{GRAPH_API_URL}/{container_id}",
                "container status",
                params={"fields": "status_code,status", "access_token": token}
            )
            data = json_or_empty(response)
            status_code = data.get("status_code")
            if status_code == "FINISHED":
                return
            if status_code in ("ERROR", "EXPIRED"):
                raise PlatformError(
                    f"Instagram container {status_code.lower()}: {data.get('status') or 'no detail'}",
                    {"provider": self.provider.value, "container_id": container_id}
                )
            if attempt < attempts - 1:
                await self.sleep(self.config.instagram_poll_interval)

        raise PlatformError(
            "Instagram media was not ready in time",
            {"provider": self.provider.value, "container_id": container_id, "attempts": attempts},
            ErrorCode.PROCESSING_TIMEOUT
        )
