"""
TikTok: OAuth2 (v2) connect with CSRF state and Content Posting API publisher
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
from utils.exceptions import AuthenticationError, PlatformError, ValidationError
from utils.http_client import json_or_empty
from utils.logging import get_logger

from .base import MediaKind, OAuth2ConnectStrategy, ProviderPublisher, classify_media

logger = get_logger(__name__)

AUTHORIZE_URL = "https://www.tiktok.com/v2/auth/authorize/"
API_URL = "https://open.tiktokapis.com/v2"
TOKEN_URL = f"{API_URL}/oauth/token/"
REVOKE_URL = f"{API_URL}/oauth/revoke/"
USER_INFO_URL = f"{API_URL}/user/info/"
VIDEO_INIT_URL = f"{API_URL}/post/publish/video/init/"
CONTENT_INIT_URL = f"{API_URL}/post/publish/content/init/"
PUBLIC_BASE = "https://www.tiktok.com"

# Token endpoint errors that mean the grant itself is dead
_DEAD_GRANT_ERRORS = {"invalid_grant", "access_token_invalid", "scope_not_authorized"}


def _raise_for_body_error(data: Dict, action: str) -> None:
    """TikTok reports some failures with HTTP 200 and an error in the body"""
    error = data.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        if code and code != "ok":
            details = {"provider": Provider.TIKTOK.value, "code": code, "log_id": error.get("log_id")}
            message = f"TIKTOK {action} failed: {error.get('message') or code}"
            if code in _DEAD_GRANT_ERRORS:
                raise AuthenticationError(message, details)
            raise PlatformError(message, details)
    elif isinstance(error, str) and error:
        details = {"provider": Provider.TIKTOK.value, "code": error}
        message = f"TIKTOK {action} failed: {data.get('error_description') or error}"
        if error in _DEAD_GRANT_ERRORS:
            raise AuthenticationError(message, details)
        raise PlatformError(message, details)


def _grant_from(data: Dict) -> TokenGrant:
    expires_in = data.get("expires_in")
    return TokenGrant(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None,
    )


class TikTokConnectStrategy(OAuth2ConnectStrategy):
    """Authorization code with exact-match CSRF state; tokens refresh with a refresh token"""

    provider = Provider.TIKTOK

    def authorization_url(self, credentials: ProviderCredentials, state: str) -> str:
        query = {
            "client_key": credentials.client_id,
            "scope": ",".join(credentials.scopes),
            "response_type": "code",
            "redirect_uri": credentials.redirect_uri,
            "state": state,
        }
        return f"{AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange_and_fetch(self, code: str, credentials: ProviderCredentials) -> Tuple[str, AccountFields]:
        response = await self._request(
            "POST",
            TOKEN_URL,
            "code exchange",
            data={
                "client_key": credentials.client_id,
                "client_secret": credentials.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": credentials.redirect_uri,
            }
        )
        data = json_or_empty(response)
        _raise_for_body_error(data, "code exchange")
        if not data.get("access_token"):
            raise PlatformError("TikTok did not return an access token", {"provider": self.provider.value})
        grant = _grant_from(data)

        response = await self._request(
            "GET",
            USER_INFO_URL,
            "profile lookup",
            params={"fields": "open_id,display_name,username,avatar_url"},
            headers={"Authorization": f"Bearer {grant.access_token}"}
        )
        body = json_or_empty(response)
        _raise_for_body_error(body, "profile lookup")
        user = (body.get("data") or {}).get("user") or {}

        open_id = user.get("open_id") or data.get("open_id")
        if not open_id:
            raise PlatformError("TikTok did not return an account id", {"provider": self.provider.value})
        return str(open_id), AccountFields(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            display_name=user.get("display_name"),
            username=user.get("username"),
            profile_image=user.get("avatar_url"),
        )

    async def refresh_token(self, credentials: DecryptedCredentials) -> Optional[TokenGrant]:
        if not credentials.refresh_token:
            raise AuthenticationError("TikTok account has no refresh token", {"provider": self.provider.value})
        app = self.credentials
        response = await self._request(
            "POST",
            TOKEN_URL,
            "token refresh",
            data={
                "client_key": app.client_id,
                "client_secret": app.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
            }
        )
        data = json_or_empty(response)
        _raise_for_body_error(data, "token refresh")
        if not data.get("access_token"):
            raise PlatformError("TikTok refresh did not return a token", {"provider": self.provider.value})
        return _grant_from(data)

    async def revoke(self, credentials: DecryptedCredentials) -> None:
        app = self.credentials
        response = await self._request(
            "POST",
            REVOKE_URL,
            "token revoke",
            data={"client_key": app.client_id, "client_secret": app.client_secret, "token": credentials.access_token}
        )
        _raise_for_body_error(json_or_empty(response), "token revoke")


class TikTokPublisher(ProviderPublisher):
    """
    Pull-from-URL posting: TikTok fetches the staged media itself.

    Single videos use the video init endpoint, image sets the photo content endpoint.
    """

    provider = Provider.TIKTOK

    async def _publish(
        self,
        content: str,
        media: List[PublishMedia],
        account: ConnectedAccount,
        credentials: DecryptedCredentials
    ) -> PublishResult:
        kind = classify_media(media)
        if kind == MediaKind.TEXT_ONLY:
            raise PlatformError("TikTok does not support text-only posts", {"provider": self.provider.value}, ErrorCode.UNSUPPORTED)

        limit = self.config.social.tiktok.max_media_count
        if len(media) > limit:
            raise ValidationError(f"TikTok photo posts hold at most {limit} images", {"count": len(media)})

        privacy_level = self.config.tiktok_privacy_level
        if kind == MediaKind.SINGLE_VIDEO:
            url, body = VIDEO_INIT_URL, {
                "post_info": {"title": content, "privacy_level": privacy_level},
                "source_info": {"source": "PULL_FROM_URL", "video_url": media[0].url},
            }
        else:
            if any(not item.is_image for item in media):
                raise ValidationError("TikTok posts carry one video or a set of images")
            url, body = CONTENT_INIT_URL, {
                "post_info": {"title": content[:90], "description": content, "privacy_level": privacy_level},
                "source_info": {
                    "source": "PULL_FROM_URL",
                    "photo_cover_index": 0,
                    "photo_images": [item.url for item in media],
                },
                "post_mode": "DIRECT_POST",
                "media_type": "PHOTO",
            }

        response = await self._request(
            "POST",
            url,
            "post init",
            retry=False,
            headers={"Authorization": f"Bearer {credentials.access_token}"},
            json=body
        )
        data = json_or_empty(response)
        _raise_for_body_error(data, "post init")
        publish_id = (data.get("data") or {}).get("publish_id")

        logger.info("TikTok post submitted", account_id=str(account.id), publish_id=publish_id, kind=kind.value)
        # Processing is asynchronous on TikTok's side; the profile is the stable link
        url = f"{PUBLIC_BASE}/@{account.username}" if account.username else None
        return PublishResult.ok(url, "TikTok post submitted")
