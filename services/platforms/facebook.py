"""
Facebook: OAuth2 connect with long-lived token upgrade and direct Page publisher
"""

import json
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
from utils.exceptions import NoManageablePages, PlatformError, ValidationError
from utils.http_client import json_or_empty
from utils.logging import get_logger

from .base import MediaKind, OAuth2ConnectStrategy, ProviderHttp, ProviderPublisher, classify_media

logger = get_logger(__name__)

AUTHORIZE_URL = "https://www.facebook.com/v22.0/dialog/oauth"
GRAPH_API_URL = "https://graph.facebook.com/v22.0"
PUBLIC_BASE = "https://www.facebook.com"


class FacebookConnectStrategy(OAuth2ConnectStrategy):
    """Code -> short-lived token -> long-lived token; requires a manageable Page"""

    provider = Provider.FACEBOOK

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
            "GET",
            f"{GRAPH_API_URL}/oauth/access_token",
            "code exchange",
            params={
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "redirect_uri": credentials.redirect_uri,
                "code": code,
            }
        )
        short_lived = json_or_empty(response).get("access_token")
        if not short_lived:
            raise PlatformError("Facebook did not return an access token", {"provider": self.provider.value})

        grant = await self._exchange_long_lived(short_lived, credentials)

        response = await self._request(
            "GET",
            f"{GRAPH_API_URL}/me",
            "profile lookup",
            params={"fields": "id,name,email,picture", "access_token": grant.access_token}
        )
        profile = json_or_empty(response)

        pages = await fetch_pages(self, grant.access_token)
        if not pages:
            raise NoManageablePages(
                "The Facebook account has no Page it can publish to",
                {"provider": self.provider.value}
            )

        picture = ((profile.get("picture") or {}).get("data") or {}).get("url")
        return str(profile["id"]), AccountFields(
            access_token=grant.access_token,
            expires_at=grant.expires_at,
            display_name=profile.get("name"),
            username=pages[0].get("name") or profile.get("name"),
            profile_image=picture,
        )

    async def _exchange_long_lived(self, token: str, credentials: ProviderCredentials) -> TokenGrant:
        response = await self._request(
            "GET",
            f"{GRAPH_API_URL}/oauth/access_token",
            "long-lived token exchange",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "fb_exchange_token": token,
            }
        )
        data = json_or_empty(response)
        if not data.get("access_token"):
            raise PlatformError("Facebook did not return a long-lived token", {"provider": self.provider.value})
        expires_in = data.get("expires_in")
        return TokenGrant(
            access_token=data["access_token"],
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None,
        )

    async def refresh_token(self, credentials: DecryptedCredentials) -> Optional[TokenGrant]:
        return await self._exchange_long_lived(credentials.access_token, self.credentials)


async def fetch_pages(client: ProviderHttp, user_token: str) -> List[Dict]:
    """Pages the user manages, each with its own page access token"""
    response = await client._request(
        "GET",
        f"{GRAPH_API_URL}/me/accounts",
        "page lookup",
        params={"fields": "id,name,access_token", "access_token": user_token}
    )
    return json_or_empty(response).get("data") or []


class FacebookPublisher(ProviderPublisher):
    """Publishes to the first Page the connected user manages"""

    provider = Provider.FACEBOOK

    async def _publish(
        self,
        content: str,
        media: List[PublishMedia],
        account: ConnectedAccount,
        credentials: DecryptedCredentials
    ) -> PublishResult:
        limit = self.config.social.facebook.max_media_count
        if len(media) > limit:
            raise ValidationError(f"Facebook posts hold at most {limit} media items", {"count": len(media)})

        pages = await fetch_pages(self, credentials.access_token)
        if not pages:
            raise NoManageablePages("The Facebook account no longer manages a Page", {"account_id": str(account.id)})
        page = pages[0]
        page_id, page_token = page["id"], page.get("access_token") or credentials.access_token

        kind = classify_media(media)
        if kind == MediaKind.TEXT_ONLY:
            if not content:
                raise ValidationError("A Facebook post needs text or media")
            post_id = await self._post_feed(page_id, page_token, {"message": content})
        elif kind == MediaKind.SINGLE_IMAGE:
            post_id = await self._post_photo(page_id, page_token, media[0], content)
        elif kind == MediaKind.SINGLE_VIDEO:
            post_id = await self._post_video(page_id, page_token, media[0], content)
        else:
            if any(not item.is_image for item in media):
                raise ValidationError("Facebook multi-item posts support images only")
            post_id = await self._post_album(page_id, page_token, media, content)

        logger.info("Facebook post published", account_id=str(account.id), page_id=page_id, post_id=post_id)
        return PublishResult.ok(f"{PUBLIC_BASE}/{post_id}", "Facebook post published")

    async def _post_feed(self, page_id: str, token: str, payload: Dict[str, str]) -> str:
        response = await self._request(
            "POST",
            f"{GRAPH_API_URL}/{page_id}/feed",
            "feed post",
            retry=False,
            params={"access_token": token},
            data=payload
        )
        return self._post_id(json_or_empty(response))

    async def _post_photo(self, page_id: str, token: str, item: PublishMedia, caption: str) -> str:
        payload = {"url": item.url}
        if caption:
            payload["caption"] = caption
        response = await self._request(
            "POST",
            f"{GRAPH_API_URL}/{page_id}/photos",
            "photo post",
            retry=False,
            params={"access_token": token},
            data=payload
        )
        return self._post_id(json_or_empty(response))

    async def _post_video(self, page_id: str, token: str, item: PublishMedia, description: str) -> str:
        payload = {"file_url": item.url}
        if description:
            payload["description"] = description
        response = await self._request(
            "POST",
            f"{GRAPH_API_URL}/{page_id}/videos",
            "video post",
            retry=False,
            params={"access_token": token},
            data=payload
        )
        return self._post_id(json_or_empty(response))

    async def _post_album(self, page_id: str, token: str, media: List[PublishMedia], message: str) -> str:
        photo_ids = []
        for item in media:
            response = await self._request(
                "POST",
                f"{GRAPH_API_URL}/{page_id}/photos",
                "unpublished photo upload",
                params={"access_token": token},
                data={"url": item.url, "published": "false"}
            )
            photo_ids.append(self._post_id(json_or_empty(response)))

        payload = {f"attached_media[{index}]": json.dumps({"media_fbid": photo_id}) for index, photo_id in enumerate(photo_ids)}
        if message:
            payload["message"] = message
        return await self._post_feed(page_id, token, payload)

    def _post_id(self, data: Dict) -> str:
        post_id = data.get("post_id") or data.get("id")
        if not post_id:
            raise PlatformError("Facebook did not return a post id", {"provider": self.provider.value})
        return str(post_id)
