"""
Twitter/X: OAuth 1.0a three-legged connect and chunked media upload publisher
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlencode

from models.database import ConnectedAccount, Provider
from schemas.publishing import (
    AccountFields,
    CallbackParams,
    ConnectStart,
    DecryptedCredentials,
    PublishMedia,
    PublishResult,
)
from utils.error_codes import ErrorCode
from utils.exceptions import (
    InvalidMediaData,
    InvalidOrExpiredRequestToken,
    PlatformError,
    ValidationError,
)
from utils.http_client import json_or_empty
from utils.logging import get_logger
from utils.oauth1 import OAuth1Signer, parse_form_response

from .base import ConnectStrategy, ProviderPublisher

logger = get_logger(__name__)

REQUEST_TOKEN_URL = "https://api.twitter.com/oauth/request_token"
AUTHORIZE_URL = "https://api.x.com/oauth/authorize"
ACCESS_TOKEN_URL = "https://api.x.com/oauth/access_token"
USERS_URL = "https://api.x.com/2/users"
UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TWEETS_URL = "https://api.twitter.com/2/tweets"
PUBLIC_BASE = "https://twitter.com"


def _full_size_avatar(url: Optional[str]) -> Optional[str]:
    return url.replace("_normal", "") if url else url


class TwitterConnectStrategy(ConnectStrategy):
    """Request token -> user authorization -> access token exchange"""

    provider = Provider.TWITTER

    def _signer(self) -> OAuth1Signer:
        credentials = self.credentials
        return OAuth1Signer(credentials.client_id, credentials.client_secret)

    async def begin_connect(self, user_id: str) -> ConnectStart:
        credentials = self.credentials
        signer = self._signer()
        await self.vault.purge_expired_pending(self.provider, user_id)

        headers = signer.authorization_header("POST", REQUEST_TOKEN_URL, callback_uri=credentials.redirect_uri)
        response = await self._request("POST", REQUEST_TOKEN_URL, "request token", headers=headers)
        data = parse_form_response(response.text)

        if data.get("oauth_callback_confirmed") != "true" or not data.get("oauth_token"):
            raise PlatformError("Twitter did not confirm the OAuth callback", {"provider": self.provider.value})

        await self.vault.create_pending(
            self.provider,
            user_id,
            data["oauth_token"],
            data.get("oauth_token_secret", ""),
            self.config.pending_request_ttl
        )
        return ConnectStart(
            provider=self.provider,
            authorization_url=f"{AUTHORIZE_URL}?{urlencode({'oauth_token': data['oauth_token']})}",
        )

    async def complete_connect(
        self,
        params: CallbackParams,
        user_id: str,
        state_cookie: Optional[str] = None
    ) -> ConnectedAccount:
        self._check_callback_error(params)
        if not params.oauth_token or not params.oauth_verifier:
            raise ValidationError("Missing oauth_token or oauth_verifier", {"provider": self.provider.value})
        signer = self._signer()

        pending = await self.vault.find_pending(self.provider, user_id, params.oauth_token)
        if pending is None or pending.expires_at is None or pending.expires_at <= datetime.now(timezone.utc):
            raise InvalidOrExpiredRequestToken("Request token is unknown or expired", {"provider": self.provider.value})

        request_secret = self.vault.decrypt(pending.token_secret) if pending.token_secret else ""
        headers = signer.authorization_header(
            "POST",
            ACCESS_TOKEN_URL,
            token=params.oauth_token,
            token_secret=request_secret,
            verifier=params.oauth_verifier
        )
        response = await self._request("POST", ACCESS_TOKEN_URL, "access token", headers=headers)
        tokens = parse_form_response(response.text)
        if not tokens.get("oauth_token") or not tokens.get("oauth_token_secret") or not tokens.get("user_id"):
            raise PlatformError("Twitter access token response was incomplete", {"provider": self.provider.value})

        profile = await self._fetch_profile(signer, tokens["user_id"], tokens["oauth_token"], tokens["oauth_token_secret"])
        metrics = profile.get("public_metrics") or {}

        await self.vault.delete_account(pending.id)
        account = await self.vault.upsert_account(
            self.provider,
            tokens["user_id"],
            user_id,
            AccountFields(
                access_token=tokens["oauth_token"],
                token_secret=tokens["oauth_token_secret"],
                display_name=profile.get("name") or tokens.get("screen_name"),
                username=profile.get("username") or tokens.get("screen_name"),
                profile_image=_full_size_avatar(profile.get("profile_image_url")),
                followers_count=metrics.get("followers_count"),
                posts_count=metrics.get("tweet_count"),
            )
        )
        logger.info("Account connected", provider=self.provider.value, account_id=str(account.id), username=account.username)
        return account

    async def _fetch_profile(self, signer: OAuth1Signer, twitter_user_id: str, token: str, token_secret: str) -> Dict:
        url = f"{USERS_URL}/{twitter_user_id}?user.fields=profile_image_url,name,username,public_metrics"
        headers = signer.authorization_header("GET", url, token=token, token_secret=token_secret)
        response = await self._request("GET", url, "profile lookup", headers=headers)
        return json_or_empty(response).get("data") or {}


class TwitterPublisher(ProviderPublisher):
    """
    Uploads each media item with INIT -> APPEND x N -> FINALIZE [-> STATUS ...],
    then creates one tweet carrying the text and every media id.
    """

    provider = Provider.TWITTER

    async def _publish(
        self,
        content: str,
        media: List[PublishMedia],
        account: ConnectedAccount,
        credentials: DecryptedCredentials
    ) -> PublishResult:
        self._validate(content, media)
        app = self.config.provider_credentials(self.provider)
        signer = OAuth1Signer(app.client_id, app.client_secret)
        token, token_secret = credentials.access_token, credentials.token_secret

        media_ids = []
        for item in media:
            media_ids.append(await self._upload(item, signer, token, token_secret))

        body: Dict = {"text": content}
        if media_ids:
            body["media"] = {"media_ids": media_ids}

        headers = signer.authorization_header("POST", TWEETS_URL, token=token, token_secret=token_secret)
        # Not retried: a timed-out create may already have posted
        response = await self._request("POST", TWEETS_URL, "create tweet", retry=False, headers=headers, json=body)
        tweet_id = (json_or_empty(response).get("data") or {}).get("id")
        if not tweet_id:
            raise PlatformError("Twitter did not return a tweet id", {"provider": self.provider.value})

        # i/web resolves a tweet without its author handle
        handle = account.username or "i/web"
        url = f"{PUBLIC_BASE}/{handle}/status/{tweet_id}"
        logger.info("Tweet published", account_id=str(account.id), tweet_id=tweet_id, media_count=len(media_ids))
        return PublishResult.ok(url, "Tweet published")

    def _validate(self, content: str, media: List[PublishMedia]) -> None:
        limits = self.config.social.twitter
        if not content and not media:
            raise ValidationError("A tweet needs text or media")
        if len(media) > limits.max_media_count:
            raise ValidationError(f"Twitter allows at most {limits.max_media_count} media items per tweet")
        if any(item.is_video for item in media) and len(media) > 1:
            raise ValidationError("A tweet with a video cannot carry other media")

    def _max_size(self, item: PublishMedia) -> int:
        limits = self.config.social.twitter
        if item.is_video:
            return limits.max_video_size
        if item.mime_type == "image/gif" and limits.max_gif_size:
            return limits.max_gif_size
        return limits.max_image_size

    @staticmethod
    def _category(item: PublishMedia) -> str:
        if item.is_video:
            return "tweet_video"
        if item.mime_type == "image/gif":
            return "tweet_gif"
        return "tweet_image"

    async def _fetch_media(self, item: PublishMedia) -> bytes:
        response = await self.http.get(item.url)
        if not response.is_success:
            raise InvalidMediaData(
                "Staged media could not be fetched",
                {"status_code": response.status_code}
            )
        return response.content

    async def _upload(self, item: PublishMedia, signer: OAuth1Signer, token: str, token_secret: Optional[str]) -> str:
        """Run the chunked upload state machine for one media item and return its media id"""
        data = await self._fetch_media(item)
        if not data:
            raise InvalidMediaData("Staged media is empty")
        if len(data) > self._max_size(item):
            raise ValidationError(
                "Media exceeds Twitter's size limit",
                {"size": len(data), "limit": self._max_size(item), "mime_type": item.mime_type}
            )

        # INIT
        init_form = {
            "command": "INIT",
            "total_bytes": str(len(data)),
            "media_type": item.mime_type,
            "media_category": self._category(item),
        }
        headers = signer.authorization_header("POST", UPLOAD_URL, token=token, token_secret=token_secret, form=init_form)
        response = await self._request("POST", UPLOAD_URL, "media INIT", headers=headers, data=init_form)
        media_id = json_or_empty(response).get("media_id_string")
        if not media_id:
            raise PlatformError("Twitter INIT did not return a media id", {"provider": self.provider.value})

        # APPEND, strictly sequential
        chunk_size = self.config.twitter_chunk_size
        for segment_index, offset in enumerate(range(0, len(data), chunk_size)):
            if segment_index:
                await self.sleep(self.config.twitter_chunk_delay)
            append_form = {"command": "APPEND", "media_id": media_id, "segment_index": str(segment_index)}
            headers = signer.authorization_header("POST", UPLOAD_URL, token=token, token_secret=token_secret)
            await self._request(
                "POST",
                UPLOAD_URL,
                f"media APPEND segment {segment_index}",
                headers=headers,
                data=append_form,
                files={"media": ("chunk", data[offset:offset + chunk_size], "application/octet-stream")}
            )

        # FINALIZE
        finalize_form = {"command": "FINALIZE", "media_id": media_id}
        headers = signer.authorization_header("POST", UPLOAD_URL, token=token, token_secret=token_secret, form=finalize_form)
        response = await self._request("POST", UPLOAD_URL, "media FINALIZE", headers=headers, data=finalize_form)

        processing_info = json_or_empty(response).get("processing_info")
        if processing_info:
            await self._await_processing(media_id, processing_info, signer, token, token_secret)

        logger.debug("Media uploaded", provider=self.provider.value, media_id=media_id, size=len(data))
        return media_id

    async def _await_processing(
        self,
        media_id: str,
        processing_info: Dict,
        signer: OAuth1Signer,
        token: str,
        token_secret: Optional[str]
    ) -> None:
        """Poll STATUS at the provider's interval until succeeded or failed, capped in total wait"""
        waited = 0.0
        info = processing_info
        while True:
            state = info.get("state")
            if state == "succeeded":
                return
            if state == "failed":
                error = info.get("error") or {}
                raise PlatformError(
                    f"Twitter media processing failed: {error.get('message') or error.get('name') or 'unknown error'}",
                    {"provider": self.provider.value, "media_id": media_id}
                )

            delay = float(info.get("check_after_secs") or 1)
            if waited + delay > self.config.twitter_max_processing_wait:
                raise PlatformError(
                    "Twitter media processing did not finish in time",
                    {"provider": self.provider.value, "media_id": media_id, "waited": waited},
                    ErrorCode.PROCESSING_TIMEOUT
                )
            await self.sleep(delay)
            waited += delay

            url = f"{UPLOAD_URL}?{urlencode({'command': 'STATUS', 'media_id': media_id})}"
            headers = signer.authorization_header("GET", url, token=token, token_secret=token_secret)
            response = await self._request("GET", url, "media STATUS", headers=headers)
            info = json_or_empty(response).get("processing_info")
            if not info:
                return
