"""
Unit tests for OAuth connect flows across all providers
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import form_body
from models.database import AccountStatus, Provider
from schemas.publishing import CallbackParams
from services.platforms import facebook, instagram, tiktok, twitter
from services.platforms.connection_manager import OAuthConnectionManager
from services.platforms.registry import PlatformRegistry
from utils.exceptions import (
    AccountNotFound,
    AuthenticationError,
    ConfigurationError,
    InvalidOrExpiredRequestToken,
    InvalidState,
    NoManageablePages,
    PlatformError,
    UnsupportedProvider,
    ValidationError,
)


@pytest.fixture
def manager(registry, vault, test_config):
    return OAuthConnectionManager(registry, vault, test_config)


def facebook_token(request: httpx.Request) -> httpx.Response:
    if request.url.params.get("grant_type") == "fb_exchange_token":
        return httpx.Response(200, json={"access_token": "fb-long", "token_type": "bearer", "expires_in": 5184000})
    return httpx.Response(200, json={"access_token": "fb-short", "token_type": "bearer"})


def stub_facebook(stub, pages=None):
    stub.add("GET", f"{facebook.GRAPH_API_URL}/oauth/access_token", facebook_token)
    stub.add("GET", f"{facebook.GRAPH_API_URL}/me", httpx.Response(200, json={
        "id": "fb-user-1",
        "name": "Sam Rivera",
        "picture": {"data": {"url": "https://graph.facebook.com/avatar.jpg"}},
    }))
    stub.add("GET", f"{facebook.GRAPH_API_URL}/me/accounts", httpx.Response(200, json={
        "data": [{"id": "page-1", "name": "SocialFlow Page", "access_token": "page-token"}] if pages is None else pages
    }))


def stub_instagram(stub, account_type="BUSINESS"):
    stub.add("POST", instagram.TOKEN_URL, httpx.Response(200, json={"access_token": "ig-short", "user_id": 17841}))
    stub.add("GET", f"{instagram.GRAPH_URL}/access_token", httpx.Response(200, json={
        "access_token": "ig-long", "token_type": "bearer", "expires_in": 5184000
    }))
    stub.add("GET", f"{instagram.GRAPH_API_URL}/me", httpx.Response(200, json={
        "id": "17841",
        "user_id": "17841",
        "username": "socialflow",
        "name": "SocialFlow",
        "account_type": account_type,
        "profile_picture_url": "https://cdn.instagram.test/avatar.jpg",
        "followers_count": 1200,
        "media_count": 87,
    }))


def stub_tiktok(stub):
    stub.add("POST", tiktok.TOKEN_URL, httpx.Response(200, json={
        "access_token": "tt-access",
        "refresh_token": "tt-refresh",
        "expires_in": 86400,
        "open_id": "open-1",
        "scope": "user.info.basic,video.publish",
    }))
    stub.add("GET", tiktok.USER_INFO_URL, httpx.Response(200, json={
        "data": {"user": {
            "open_id": "open-1",
            "display_name": "SocialFlow",
            "username": "socialflow",
            "avatar_url": "https://p16.tiktokcdn.test/avatar.jpg",
        }},
        "error": {"code": "ok", "message": "", "log_id": "log-1"},
    }))


OAUTH2_STUBS = {
    Provider.FACEBOOK: stub_facebook,
    Provider.INSTAGRAM: stub_instagram,
    Provider.TIKTOK: stub_tiktok,
}


class TestOAuth2Connect:
    """Test authorization-code flows with CSRF state"""

    @pytest.mark.parametrize("provider", list(OAUTH2_STUBS))
    async def test_correct_callback_yields_one_active_account(self, provider, manager, provider_stub, vault):
        """
        Business Critical: a valid handshake produces exactly one ACTIVE account
        """
        OAUTH2_STUBS[provider](provider_stub)
        start = await manager.begin_connect(provider, "user-1")

        account = await manager.complete_connect(
            provider,
            CallbackParams(code="auth-code", state=start.csrf_state),
            "user-1",
            start.state_cookie
        )
        # Replaying the same handshake updates the same row
        start_again = await manager.begin_connect(provider, "user-1")
        again = await manager.complete_connect(
            provider,
            CallbackParams(code="auth-code-2", state=start_again.csrf_state),
            "user-1",
            start_again.state_cookie
        )

        accounts = await vault.list_accounts("user-1")
        assert [a.id for a in accounts] == [account.id]
        assert again.id == account.id
        assert account.status == AccountStatus.ACTIVE
        assert account.username in ("socialflow", "SocialFlow Page")

    @pytest.mark.parametrize("provider", list(OAUTH2_STUBS))
    async def test_tampered_state_fails_without_account(self, provider, manager, provider_stub, vault):
        OAUTH2_STUBS[provider](provider_stub)
        start = await manager.begin_connect(provider, "user-1")

        with pytest.raises(InvalidState):
            await manager.complete_connect(
                provider,
                CallbackParams(code="auth-code", state=start.csrf_state + "x"),
                "user-1",
                start.state_cookie
            )

        assert provider_stub.requests == []
        assert await vault.list_accounts("user-1") == []

    async def test_state_issued_to_other_user_is_rejected(self, manager, provider_stub, vault):
        stub_tiktok(provider_stub)
        foreign = await manager.begin_connect("tiktok", "user-2")

        with pytest.raises(InvalidState):
            await manager.complete_connect(
                "tiktok",
                CallbackParams(code="auth-code", state=foreign.csrf_state),
                "user-1",
                foreign.state_cookie
            )

    async def test_missing_state_cookie_is_rejected(self, manager, provider_stub):
        stub_tiktok(provider_stub)
        start = await manager.begin_connect("tiktok", "user-1")

        with pytest.raises(InvalidState):
            await manager.complete_connect("tiktok", CallbackParams(code="auth-code", state=start.csrf_state), "user-1")

    async def test_authorization_urls_carry_client_and_scopes(self, manager):
        start = await manager.begin_connect("tiktok", "user-1")

        query = parse_qs(urlparse(start.authorization_url).query)
        assert start.authorization_url.startswith(tiktok.AUTHORIZE_URL)
        assert query["client_key"] == ["tt-client-key"]
        assert query["scope"] == ["user.info.basic,video.publish"]
        assert query["state"] == [start.csrf_state]

    async def test_facebook_upgrades_to_long_lived_token(self, manager, provider_stub, vault):
        stub_facebook(provider_stub)
        start = await manager.begin_connect("facebook", "user-1")

        account = await manager.complete_connect(
            "facebook", CallbackParams(code="auth-code", state=start.csrf_state), "user-1", start.state_cookie
        )

        exchanges = provider_stub.calls("GET", f"{facebook.GRAPH_API_URL}/oauth/access_token")
        assert [r.url.params.get("grant_type") for r in exchanges] == [None, "fb_exchange_token"]
        assert exchanges[1].url.params["fb_exchange_token"] == "fb-short"
        assert vault.decrypt(account.access_token) == "fb-long"
        assert account.expires_at > datetime.now(timezone.utc) + timedelta(days=50)
        assert account.profile_image == "https://graph.facebook.com/avatar.jpg"

    async def test_facebook_without_pages_fails(self, manager, provider_stub, vault):
        """
        Business Critical: zero manageable pages is a hard failure, not a partial success
        """
        stub_facebook(provider_stub, pages=[])
        start = await manager.begin_connect("facebook", "user-1")

        with pytest.raises(NoManageablePages):
            await manager.complete_connect(
                "facebook", CallbackParams(code="auth-code", state=start.csrf_state), "user-1", start.state_cookie
            )

        assert await vault.list_accounts("user-1") == []

    async def test_instagram_personal_account_is_rejected(self, manager, provider_stub, vault):
        stub_instagram(provider_stub, account_type="PERSONAL")
        start = await manager.begin_connect("instagram", "user-1")

        with pytest.raises(ValidationError, match="business or creator"):
            await manager.complete_connect(
                "instagram", CallbackParams(code="auth-code", state=start.csrf_state), "user-1", start.state_cookie
            )

        assert await vault.list_accounts("user-1") == []

    async def test_instagram_stores_long_lived_token_and_counters(self, manager, provider_stub, vault):
        stub_instagram(provider_stub)
        start = await manager.begin_connect("instagram", "user-1")

        account = await manager.complete_connect(
            "instagram", CallbackParams(code="auth-code", state=start.csrf_state), "user-1", start.state_cookie
        )

        assert account.provider_account_id == "17841"
        assert vault.decrypt(account.access_token) == "ig-long"
        assert account.followers_count == 1200
        assert account.posts_count == 87

    async def test_denied_authorization_is_reported(self, manager):
        start = await manager.begin_connect("instagram", "user-1")

        with pytest.raises(ValidationError, match="not granted"):
            await manager.complete_connect(
                "instagram",
                CallbackParams(error="access_denied", state=start.csrf_state),
                "user-1",
                start.state_cookie
            )


class TestTwitterConnect:
    """Test the OAuth 1.0a three-legged flow"""

    def stub_request_token(self, stub, confirmed="true"):
        stub.add("POST", twitter.REQUEST_TOKEN_URL, httpx.Response(
            200, text=f"oauth_token=req-token&oauth_token_secret=req-secret&oauth_callback_confirmed={confirmed}"
        ))

    def stub_access_token(self, stub):
        stub.add("POST", twitter.ACCESS_TOKEN_URL, httpx.Response(
            200, text="oauth_token=user-token&oauth_token_secret=user-secret&user_id=42&screen_name=socialflow"
        ))
        stub.add("GET", f"{twitter.USERS_URL}/42", httpx.Response(200, json={"data": {
            "id": "42",
            "name": "SocialFlow",
            "username": "socialflow",
            "profile_image_url": "https://pbs.twimg.com/profile_images/1/avatar_normal.jpg",
            "public_metrics": {"followers_count": 310, "tweet_count": 1024},
        }}))

    async def test_begin_persists_pending_row_and_returns_authorize_url(self, manager, provider_stub, vault):
        self.stub_request_token(provider_stub)

        start = await manager.begin_connect("twitter", "user-1")

        assert start.authorization_url == f"{twitter.AUTHORIZE_URL}?oauth_token=req-token"
        assert start.csrf_state is None
        pending = await vault.find_pending(Provider.TWITTER, "user-1", "req-token")
        assert pending.status == AccountStatus.PENDING
        assert vault.decrypt(pending.token_secret) == "req-secret"
        assert pending.expires_at <= datetime.now(timezone.utc) + timedelta(seconds=600)
        assert provider_stub.requests[0].headers["Authorization"].startswith("OAuth ")

    async def test_complete_promotes_to_single_active_account(self, manager, provider_stub, vault):
        self.stub_request_token(provider_stub)
        self.stub_access_token(provider_stub)
        await manager.begin_connect("twitter", "user-1")

        account = await manager.complete_connect(
            "twitter", CallbackParams(oauth_token="req-token", oauth_verifier="verifier-1"), "user-1"
        )

        assert account.status == AccountStatus.ACTIVE
        assert account.provider_account_id == "42"
        assert account.username == "socialflow"
        assert account.profile_image == "https://pbs.twimg.com/profile_images/1/avatar.jpg"
        assert account.followers_count == 310
        credentials = vault.decrypt_credentials(account)
        assert (credentials.access_token, credentials.token_secret) == ("user-token", "user-secret")
        assert await vault.find_pending(Provider.TWITTER, "user-1", "req-token") is None
        assert [a.id for a in await vault.list_accounts("user-1")] == [account.id]

        access_call = provider_stub.calls("POST", twitter.ACCESS_TOKEN_URL)[0]
        assert "oauth_verifier" in access_call.headers["Authorization"]

    async def test_expired_request_token_leaves_pending_row(self, manager, provider_stub, vault):
        """
        Business Critical: an expired handshake never creates or activates an account
        """
        self.stub_access_token(provider_stub)
        await vault.create_pending(Provider.TWITTER, "user-1", "req-token", "req-secret", ttl_seconds=-5)

        with pytest.raises(InvalidOrExpiredRequestToken):
            await manager.complete_connect(
                "twitter", CallbackParams(oauth_token="req-token", oauth_verifier="verifier-1"), "user-1"
            )

        assert provider_stub.requests == []
        assert await vault.find_pending(Provider.TWITTER, "user-1", "req-token") is not None
        assert await vault.list_accounts("user-1") == []

    async def test_mismatched_request_token_is_rejected(self, manager, provider_stub, vault):
        self.stub_request_token(provider_stub)
        self.stub_access_token(provider_stub)
        await manager.begin_connect("twitter", "user-1")

        with pytest.raises(InvalidOrExpiredRequestToken):
            await manager.complete_connect(
                "twitter", CallbackParams(oauth_token="forged-token", oauth_verifier="verifier-1"), "user-1"
            )

        assert provider_stub.calls("POST", twitter.ACCESS_TOKEN_URL) == []
        assert await vault.find_pending(Provider.TWITTER, "user-1", "req-token") is not None

    async def test_request_token_of_other_user_is_rejected(self, manager, provider_stub):
        self.stub_request_token(provider_stub)
        await manager.begin_connect("twitter", "user-2")

        with pytest.raises(InvalidOrExpiredRequestToken):
            await manager.complete_connect(
                "twitter", CallbackParams(oauth_token="req-token", oauth_verifier="verifier-1"), "user-1"
            )

    async def test_unconfirmed_callback_fails(self, manager, provider_stub):
        self.stub_request_token(provider_stub, confirmed="false")

        with pytest.raises(PlatformError, match="confirm"):
            await manager.begin_connect("twitter", "user-1")


class TestConnectPolicy:
    """Test configuration and provider validation"""

    async def test_missing_provider_configuration_is_reported(self, test_config, http_client, vault, state_signer):
        config = test_config.model_copy(update={"twitter_api_secret": None})
        manager = OAuthConnectionManager(PlatformRegistry(config, http_client, vault, state_signer), vault, config)

        with pytest.raises(ConfigurationError, match="TWITTER_API_SECRET"):
            await manager.begin_connect("twitter", "user-1")

    async def test_unknown_provider_is_unsupported(self, manager):
        with pytest.raises(UnsupportedProvider):
            await manager.begin_connect("myspace", "user-1")


class TestTokenLifecycle:
    """Test refresh and disconnect"""

    async def test_instagram_refresh_stores_new_token(self, manager, provider_stub, vault, make_account):
        account = await make_account(Provider.INSTAGRAM, expires_at=datetime.now(timezone.utc) + timedelta(days=2))
        provider_stub.add("GET", f"{instagram.GRAPH_URL}/refresh_access_token", httpx.Response(200, json={
            "access_token": "ig-refreshed", "token_type": "bearer", "expires_in": 5184000
        }))

        refreshed = await manager.refresh_account(account)

        assert vault.decrypt(refreshed.access_token) == "ig-refreshed"
        assert refreshed.expires_at > datetime.now(timezone.utc) + timedelta(days=50)
        call = provider_stub.requests[0]
        assert call.url.params["grant_type"] == "ig_refresh_token"

    async def test_tiktok_refresh_uses_refresh_token(self, manager, provider_stub, vault, make_account):
        account = await make_account(Provider.TIKTOK, refresh_token="tt-refresh")
        provider_stub.add("POST", tiktok.TOKEN_URL, httpx.Response(200, json={
            "access_token": "tt-access-2", "refresh_token": "tt-refresh-2", "expires_in": 86400, "open_id": "open-1"
        }))

        refreshed = await manager.refresh_account(account)

        body = form_body(provider_stub.requests[0])
        assert body["grant_type"] == "refresh_token"
        assert body["refresh_token"] == "tt-refresh"
        credentials = vault.decrypt_credentials(refreshed)
        assert (credentials.access_token, credentials.refresh_token) == ("tt-access-2", "tt-refresh-2")

    async def test_failed_refresh_marks_account_expired(self, manager, provider_stub, vault, make_account):
        account = await make_account(Provider.TIKTOK, refresh_token="dead-refresh")
        provider_stub.add("POST", tiktok.TOKEN_URL, httpx.Response(400, json={
            "error": "invalid_grant", "error_description": "Refresh token is invalid or expired."
        }))

        with pytest.raises(AuthenticationError):
            await manager.refresh_account(account)

        assert (await vault.get_account(account.id)).status == AccountStatus.EXPIRED

    async def test_twitter_tokens_do_not_refresh(self, manager, provider_stub, make_account):
        account = await make_account(Provider.TWITTER)

        assert await manager.refresh_account(account) is account
        assert provider_stub.requests == []

    async def test_refresh_sweep_counts_outcomes(self, manager, provider_stub, vault, make_account):
        now = datetime.now(timezone.utc)
        healthy = await make_account(Provider.INSTAGRAM, username="healthy", access_token="good", expires_at=now + timedelta(days=2))
        broken = await make_account(Provider.INSTAGRAM, username="broken", access_token="bad", expires_at=now + timedelta(days=3))
        await make_account(Provider.INSTAGRAM, username="distant", access_token="later", expires_at=now + timedelta(days=40))

        def refresh(request):
            if request.url.params["access_token"] == "good":
                return httpx.Response(200, json={"access_token": "good-2", "expires_in": 5184000})
            return httpx.Response(400, json={"error": {"message": "Error validating access token", "code": 190}})

        provider_stub.add("GET", f"{instagram.GRAPH_URL}/refresh_access_token", refresh)

        summary = await manager.refresh_expiring_tokens(now)

        assert summary == {"checked": 2, "refreshed": 1, "expired": 1, "failed": 0}
        assert vault.decrypt((await vault.get_account(healthy.id)).access_token) == "good-2"
        assert (await vault.get_account(broken.id)).status == AccountStatus.EXPIRED

    async def test_disconnect_revokes_tiktok_and_deletes(self, manager, provider_stub, vault, make_account):
        account = await make_account(Provider.TIKTOK)
        provider_stub.add("POST", tiktok.REVOKE_URL, httpx.Response(200, json={}))

        assert await manager.disconnect(account.id, "user-1")

        assert len(provider_stub.calls("POST", tiktok.REVOKE_URL)) == 1
        assert await vault.get_account(account.id) is None

    async def test_disconnect_deletes_even_when_revoke_fails(self, manager, provider_stub, vault, make_account):
        account = await make_account(Provider.TIKTOK)
        provider_stub.add("POST", tiktok.REVOKE_URL, httpx.Response(503))

        assert await manager.disconnect(account.id, "user-1")

        assert await vault.get_account(account.id) is None

    async def test_disconnect_requires_ownership(self, manager, make_account):
        account = await make_account(Provider.FACEBOOK, user_id="user-1")

        with pytest.raises(AccountNotFound):
            await manager.disconnect(account.id, "user-2")
