"""
Pytest configuration and shared fixtures for SocialFlow backend tests
"""

import re
from typing import Callable, List, Optional, Union

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from models.database import AccountStatus, ConnectedAccount, Provider
from schemas.publishing import AccountFields
from services.platforms.csrf import StateSigner
from services.platforms.registry import PlatformRegistry
from services.posts import PostStore
from services.vault import CredentialVault
from utils.config import Config
from utils.crypto import TokenCipher
from utils.database import build_session_factory

Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class RecordingSleep:
    """Async sleep stand-in that returns immediately and remembers every delay"""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ProviderStub:
    """
    Simulated provider APIs on httpx.MockTransport.

    Routes match on method and URL without query string. When a route has several
    responders they are used in order and the last one repeats.
    """

    def __init__(self):
        self.routes: List[list] = []
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, *responders: Responder) -> "ProviderStub":
        self.routes.append([method, url, list(responders)])
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = _base_url(request)
        for method, route_url, responders in self.routes:
            if request.method == method and url == route_url:
                responder = responders.pop(0) if len(responders) > 1 else responders[0]
                return responder(request) if callable(responder) else responder
        return httpx.Response(404, json={"error": {"message": f"no route for {request.method} {url}"}})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and _base_url(r) == url]


def _base_url(request: httpx.Request) -> str:
    return str(request.url).split("?", 1)[0]


def form_body(request: httpx.Request) -> dict:
    return dict(httpx.QueryParams(request.content.decode()))


def upload_command(request: httpx.Request) -> Optional[str]:
    """Chunked-upload command carried by a form, multipart body or query string"""
    for command in (b"APPEND", b"FINALIZE", b"INIT"):
        if command in request.content:
            return command.decode()
    return request.url.params.get("command")


def segment_index(request: httpx.Request) -> int:
    match = re.search(rb'name="segment_index"\r\n\r\n(\d+)', request.content)
    return int(match.group(1))


@pytest.fixture
def test_config():
    """Configuration with fake credentials for every provider"""
    return Config(
        _env_file=None,
        environment="test",
        log_level="DEBUG",
        public_base_url="https://app.socialflow.test",
        database_url="sqlite+aiosqlite://",
        encryption_key="test-encryption-key-32-chars-long-123",
        state_secret="test-state-secret-32-chars-long-456",
        auth_jwt_secret="test-jwt-secret-32-chars-long-789",
        facebook_app_id="fb-app-id",
        facebook_app_secret="fb-app-secret",
        facebook_redirect_uri="https://app.socialflow.test/callback/facebook",
        instagram_app_id="ig-app-id",
        instagram_app_secret="ig-app-secret",
        instagram_redirect_uri="https://app.socialflow.test/callback/instagram",
        twitter_api_key="tw-api-key",
        twitter_api_secret="tw-api-secret",
        twitter_redirect_uri="https://app.socialflow.test/callback/twitter",
        tiktok_client_key="tt-client-key",
        tiktok_client_secret="tt-client-secret",
        tiktok_redirect_uri="https://app.socialflow.test/callback/tiktok",
        http_max_retries=2,
        http_retry_backoff=0.5,
    )


@pytest.fixture
async def engine():
    """In-memory SQLite shared across sessions of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def vault(test_config, session_factory):
    return CredentialVault(TokenCipher(test_config.encryption_key), session_factory)


@pytest.fixture
def post_store(session_factory):
    return PostStore(session_factory)


@pytest.fixture
def state_signer(test_config):
    return StateSigner(test_config.state_signing_secret, test_config.csrf_state_ttl)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def provider_stub():
    return ProviderStub()


@pytest.fixture
async def http_client(provider_stub):
    async with provider_stub.client() as client:
        yield client


@pytest.fixture
def registry(test_config, http_client, vault, state_signer, recording_sleep):
    return PlatformRegistry(test_config, http_client, vault, state_signer, sleep=recording_sleep)


@pytest.fixture
def make_account(vault):
    """Factory persisting a connected account with plaintext test tokens"""

    async def _make(
        provider: Provider,
        user_id: str = "user-1",
        provider_account_id: Optional[str] = None,
        username: str = "socialflow",
        **overrides
    ) -> ConnectedAccount:
        fields = AccountFields(
            access_token=overrides.pop("access_token", f"{provider.value.lower()}-access-token"),
            token_secret=overrides.pop("token_secret", "twitter-token-secret" if provider == Provider.TWITTER else None),
            username=username,
            display_name=overrides.pop("display_name", "SocialFlow"),
            status=overrides.pop("status", AccountStatus.ACTIVE),
            **overrides
        )
        return await vault.upsert_account(
            provider,
            provider_account_id or f"{provider.value.lower()}-{username}",
            user_id,
            fields
        )

    return _make
