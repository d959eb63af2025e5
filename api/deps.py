"""
Service wiring and FastAPI dependencies
"""

from dataclasses import dataclass

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from services.media_relay import MediaRelay, build_media_relay
from services.platforms.connection_manager import OAuthConnectionManager
from services.platforms.registry import PlatformRegistry
from services.posts import PostStore
from services.publishing import PublishingOrchestrator
from services.vault import CredentialVault
from utils.config import Config
from utils.crypto import TokenCipher


@dataclass
class Services:
    """Everything a request handler needs, built once per process"""
    config: Config
    vault: CredentialVault
    registry: PlatformRegistry
    connections: OAuthConnectionManager
    posts: PostStore
    media_relay: MediaRelay
    orchestrator: PublishingOrchestrator


def build_services(
    config: Config,
    http_client: httpx.AsyncClient,
    session_factory: async_sessionmaker,
    media_relay: MediaRelay = None
) -> Services:
    vault = CredentialVault(TokenCipher(config.encryption_key), session_factory)
    registry = PlatformRegistry(config, http_client, vault)
    connections = OAuthConnectionManager(registry, vault, config)
    posts = PostStore(session_factory)
    media_relay = media_relay or build_media_relay(config)
    orchestrator = PublishingOrchestrator(
        registry,
        vault,
        posts,
        media_relay=media_relay,
        connection_manager=connections,
        max_concurrency=config.max_concurrent_publishes
    )
    return Services(
        config=config,
        vault=vault,
        registry=registry,
        connections=connections,
        posts=posts,
        media_relay=media_relay,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
