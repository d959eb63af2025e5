"""
Provider registry: lookup tables from Provider to connect strategy and publisher
"""

import asyncio
from typing import Dict, List, Mapping, Optional, Type, Union

import httpx

from models.database import Provider
from services.vault import CredentialVault
from utils.config import Config
from utils.exceptions import UnsupportedProvider
from utils.http_client import Sleep

from .base import ConnectStrategy, ProviderPublisher, UnsupportedPublisher, ensure_provider
from .csrf import StateSigner
from .facebook import FacebookConnectStrategy, FacebookPublisher
from .instagram import InstagramConnectStrategy, InstagramPublisher
from .tiktok import TikTokConnectStrategy, TikTokPublisher
from .twitter import TwitterConnectStrategy, TwitterPublisher

DEFAULT_STRATEGIES: Dict[Provider, Type[ConnectStrategy]] = {
    Provider.FACEBOOK: FacebookConnectStrategy,
    Provider.INSTAGRAM: InstagramConnectStrategy,
    Provider.TWITTER: TwitterConnectStrategy,
    Provider.TIKTOK: TikTokConnectStrategy,
}

DEFAULT_PUBLISHERS: Dict[Provider, Type[ProviderPublisher]] = {
    Provider.FACEBOOK: FacebookPublisher,
    Provider.INSTAGRAM: InstagramPublisher,
    Provider.TWITTER: TwitterPublisher,
    Provider.TIKTOK: TikTokPublisher,
}


class PlatformRegistry:
    """Builds and caches one strategy and one publisher per provider"""

    def __init__(
        self,
        config: Config,
        http_client: httpx.AsyncClient,
        vault: CredentialVault,
        state_signer: Optional[StateSigner] = None,
        sleep: Sleep = asyncio.sleep,
        strategies: Optional[Mapping[Provider, Type[ConnectStrategy]]] = None,
        publishers: Optional[Mapping[Provider, Type[ProviderPublisher]]] = None
    ):
        self.config = config
        self.http = http_client
        self.vault = vault
        self.state_signer = state_signer or StateSigner(config.state_signing_secret, config.csrf_state_ttl)
        self.sleep = sleep
        self._strategies = dict(DEFAULT_STRATEGIES if strategies is None else strategies)
        self._publishers = dict(DEFAULT_PUBLISHERS if publishers is None else publishers)
        self._strategy_instances: Dict[Provider, ConnectStrategy] = {}
        self._publisher_instances: Dict[Provider, ProviderPublisher] = {}

    def get_strategy(self, provider: Union[Provider, str]) -> ConnectStrategy:
        """Return the provider's connect strategy; unknown providers raise UnsupportedProvider"""
        provider = ensure_provider(provider)
        if provider not in self._strategy_instances:
            strategy_cls = self._strategies.get(provider)
            if strategy_cls is None:
                raise UnsupportedProvider(f"No connect flow for {provider.value}", {"provider": provider.value})
            self._strategy_instances[provider] = strategy_cls(
                self.config, self.http, self.vault, self.state_signer, self.sleep
            )
        return self._strategy_instances[provider]

    def get_publisher(self, provider: Union[Provider, str]) -> Union[ProviderPublisher, UnsupportedPublisher]:
        """Return the provider's publisher, or one that reports the provider as unsupported"""
        provider = ensure_provider(provider)
        publisher_cls = self._publishers.get(provider)
        if publisher_cls is None:
            return UnsupportedPublisher(provider.value)
        if provider not in self._publisher_instances:
            self._publisher_instances[provider] = publisher_cls(self.config, self.http, self.sleep)
        return self._publisher_instances[provider]

    def list_platforms(self) -> List[str]:
        """List all providers with a connect strategy"""
        return [provider.value for provider in self._strategies]
