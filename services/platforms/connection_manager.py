"""
OAuth connection manager: provider handshakes, token refresh and disconnect
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union
from uuid import UUID

from models.database import AccountStatus, ConnectedAccount, Provider
from schemas.publishing import CallbackParams, ConnectStart
from services.vault import CredentialVault
from utils.config import Config
from utils.exceptions import AuthenticationError, SocialFlowException
from utils.logging import get_logger

from .registry import PlatformRegistry

logger = get_logger(__name__)


class OAuthConnectionManager:
    """Dispatches connect operations to the provider's strategy"""

    def __init__(self, registry: PlatformRegistry, vault: CredentialVault, config: Config):
        self.registry = registry
        self.vault = vault
        self.config = config

    async def begin_connect(self, provider: Union[Provider, str], user_id: str) -> ConnectStart:
        strategy = self.registry.get_strategy(provider)
        start = await strategy.begin_connect(user_id)
        logger.info("OAuth connect started", provider=strategy.provider.value, user_id=user_id)
        return start

    async def complete_connect(
        self,
        provider: Union[Provider, str],
        params: CallbackParams,
        user_id: str,
        state_cookie: Optional[str] = None
    ) -> ConnectedAccount:
        strategy = self.registry.get_strategy(provider)
        try:
            return await strategy.complete_connect(params, user_id, state_cookie)
        except SocialFlowException as e:
            logger.warning(
                "OAuth connect failed",
                provider=strategy.provider.value,
                user_id=user_id,
                error_code=e.error_code.value,
                error=e.message
            )
            raise

    async def refresh_account(self, account: ConnectedAccount) -> ConnectedAccount:
        """
        Refresh one account's tokens.

        An authentication failure marks the account EXPIRED (or REVOKED) and re-raises.
        Providers whose tokens do not expire return the account unchanged.
        """
        strategy = self.registry.get_strategy(account.provider)
        credentials = self.vault.decrypt_credentials(account)
        try:
            grant = await strategy.refresh_token(credentials)
        except AuthenticationError as e:
            if e.revoked:
                await self.vault.mark_revoked(account.id, e.message)
            else:
                await self.vault.mark_expired(account.id, e.message)
            raise

        if grant is None:
            return account
        refreshed = await self.vault.update_tokens(account.id, grant)
        logger.info("Token refreshed", provider=account.provider.value, account_id=str(account.id), expires_at=grant.expires_at)
        return refreshed

    async def refresh_expiring_tokens(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Refresh every ACTIVE account expiring inside the refresh window"""
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(days=self.config.token_refresh_window_days)
        accounts = await self.vault.list_expiring(horizon)

        summary = {"checked": len(accounts), "refreshed": 0, "expired": 0, "failed": 0}
        for account in accounts:
            try:
                await self.refresh_account(account)
                summary["refreshed"] += 1
            except AuthenticationError:
                summary["expired"] += 1
            except SocialFlowException as e:
                summary["failed"] += 1
                logger.warning(
                    "Token refresh failed",
                    provider=account.provider.value,
                    account_id=str(account.id),
                    error_code=e.error_code.value,
                    error=e.message
                )

        logger.info("Token refresh sweep finished", **summary)
        return summary

    async def disconnect(self, account_id: UUID, user_id: str) -> bool:
        """Revoke provider access where supported, then delete the account"""
        account = await self.vault.get_owned_account(account_id, user_id)
        if account.status == AccountStatus.ACTIVE:
            strategy = self.registry.get_strategy(account.provider)
            try:
                await strategy.revoke(self.vault.decrypt_credentials(account))
            except SocialFlowException as e:
                # Deletion proceeds; the provider grant lapses on its own
                logger.warning("Provider revoke failed", provider=account.provider.value, account_id=str(account_id), error=e.message)

        deleted = await self.vault.delete_account(account.id)
        logger.info("Account disconnected", provider=account.provider.value, account_id=str(account_id))
        return deleted
