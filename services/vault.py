"""
Credential vault: encrypted token storage and connected-account status lifecycle
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.database import AccountStatus, ConnectedAccount, Provider
from schemas.publishing import AccountFields, DecryptedCredentials, TokenGrant
from utils.crypto import TokenCipher
from utils.exceptions import AccountNotFound
from utils.logging import get_logger

logger = get_logger(__name__)

PENDING_PREFIX = "pending:"

_TOKEN_FIELDS = ("access_token", "refresh_token", "token_secret")


class CredentialVault:
    """
    Owns every write to connected_accounts token fields.

    Tokens are stored as ciphertext and decrypted only when a caller is about to use them.
    """

    def __init__(self, cipher: TokenCipher, session_factory: async_sessionmaker):
        self.cipher = cipher
        self._session_factory = session_factory

    def encrypt(self, plaintext: str) -> str:
        return self.cipher.encrypt(plaintext)

    def decrypt(self, ciphertext: str) -> str:
        return self.cipher.decrypt(ciphertext)

    def decrypt_credentials(self, account: ConnectedAccount) -> DecryptedCredentials:
        return DecryptedCredentials(
            access_token=self.decrypt(account.access_token),
            refresh_token=self.decrypt(account.refresh_token) if account.refresh_token else None,
            token_secret=self.decrypt(account.token_secret) if account.token_secret else None,
        )

    def _encrypted_values(self, fields: AccountFields) -> dict:
        values = fields.model_dump()
        for name in _TOKEN_FIELDS:
            if values.get(name) is not None:
                values[name] = self.encrypt(values[name])
        return values

    async def upsert_account(
        self,
        provider: Provider,
        provider_account_id: str,
        user_id: str,
        fields: AccountFields
    ) -> ConnectedAccount:
        """
        Insert or update the account keyed by (provider, provider_account_id, user_id).

        On conflict token and profile fields are overwritten; id and created_at are kept.
        """
        values = self._encrypted_values(fields)
        try:
            return await self._upsert(provider, provider_account_id, user_id, values)
        except IntegrityError:
            # Lost an insert race with a concurrent handshake; the row exists now
            logger.warning("Account insert conflicted, updating existing row", provider=provider.value, user_id=user_id)
            return await self._upsert(provider, provider_account_id, user_id, values)

    async def _upsert(self, provider: Provider, provider_account_id: str, user_id: str, values: dict) -> ConnectedAccount:
        async with self._session_factory() as session:
            stmt = select(ConnectedAccount).where(
                ConnectedAccount.provider == provider,
                ConnectedAccount.provider_account_id == provider_account_id,
                ConnectedAccount.user_id == user_id
            )
            account = (await session.execute(stmt)).scalar_one_or_none()

            if account is None:
                account = ConnectedAccount(
                    provider=provider,
                    provider_account_id=provider_account_id,
                    user_id=user_id,
                    **values
                )
                session.add(account)
            else:
                for name, value in values.items():
                    setattr(account, name, value)
                account.last_error = None
                account.last_error_at = None
                account.updated_at = datetime.now(timezone.utc)

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            await session.refresh(account)
            return account

    async def create_pending(
        self,
        provider: Provider,
        user_id: str,
        request_token: str,
        request_token_secret: str,
        ttl_seconds: int
    ) -> ConnectedAccount:
        """Persist a short-lived request-token row for an OAuth 1.0a handshake"""
        fields = AccountFields(
            access_token=request_token,
            token_secret=request_token_secret,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
            status=AccountStatus.PENDING,
        )
        return await self.upsert_account(provider, f"{PENDING_PREFIX}{request_token}", user_id, fields)

    async def find_pending(self, provider: Provider, user_id: str, request_token: str) -> Optional[ConnectedAccount]:
        """Return the caller's PENDING row whose stored request token matches exactly"""
        async with self._session_factory() as session:
            stmt = select(ConnectedAccount).where(
                ConnectedAccount.provider == provider,
                ConnectedAccount.user_id == user_id,
                ConnectedAccount.status == AccountStatus.PENDING,
                ConnectedAccount.provider_account_id == f"{PENDING_PREFIX}{request_token}"
            )
            account = (await session.execute(stmt)).scalar_one_or_none()

        if account is None:
            return None
        stored = self.decrypt(account.access_token)
        if not hmac.compare_digest(stored.encode(), request_token.encode()):
            return None
        return account

    async def purge_expired_pending(self, provider: Provider, user_id: str) -> int:
        async with self._session_factory() as session:
            stmt = delete(ConnectedAccount).where(
                ConnectedAccount.provider == provider,
                ConnectedAccount.user_id == user_id,
                ConnectedAccount.status == AccountStatus.PENDING,
                ConnectedAccount.expires_at < datetime.now(timezone.utc)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    async def get_account(self, account_id: UUID) -> Optional[ConnectedAccount]:
        async with self._session_factory() as session:
            return await session.get(ConnectedAccount, account_id)

    async def get_owned_account(self, account_id: UUID, user_id: str) -> ConnectedAccount:
        account = await self.get_account(account_id)
        if account is None or account.user_id != user_id or account.status == AccountStatus.PENDING:
            raise AccountNotFound("Connected account not found", {"account_id": str(account_id)})
        return account

    async def list_accounts(self, user_id: str, provider: Optional[Provider] = None) -> List[ConnectedAccount]:
        """List the user's connected accounts (handshake rows excluded)"""
        async with self._session_factory() as session:
            stmt = select(ConnectedAccount).where(
                ConnectedAccount.user_id == user_id,
                ConnectedAccount.status != AccountStatus.PENDING
            )
            if provider is not None:
                stmt = stmt.where(ConnectedAccount.provider == provider)
            stmt = stmt.order_by(ConnectedAccount.created_at)
            return list((await session.execute(stmt)).scalars().all())

    async def list_expiring(self, before: datetime) -> List[ConnectedAccount]:
        """ACTIVE accounts whose token expires at or before `before`"""
        async with self._session_factory() as session:
            stmt = select(ConnectedAccount).where(
                ConnectedAccount.status == AccountStatus.ACTIVE,
                ConnectedAccount.expires_at.is_not(None),
                ConnectedAccount.expires_at <= before
            )
            return list((await session.execute(stmt)).scalars().all())

    async def delete_account(self, account_id: UUID) -> bool:
        async with self._session_factory() as session:
            account = await session.get(ConnectedAccount, account_id)
            if account is None:
                return False
            await session.delete(account)
            await session.commit()
            return True

    async def update_tokens(self, account_id: UUID, grant: TokenGrant) -> ConnectedAccount:
        """Store refreshed tokens; status is left as is"""
        async with self._session_factory() as session:
            account = await session.get(ConnectedAccount, account_id)
            if account is None:
                raise AccountNotFound("Connected account not found", {"account_id": str(account_id)})
            account.access_token = self.encrypt(grant.access_token)
            if grant.refresh_token:
                account.refresh_token = self.encrypt(grant.refresh_token)
            account.expires_at = grant.expires_at
            account.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(account)
            return account

    async def mark_expired(self, account_id: UUID, reason: str) -> Optional[ConnectedAccount]:
        """ACTIVE -> EXPIRED. No-op when already EXPIRED or REVOKED."""
        return await self._transition(account_id, AccountStatus.EXPIRED, reason, keep={AccountStatus.EXPIRED, AccountStatus.REVOKED})

    async def mark_revoked(self, account_id: UUID, reason: str) -> Optional[ConnectedAccount]:
        """Any status -> REVOKED. No-op when already REVOKED."""
        return await self._transition(account_id, AccountStatus.REVOKED, reason, keep={AccountStatus.REVOKED})

    async def _transition(self, account_id: UUID, target: AccountStatus, reason: str, keep: set) -> Optional[ConnectedAccount]:
        async with self._session_factory() as session:
            account = await session.get(ConnectedAccount, account_id)
            if account is None:
                return None
            if account.status in keep:
                return account

            now = datetime.now(timezone.utc)
            account.status = target
            account.last_error = reason
            account.last_error_at = now
            account.updated_at = now
            await session.commit()
            await session.refresh(account)

        logger.info("Connected account status changed", account_id=str(account_id), status=target.value)
        return account
