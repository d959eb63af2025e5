"""
Domain value objects shared by the connection manager, publishers and orchestrator
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from models.database import AccountStatus, Provider
from utils.error_codes import ErrorCode, default_message


class PublishMedia(BaseModel):
    """One staged media item, in post order"""
    url: str
    mime_type: str
    thumbnail_url: Optional[str] = None

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class MediaInput(BaseModel):
    """Media supplied by the caller: raw payload to stage, or an already staged URL"""
    mime_type: str
    data: Optional[Union[bytes, str, List[int]]] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None


class PublishTarget(BaseModel):
    """One account to publish to; `provider` must match the stored account when given"""
    account_id: UUID
    provider: Optional[Provider] = None


class PublishResult(BaseModel):
    """Outcome of one provider publish"""
    success: bool
    message: str
    external_post_url: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @classmethod
    def ok(cls, url: Optional[str], message: str = "Published") -> "PublishResult":
        return cls(success=True, message=message, external_post_url=url)

    @classmethod
    def fail(cls, code: ErrorCode, message: Optional[str] = None) -> "PublishResult":
        return cls(success=False, message=message or default_message(code), error_code=code)


class PerAccountResult(BaseModel):
    """Publish outcome for one target account"""
    account_id: UUID
    provider: Optional[Provider] = None
    success: bool
    message: str
    external_post_url: Optional[str] = None
    error_code: Optional[ErrorCode] = None


class ConnectStart(BaseModel):
    """Result of starting an OAuth handshake"""
    provider: Provider
    authorization_url: str
    csrf_state: Optional[str] = None
    # Signed value for the httpOnly state cookie; only the HTTP layer reads it
    state_cookie: Optional[str] = Field(default=None, exclude=True)


class CallbackParams(BaseModel):
    """Query parameters a provider sends back to the redirect URI"""
    code: Optional[str] = None
    state: Optional[str] = None
    oauth_token: Optional[str] = None
    oauth_verifier: Optional[str] = None
    denied: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class AccountFields(BaseModel):
    """Plaintext token and profile fields handed to the vault for upsert"""
    access_token: str
    refresh_token: Optional[str] = None
    token_secret: Optional[str] = None
    expires_at: Optional[datetime] = None
    display_name: Optional[str] = None
    username: Optional[str] = None
    profile_image: Optional[str] = None
    followers_count: Optional[int] = None
    posts_count: Optional[int] = None
    status: AccountStatus = AccountStatus.ACTIVE


class TokenGrant(BaseModel):
    """Refreshed provider tokens"""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class DecryptedCredentials(BaseModel):
    """In-memory plaintext credentials for one account, never persisted"""
    access_token: str
    refresh_token: Optional[str] = None
    token_secret: Optional[str] = None
