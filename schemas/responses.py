"""
Response schemas for all API endpoints
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from models.database import AccountStatus, ConnectedAccount, Post, PostStatus, Provider
from schemas.publishing import PerAccountResult, PublishMedia


class ConnectStartResponse(BaseModel):
    """OAuth handshake start"""
    provider: Provider = Field(..., description="Provider")
    authorization_url: str = Field(..., description="URL to send the user to")


class AccountResponse(BaseModel):
    """Connected account, without credentials"""
    id: UUID
    provider: Provider
    provider_account_id: str
    display_name: Optional[str] = None
    username: Optional[str] = None
    profile_image: Optional[str] = None
    status: AccountStatus
    expires_at: Optional[datetime] = None
    followers_count: Optional[int] = None
    posts_count: Optional[int] = None
    last_error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_account(cls, account: ConnectedAccount) -> "AccountResponse":
        return cls(
            id=account.id,
            provider=account.provider,
            provider_account_id=account.provider_account_id,
            display_name=account.display_name,
            username=account.username,
            profile_image=account.profile_image,
            status=account.status,
            expires_at=account.expires_at,
            followers_count=account.followers_count,
            posts_count=account.posts_count,
            last_error=account.last_error,
            created_at=account.created_at,
        )


class StagedMediaResponse(BaseModel):
    """Staged media location"""
    url: str = Field(..., description="Fetchable staged URL")
    mime_type: str = Field(..., description="MIME type")


class PostResponse(BaseModel):
    """Post with ordered media"""
    id: UUID
    content: str
    status: PostStatus
    media: List[PublishMedia] = Field(default_factory=list)
    scheduled_for: Optional[datetime] = None
    published_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_post(cls, post: Post, media: List[PublishMedia]) -> "PostResponse":
        return cls(
            id=post.id,
            content=post.content,
            status=post.status,
            media=media,
            scheduled_for=post.scheduled_for,
            published_at=post.published_at,
            created_at=post.created_at,
        )


class PublishResponse(BaseModel):
    """Per-account publish outcomes"""
    post_id: UUID
    status: PostStatus
    results: List[PerAccountResult]


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(..., description="Health check timestamp")
    dependencies: Dict[str, str] = Field(default_factory=dict, description="Dependency status")
