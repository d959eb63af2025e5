"""
SQLModel database models for connected accounts and cross-platform posts
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Text, TypeDecorator, UniqueConstraint, Uuid
from sqlmodel import SQLModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps, also on backends that store them naive (SQLite)"""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Provider(str, Enum):
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    TWITTER = "TWITTER"
    TIKTOK = "TIKTOK"


class AccountStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class PostStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"
    DELETED = "DELETED"


class LinkStatus(str, Enum):
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"


class ConnectedAccount(SQLModel, table=True):
    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", "user_id", name="uq_connected_account_owner"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    provider: Provider
    provider_account_id: str = Field(max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    username: Optional[str] = Field(default=None, max_length=255)
    profile_image: Optional[str] = Field(default=None)

    # Ciphertext only
    access_token: str = Field(sa_column=Column(Text, nullable=False))
    refresh_token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    token_secret: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    expires_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    status: AccountStatus = Field(default=AccountStatus.ACTIVE)
    followers_count: Optional[int] = Field(default=None)
    posts_count: Optional[int] = Field(default=None)
    last_error_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    status: PostStatus = Field(default=PostStatus.DRAFT)
    scheduled_for: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    published_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class Media(SQLModel, table=True):
    __tablename__ = "post_media"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    post_id: UUID = Field(foreign_key="posts.id", index=True)
    position: int = Field(default=0)  # 0 is the cover / primary item
    url: str
    mime_type: str = Field(max_length=100)
    thumbnail_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)


class PostTargetLink(SQLModel, table=True):
    __tablename__ = "post_target_links"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    post_id: UUID = Field(foreign_key="posts.id", index=True)
    # Survives account disconnect as history
    connected_account_id: Optional[UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("connected_accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    )
    status: LinkStatus = Field(default=LinkStatus.PENDING)
    post_url: Optional[str] = Field(default=None)
    published_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
