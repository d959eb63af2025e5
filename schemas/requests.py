"""
Request schemas for all API endpoints
"""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schemas.publishing import MediaInput


class StageMediaRequest(BaseModel):
    """Raw media to stage at a fetchable URL"""
    mime_type: str = Field(..., description="Declared MIME type")
    data: Union[str, List[int]] = Field(..., description="Base64 string, data URL or byte values")


class CreatePostRequest(BaseModel):
    """New post with optional media"""
    content: str = Field(default="", max_length=5000, description="Post text")
    media: List[MediaInput] = Field(default_factory=list, description="Ordered media; first item is the cover")
    scheduled_for: Optional[datetime] = Field(None, description="Scheduled publish time")

    @field_validator('content')
    @classmethod
    def strip_content(cls, v):
        return v.strip()


class PublishRequest(BaseModel):
    """Publish a post to connected accounts"""
    account_ids: List[UUID] = Field(..., min_length=1, max_length=50, description="Target connected accounts")
    media: Optional[List[MediaInput]] = Field(None, description="Replace the post's media before publishing")
