"""
Post persistence: posts, ordered media and per-account publish links
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.database import LinkStatus, Media, Post, PostStatus, PostTargetLink
from schemas.publishing import PublishMedia
from utils.exceptions import PostNotFound, ValidationError
from utils.logging import get_logger

logger = get_logger(__name__)

TERMINAL_LINK_STATUSES = {LinkStatus.PUBLISHED, LinkStatus.FAILED}


class PostStore:
    """Database operations for posts and their publish attempts"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def create_post(
        self,
        user_id: str,
        content: str,
        media: Optional[List[PublishMedia]] = None,
        scheduled_for: Optional[datetime] = None
    ) -> Post:
        post = Post(
            user_id=user_id,
            content=content,
            status=PostStatus.SCHEDULED if scheduled_for else PostStatus.DRAFT,
            scheduled_for=scheduled_for,
        )
        async with self._session_factory() as session:
            session.add(post)
            await session.flush()
            for position, item in enumerate(media or []):
                session.add(Media(
                    post_id=post.id,
                    position=position,
                    url=item.url,
                    mime_type=item.mime_type,
                    thumbnail_url=item.thumbnail_url,
                ))
            await session.commit()
            await session.refresh(post)
        return post

    async def get_post(self, post_id: UUID, user_id: Optional[str] = None) -> Post:
        async with self._session_factory() as session:
            post = await session.get(Post, post_id)
        if post is None or post.status == PostStatus.DELETED or (user_id is not None and post.user_id != user_id):
            raise PostNotFound("Post not found", {"post_id": str(post_id)})
        return post

    async def list_media(self, post_id: UUID) -> List[PublishMedia]:
        """Media in post order"""
        async with self._session_factory() as session:
            stmt = select(Media).where(Media.post_id == post_id).order_by(Media.position)
            rows = (await session.execute(stmt)).scalars().all()
        return [PublishMedia(url=row.url, mime_type=row.mime_type, thumbnail_url=row.thumbnail_url) for row in rows]

    async def replace_media(self, post_id: UUID, media: List[PublishMedia]) -> None:
        """Replace a post's media; refused once any publish attempt has finished"""
        async with self._session_factory() as session:
            stmt = select(PostTargetLink.id).where(
                PostTargetLink.post_id == post_id,
                PostTargetLink.status != LinkStatus.PENDING
            ).limit(1)
            if (await session.execute(stmt)).first() is not None:
                raise ValidationError("Media cannot change after the post was published", {"post_id": str(post_id)})

            await session.execute(delete(Media).where(Media.post_id == post_id))
            for position, item in enumerate(media):
                session.add(Media(
                    post_id=post_id,
                    position=position,
                    url=item.url,
                    mime_type=item.mime_type,
                    thumbnail_url=item.thumbnail_url,
                ))
            post = await session.get(Post, post_id)
            if post is not None:
                post.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def open_link(self, post_id: UUID, account_id: UUID) -> PostTargetLink:
        """Record a new PENDING publish attempt"""
        link = PostTargetLink(post_id=post_id, connected_account_id=account_id)
        async with self._session_factory() as session:
            session.add(link)
            await session.commit()
            await session.refresh(link)
        return link

    async def find_published_link(self, post_id: UUID, account_id: UUID) -> Optional[PostTargetLink]:
        async with self._session_factory() as session:
            stmt = select(PostTargetLink).where(
                PostTargetLink.post_id == post_id,
                PostTargetLink.connected_account_id == account_id,
                PostTargetLink.status == LinkStatus.PUBLISHED
            ).order_by(PostTargetLink.published_at.desc()).limit(1)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def list_links(self, post_id: UUID) -> List[PostTargetLink]:
        async with self._session_factory() as session:
            stmt = select(PostTargetLink).where(PostTargetLink.post_id == post_id).order_by(PostTargetLink.created_at)
            return list((await session.execute(stmt)).scalars().all())

    async def complete_link(
        self,
        link_id: UUID,
        status: LinkStatus,
        post_url: Optional[str] = None,
        error: Optional[str] = None
    ) -> PostTargetLink:
        """
        Move a PENDING link to its terminal status.

        A link reaches a terminal status exactly once; later calls leave it as is.
        """
        if status not in TERMINAL_LINK_STATUSES:
            raise ValidationError(f"{status.value} is not a terminal link status")

        async with self._session_factory() as session:
            link = await session.get(PostTargetLink, link_id)
            if link is None:
                raise ValidationError("Publish link not found", {"link_id": str(link_id)})
            if link.status in TERMINAL_LINK_STATUSES:
                logger.warning("Publish link already completed", link_id=str(link_id), status=link.status.value)
                return link

            now = datetime.now(timezone.utc)
            link.status = status
            link.post_url = post_url
            link.error = error
            link.published_at = now if status == LinkStatus.PUBLISHED else None
            link.updated_at = now
            await session.commit()
            await session.refresh(link)
            return link

    async def update_post_status(self, post_id: UUID, status: PostStatus) -> Post:
        async with self._session_factory() as session:
            post = await session.get(Post, post_id)
            if post is None:
                raise PostNotFound("Post not found", {"post_id": str(post_id)})
            now = datetime.now(timezone.utc)
            post.status = status
            if status == PostStatus.PUBLISHED and post.published_at is None:
                post.published_at = now
            post.updated_at = now
            await session.commit()
            await session.refresh(post)
            return post

    async def delete_post(self, post_id: UUID, user_id: str) -> bool:
        """Delete a post together with its media and publish links"""
        await self.get_post(post_id, user_id)
        async with self._session_factory() as session:
            await session.execute(delete(PostTargetLink).where(PostTargetLink.post_id == post_id))
            await session.execute(delete(Media).where(Media.post_id == post_id))
            await session.execute(delete(Post).where(Post.id == post_id))
            await session.commit()
        logger.info("Post deleted", post_id=str(post_id))
        return True
