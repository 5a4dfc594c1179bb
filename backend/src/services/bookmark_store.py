"""SQL Data Store for bookmarks; publishes every committed change to the Change Feed."""
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import DataStoreError
from db.session import session_scope
from models.bookmark import Bookmark
from schemas.bookmark import BookmarkRecord, ChangeEvent
from services.interfaces import ChangeFeed

logger = logging.getLogger(__name__)


class SqlBookmarkStore:
    """Bookmarks table access through SQLAlchemy asyncio."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed

    async def select_bookmarks(self, user_id: str) -> list[BookmarkRecord]:
        """All bookmarks of ``user_id``, newest first."""
        query = (
            select(Bookmark)
            .where(Bookmark.user_id == user_id)
            .order_by(Bookmark.created_at.desc())
        )
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(query)
                rows = result.scalars().all()
                return [BookmarkRecord.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise DataStoreError(f"select bookmarks failed: {e}") from e

    async def insert_bookmark(self, title: str, url: str, user_id: str) -> BookmarkRecord:
        """Insert a bookmark; the insert event is published after commit."""
        try:
            async with session_scope(self._session_factory) as db:
                bookmark = Bookmark(title=title, url=url, user_id=user_id)
                db.add(bookmark)
                await db.flush()
                record = BookmarkRecord.model_validate(bookmark)
        except SQLAlchemyError as e:
            raise DataStoreError(f"insert bookmark failed: {e}") from e

        await self._notify(ChangeEvent.inserted(record))
        return record

    async def delete_bookmark(self, bookmark_id: str, user_id: str) -> bool:
        """Delete a bookmark owned by ``user_id``; returns False when no row matched."""
        statement = (
            delete(Bookmark)
            .where(Bookmark.id == bookmark_id, Bookmark.user_id == user_id)
            .returning(Bookmark.id)
        )
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(statement)
                deleted_id = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DataStoreError(f"delete bookmark failed: {e}") from e

        if deleted_id is None:
            return False
        await self._notify(ChangeEvent.deleted(bookmark_id, user_id))
        return True

    async def _notify(self, event: ChangeEvent) -> None:
        if self._feed is None:
            return
        await self._feed.publish(event)
        logger.debug(
            "change_event_published",
            extra={"event_type": event.event_type, "user_id": event.user_id},
        )
