"""Bookmark model - the authoritative persisted copy of a user's bookmarks."""
import uuid

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


def generate_bookmark_id() -> str:
    """Generate a unique opaque bookmark id."""
    return str(uuid.uuid4())


class Bookmark(Base, TimestampMixin):
    """A saved title/url pair owned by one identity."""

    __tablename__ = "bookmarks"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_bookmark_id,
    )
    title: Mapped[str] = mapped_column(Text)
    url: Mapped[str] = mapped_column(Text)
    user_id: Mapped[str] = mapped_column(
        String(255),
        index=True,
        comment="Identity id issued by the Auth Service",
    )
