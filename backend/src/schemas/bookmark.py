"""Pydantic schemas for bookmarks and the change events that carry them."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

BOOKMARKS_TABLE = "bookmarks"

EventType = Literal["insert", "delete"]


def validate_not_blank(value: str, field_name: str) -> str:
    """Reject empty or whitespace-only input."""
    if not value or not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    return value


class BookmarkCreate(BaseModel):
    """
    Schema for creating a new bookmark.

    The url is intentionally a plain string: it is persisted as entered and
    no well-formedness check is made (unlike an ``HttpUrl`` field, which
    would normalize or reject it).
    """

    title: str
    url: str

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        """Title must be non-empty."""
        return validate_not_blank(v, "title")

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        """Url must be non-empty."""
        return validate_not_blank(v, "url")


class BookmarkRecord(BaseModel):
    """A bookmark row as held in the local collection."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    title: str
    url: str
    user_id: str
    created_at: datetime | None = None


class DeletedRow(BaseModel):
    """Identifying columns of a deleted row."""

    id: str
    user_id: str | None = None


class ChangeEvent(BaseModel):
    """One committed row change delivered by the Change Feed."""

    event_type: EventType
    table: str = BOOKMARKS_TABLE
    new: BookmarkRecord | None = None
    old: DeletedRow | None = None

    @property
    def user_id(self) -> str | None:
        """Owner of the changed row, used to route the event."""
        if self.new is not None:
            return self.new.user_id
        if self.old is not None:
            return self.old.user_id
        return None

    @classmethod
    def inserted(cls, row: BookmarkRecord) -> "ChangeEvent":
        """Build an insert event for ``row``."""
        return cls(event_type="insert", new=row)

    @classmethod
    def deleted(cls, bookmark_id: str, user_id: str | None = None) -> "ChangeEvent":
        """Build a delete event for the row ``bookmark_id``."""
        return cls(event_type="delete", old=DeletedRow(id=bookmark_id, user_id=user_id))
