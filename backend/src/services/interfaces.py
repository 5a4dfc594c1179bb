"""Interfaces of the external collaborators: Auth Service, Data Store and Change Feed."""
from collections.abc import Callable, Collection
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from schemas.auth import AuthEvent, Session
from schemas.bookmark import BookmarkRecord, ChangeEvent, EventType

AuthChangeHandler = Callable[[AuthEvent], None]
ChangeHandler = Callable[[ChangeEvent], None]


class AuthSubscription(Protocol):
    """Handle returned by ``AuthService.subscribe_to_auth_changes``."""

    def unsubscribe(self) -> None:
        """Stop delivering auth events to the handler."""
        ...


class AuthService(Protocol):
    """Identity provider and session issuance."""

    async def get_current_session(self) -> Session | None:
        """Return the existing session, or None when signed out."""
        ...

    def subscribe_to_auth_changes(self, handler: AuthChangeHandler) -> AuthSubscription:
        """Invoke ``handler`` on every session state change."""
        ...

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        """Begin a redirect-based OAuth login and return the URL to navigate to."""
        ...

    async def sign_out(self) -> None:
        """Terminate the current session."""
        ...


class DataStore(Protocol):
    """Authoritative persisted copy of the ``bookmarks`` table."""

    async def select_bookmarks(self, user_id: str) -> list[BookmarkRecord]:
        """All bookmarks of ``user_id``, newest first."""
        ...

    async def insert_bookmark(self, title: str, url: str, user_id: str) -> BookmarkRecord:
        """Insert a bookmark and return the stored row."""
        ...

    async def delete_bookmark(self, bookmark_id: str, user_id: str) -> bool:
        """Delete ``user_id``'s bookmark by id, returning whether a row was removed."""
        ...


class FeedSubscription(Protocol):
    """An open Change Feed subscription."""

    @property
    def topic(self) -> str:
        """Table and row filter this subscription is keyed by."""
        ...

    @property
    def closed(self) -> bool:
        """True once the subscription no longer delivers events."""
        ...


class ChangeFeed(Protocol):
    """Push-based stream of row-level insert/delete notifications."""

    def subscribe(
        self,
        table: str,
        user_id: str,
        event_types: Collection[EventType],
        handler: ChangeHandler,
    ) -> AbstractAsyncContextManager[FeedSubscription]:
        """Subscribe to committed changes of ``table`` rows owned by ``user_id``."""
        ...

    async def publish(self, event: ChangeEvent) -> None:
        """Deliver a committed change to every matching subscription."""
        ...
