"""Thin controller turning user intent into sync calls and rendering state."""
import logging

from pydantic import BaseModel

from core.errors import MutationFailureError
from schemas.auth import Identity
from schemas.bookmark import BookmarkRecord
from services.bookmark_sync import BookmarkStoreSync
from services.session_manager import SessionManager, SessionState

logger = logging.getLogger(__name__)


class ViewState(BaseModel):
    """Everything the front end needs to draw the page."""

    identity: Identity | None
    loading: bool
    bookmarks: list[BookmarkRecord]
    title: str
    url: str
    error: str | None
    version: int


class ViewController:
    """Holds the pending form input and the last user-visible error."""

    def __init__(self, session: SessionManager, sync: BookmarkStoreSync) -> None:
        self._session = session
        self._sync = sync
        self.title = ""
        self.url = ""
        self.error: str | None = None
        self._version = 0
        sync.add_listener(self._on_collection_changed)

    @property
    def identity(self) -> Identity | None:
        return self._session.identity

    @property
    def version(self) -> int:
        """Bumped on every collection change so clients can poll cheaply."""
        return self._version

    def _on_collection_changed(self, _bookmarks: tuple[BookmarkRecord, ...]) -> None:
        self._version += 1

    def set_form(self, title: str | None = None, url: str | None = None) -> None:
        if title is not None:
            self.title = title
        if url is not None:
            self.url = url

    async def submit(self) -> bool:
        """
        Add the bookmark in the form.

        The form is cleared only when the Data Store accepted the insert, so a
        failed attempt can be retried without re-typing.
        """
        identity = self._session.identity
        if identity is None or not self.title or not self.url:
            return False
        try:
            await self._sync.add(self.title, self.url, identity)
        except MutationFailureError:
            self.error = "Error adding bookmark"
            return False
        except ValueError as e:
            self.error = str(e)
            return False
        self.title = ""
        self.url = ""
        self.error = None
        return True

    def has_bookmark(self, bookmark_id: str) -> bool:
        return any(b.id == bookmark_id for b in self._sync.bookmarks)

    async def delete(self, bookmark_id: str) -> bool:
        try:
            await self._sync.remove(bookmark_id)
        except MutationFailureError:
            self.error = "Error deleting bookmark"
            return False
        except ValueError as e:
            self.error = str(e)
            return False
        self.error = None
        return True

    async def sign_in(self) -> str | None:
        return await self._session.sign_in()

    async def sign_out(self) -> None:
        await self._session.sign_out()

    def render(self) -> ViewState:
        return ViewState(
            identity=self._session.identity,
            loading=self._session.state is SessionState.UNINITIALIZED,
            bookmarks=list(self._sync.bookmarks),
            title=self.title,
            url=self.url,
            error=self.error,
            version=self._version,
        )
