"""
Live bookmark collection for the current identity.

The collection is fed by the bulk fetch done at bootstrap and by the
insert/delete events of the Change Feed. Local mutations (``add`` and
``remove``) only write to the Data Store; their effect reaches the collection
through the same Change Feed events as changes made from other sessions, so
the collection never holds a row the Data Store has not accepted.
"""
import asyncio
import contextlib
import logging
from collections.abc import Callable

from core.errors import (
    DataStoreError,
    FetchFailureError,
    MutationFailureError,
    SubscriptionFailureError,
)
from schemas.auth import Identity
from schemas.bookmark import BOOKMARKS_TABLE, BookmarkCreate, BookmarkRecord, ChangeEvent
from services.dispatcher import EventDispatcher, RowDeleted, RowInserted
from services.interfaces import ChangeFeed, DataStore, FeedSubscription

logger = logging.getLogger(__name__)

CollectionListener = Callable[[tuple[BookmarkRecord, ...]], None]

FEED_EVENT_TYPES = ("insert", "delete")


class BookmarkStoreSync:
    """Owns the ordered bookmark collection of the current identity."""

    def __init__(
        self,
        store: DataStore,
        feed: ChangeFeed,
        dispatcher: EventDispatcher,
        dedupe_inserts: bool = False,
    ) -> None:
        self._store = store
        self._feed = feed
        self._dispatcher = dispatcher
        self._dedupe_inserts = dedupe_inserts
        self._items: list[BookmarkRecord] = []
        self._identity: Identity | None = None
        self._subscription: FeedSubscription | None = None
        self._exit_stack: contextlib.AsyncExitStack | None = None
        # Bumped whenever the subscription is replaced; events carry the
        # generation they were received under and stale ones are dropped.
        self._generation = 0
        self._bootstrap_task: asyncio.Task[None] | None = None
        self._listeners: list[CollectionListener] = []

        dispatcher.register(RowInserted, self.handle_row_inserted)
        dispatcher.register(RowDeleted, self.handle_row_deleted)

    @property
    def bookmarks(self) -> tuple[BookmarkRecord, ...]:
        """Snapshot of the collection, newest first."""
        return tuple(self._items)

    @property
    def identity(self) -> Identity | None:
        """Identity the collection is currently scoped to."""
        return self._identity

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    @property
    def bootstrap_in_flight(self) -> bool:
        return self._bootstrap_task is not None and not self._bootstrap_task.done()

    def add_listener(self, listener: CollectionListener) -> None:
        """Call ``listener`` with the new snapshot after every collection change."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def schedule_bootstrap(self, identity: Identity) -> asyncio.Task[None]:
        """Run ``bootstrap`` in the background, superseding any in-flight one."""
        self._cancel_pending_bootstrap()
        task = asyncio.create_task(self.bootstrap(identity), name=f"bootstrap-{identity.id}")
        self._bootstrap_task = task
        return task

    async def wait_for_bootstrap(self) -> None:
        """Wait until the scheduled bootstrap, if any, has finished or been cancelled."""
        task = self._bootstrap_task
        if task is None or task.done():
            return
        await asyncio.wait({task})

    async def bootstrap(self, identity: Identity) -> None:
        """
        Subscribe to the identity's Change Feed and load its bookmarks.

        A call for a different identity first tears down the previous
        subscription and collection. A repeated call for the same identity
        keeps the open subscription and only refreshes the collection.
        """
        same_identity = self._identity is not None and self._identity.id == identity.id
        self._identity = identity
        if not same_identity or self._subscription is None:
            await self._close_subscription()
            if not same_identity:
                self._set_items([])
            self._generation += 1
            await self._open_subscription(identity, self._generation)

        generation = self._generation
        try:
            rows = await self._fetch(identity)
        except FetchFailureError as e:
            logger.warning(
                "bookmark_fetch_failed",
                extra={"user_id": identity.id, "error": str(e)},
            )
            return

        if generation != self._generation:
            # Superseded by a teardown or a bootstrap for another identity
            logger.info("bookmark_fetch_discarded", extra={"user_id": identity.id})
            return
        self._set_items(list(rows))
        logger.info(
            "bookmarks_loaded",
            extra={"user_id": identity.id, "count": len(self._items)},
        )

    async def _fetch(self, identity: Identity) -> list[BookmarkRecord]:
        try:
            return await self._store.select_bookmarks(identity.id)
        except DataStoreError as e:
            raise FetchFailureError(f"Error loading bookmarks: {e}") from e

    async def teardown(self) -> None:
        """Close the active subscription (if any) and empty the collection."""
        pending = self._cancel_pending_bootstrap()
        self._generation += 1
        self._identity = None
        if pending is not None:
            # Let the cancelled bootstrap release whatever it had acquired
            await asyncio.wait({pending})
        await self._close_subscription()
        self._set_items([])

    def _cancel_pending_bootstrap(self) -> asyncio.Task[None] | None:
        task = self._bootstrap_task
        self._bootstrap_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _open_subscription(self, identity: Identity, generation: int) -> None:
        stack = contextlib.AsyncExitStack()

        def on_change(event: ChangeEvent) -> None:
            self._enqueue(event, generation)

        try:
            subscription = await stack.enter_async_context(
                self._feed.subscribe(BOOKMARKS_TABLE, identity.id, FEED_EVENT_TYPES, on_change),
            )
        except SubscriptionFailureError as e:
            # No live updates for this identity until the next bootstrap
            logger.warning(
                "change_feed_subscribe_failed",
                extra={"user_id": identity.id, "error": str(e)},
            )
            await stack.aclose()
            return
        except BaseException:
            await stack.aclose()
            raise

        if generation != self._generation:
            await stack.aclose()
            return
        self._exit_stack = stack
        self._subscription = subscription
        logger.info("change_feed_subscribed", extra={"topic": subscription.topic})

    async def _close_subscription(self) -> None:
        stack = self._exit_stack
        subscription = self._subscription
        self._exit_stack = None
        self._subscription = None
        if stack is None:
            return
        await stack.aclose()
        if subscription is not None:
            logger.info("change_feed_unsubscribed", extra={"topic": subscription.topic})

    # ------------------------------------------------------------------
    # Local mutations
    # ------------------------------------------------------------------

    async def add(self, title: str, url: str, identity: Identity | None) -> BookmarkRecord:
        """
        Insert a bookmark for ``identity``.

        The local collection is not touched; the row appears once its insert
        event arrives. Raises ``ValueError`` when a precondition fails and
        ``MutationFailureError`` when the Data Store rejects the insert.
        """
        if identity is None:
            raise ValueError("Cannot add a bookmark without a signed-in identity")
        data = BookmarkCreate(title=title, url=url)
        try:
            return await self._store.insert_bookmark(data.title, data.url, identity.id)
        except DataStoreError as e:
            logger.warning(
                "bookmark_insert_failed", extra={"user_id": identity.id, "error": str(e)},
            )
            raise MutationFailureError("adding", str(e)) from e

    async def remove(self, bookmark_id: str) -> bool:
        """
        Delete one of the current identity's bookmarks by id.

        The bookmark stays in the collection until its delete event arrives.
        Returns False when the identity owns no such row. Raises ``ValueError``
        without an identity and ``MutationFailureError`` when the Data Store
        rejects the delete.
        """
        identity = self._identity
        if identity is None:
            raise ValueError("Cannot delete a bookmark without a signed-in identity")
        try:
            deleted = await self._store.delete_bookmark(bookmark_id, identity.id)
        except DataStoreError as e:
            logger.warning(
                "bookmark_delete_failed", extra={"bookmark_id": bookmark_id, "error": str(e)},
            )
            raise MutationFailureError("deleting", str(e)) from e
        if not deleted:
            logger.info(
                "bookmark_delete_no_match",
                extra={"bookmark_id": bookmark_id, "user_id": identity.id},
            )
        return deleted

    # ------------------------------------------------------------------
    # Change Feed events
    # ------------------------------------------------------------------

    def _enqueue(self, event: ChangeEvent, generation: int) -> None:
        if event.event_type == "insert" and event.new is not None:
            self._dispatcher.publish(RowInserted(row=event.new, generation=generation))
        elif event.event_type == "delete" and event.old is not None:
            self._dispatcher.publish(RowDeleted(bookmark_id=event.old.id, generation=generation))
        else:
            logger.warning("change_event_malformed", extra={"event_type": event.event_type})

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation or self._subscription is None

    def handle_row_inserted(self, event: RowInserted) -> None:
        """Prepend the inserted row to the collection."""
        if self._is_stale(event.generation):
            logger.debug("change_event_stale", extra={"bookmark_id": event.row.id})
            return
        row = event.row
        if self._identity is None or row.user_id != self._identity.id:
            logger.warning(
                "change_event_foreign_owner",
                extra={"bookmark_id": row.id, "user_id": row.user_id},
            )
            return
        if self._dedupe_inserts and any(b.id == row.id for b in self._items):
            logger.debug("change_event_duplicate", extra={"bookmark_id": row.id})
            return
        self._set_items([row, *self._items])

    def handle_row_deleted(self, event: RowDeleted) -> None:
        """Remove the deleted row from the collection, if present."""
        if self._is_stale(event.generation):
            logger.debug("change_event_stale", extra={"bookmark_id": event.bookmark_id})
            return
        remaining = [b for b in self._items if b.id != event.bookmark_id]
        if len(remaining) == len(self._items):
            return
        self._set_items(remaining)

    def _set_items(self, items: list[BookmarkRecord]) -> None:
        self._items = items
        snapshot = self.bookmarks
        for listener in self._listeners:
            listener(snapshot)
