"""
Single-threaded event loop for the sync core.

Collaborator callbacks (auth listener, change feed handler) never touch
application state directly: they publish a tagged event onto one queue and
the dispatcher hands it to the registered handler, one at a time.
"""
import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from schemas.auth import AuthEvent
from schemas.bookmark import BookmarkRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthChanged:
    """The Auth Service reported a session state change."""

    event: AuthEvent


@dataclass(frozen=True)
class RowInserted:
    """A bookmark row was inserted (delivered by subscription ``generation``)."""

    row: BookmarkRecord
    generation: int


@dataclass(frozen=True)
class RowDeleted:
    """A bookmark row was deleted (delivered by subscription ``generation``)."""

    bookmark_id: str
    generation: int


Event = AuthChanged | RowInserted | RowDeleted
Handler = Callable[[Any], Awaitable[None] | None]


class EventDispatcher:
    """Consume a queue of tagged events and dispatch each to its handler."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._handlers: dict[type, Handler] = {}
        self._task: asyncio.Task[None] | None = None

    def register(self, event_type: type, handler: Handler) -> None:
        """Route events of ``event_type`` to ``handler`` (one handler per type)."""
        self._handlers[event_type] = handler

    def publish(self, event: Event) -> None:
        """Enqueue an event. Never blocks; safe to call from any callback."""
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        """Number of events waiting to be dispatched."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        """True while the background loop task is alive."""
        return self._task is not None and not self._task.done()

    async def dispatch(self, event: Event) -> None:
        """Run the handler for one event, logging (not raising) handler errors."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("event_unhandled", extra={"event_type": type(event).__name__})
            return
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "event_handler_failed", extra={"event_type": type(event).__name__},
            )

    async def run(self) -> None:
        """Dispatch events until cancelled."""
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Dispatch every queued event, including ones published meanwhile."""
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the background loop task."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self.run(), name="bookmark-event-dispatcher")

    async def stop(self) -> None:
        """Cancel the background loop task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
