"""Tests for the single-threaded event dispatcher."""
import asyncio

from fakes import make_bookmark
from schemas.auth import AuthEvent
from services.dispatcher import AuthChanged, EventDispatcher, RowDeleted, RowInserted


class TestEventDispatcher:
    """Tests for EventDispatcher."""

    async def test__drain__dispatches_in_publish_order(self) -> None:
        """Events reach their handlers in the order they were published."""
        dispatcher = EventDispatcher()
        seen: list[str] = []
        dispatcher.register(RowInserted, lambda e: seen.append(f"ins:{e.row.id}"))
        dispatcher.register(RowDeleted, lambda e: seen.append(f"del:{e.bookmark_id}"))

        dispatcher.publish(RowInserted(row=make_bookmark("a"), generation=1))
        dispatcher.publish(RowDeleted(bookmark_id="a", generation=1))
        dispatcher.publish(RowInserted(row=make_bookmark("b"), generation=1))
        await dispatcher.drain()

        assert seen == ["ins:a", "del:a", "ins:b"]
        assert dispatcher.pending == 0

    async def test__dispatch__awaits_async_handlers(self) -> None:
        """Coroutine handlers are awaited."""
        dispatcher = EventDispatcher()
        seen: list[str] = []

        async def handler(event: AuthChanged) -> None:
            await asyncio.sleep(0)
            seen.append(event.event.event)

        dispatcher.register(AuthChanged, handler)
        dispatcher.publish(AuthChanged(AuthEvent(event="SIGNED_OUT")))
        await dispatcher.drain()

        assert seen == ["SIGNED_OUT"]

    async def test__dispatch__handler_error_does_not_stop_loop(self) -> None:
        """A failing handler is logged and later events still run."""
        dispatcher = EventDispatcher()
        seen: list[str] = []

        def handler(event: RowDeleted) -> None:
            if event.bookmark_id == "boom":
                raise RuntimeError("handler failed")
            seen.append(event.bookmark_id)

        dispatcher.register(RowDeleted, handler)
        dispatcher.publish(RowDeleted(bookmark_id="boom", generation=1))
        dispatcher.publish(RowDeleted(bookmark_id="ok", generation=1))
        await dispatcher.drain()

        assert seen == ["ok"]

    async def test__dispatch__unregistered_event_is_skipped(self) -> None:
        """Events without a handler are dropped."""
        dispatcher = EventDispatcher()

        dispatcher.publish(RowDeleted(bookmark_id="a", generation=1))
        await dispatcher.drain()

        assert dispatcher.pending == 0

    async def test__start__background_loop_processes_events(self) -> None:
        """The running loop consumes events without explicit draining."""
        dispatcher = EventDispatcher()
        done = asyncio.Event()
        dispatcher.register(RowDeleted, lambda _e: done.set())

        dispatcher.start()
        assert dispatcher.is_running is True
        dispatcher.publish(RowDeleted(bookmark_id="a", generation=1))
        await asyncio.wait_for(done.wait(), timeout=1)

        await dispatcher.stop()
        assert dispatcher.is_running is False
