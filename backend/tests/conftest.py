"""Shared fixtures: in-memory collaborators and a wired sync core."""
import asyncio
import contextlib
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
from httpx import ASGITransport, AsyncClient

from api.main import create_app
from core.config import Settings
from fakes import FakeAuthFactory, FakeAuthService, FakeDataStore
from services.bookmark_sync import BookmarkStoreSync
from services.change_feed import LocalChangeFeed
from services.dispatcher import EventDispatcher
from services.runtime import Runtime
from services.session_manager import SessionManager


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        site_url="http://app.test",
    )


@pytest.fixture
def feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture
def store(feed: LocalChangeFeed) -> FakeDataStore:
    return FakeDataStore(feed)


@pytest.fixture
def auth() -> FakeAuthService:
    return FakeAuthService()


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def sync(
    store: FakeDataStore, feed: LocalChangeFeed, dispatcher: EventDispatcher,
) -> BookmarkStoreSync:
    return BookmarkStoreSync(store, feed, dispatcher)


@pytest.fixture
def session_manager(
    auth: FakeAuthService, sync: BookmarkStoreSync, dispatcher: EventDispatcher,
) -> SessionManager:
    return SessionManager(
        auth, sync, dispatcher, oauth_provider="google", redirect_to="http://app.test/auth/callback",
    )


async def _run_until_idle(dispatcher: EventDispatcher, sync: BookmarkStoreSync) -> None:
    for _ in range(20):
        await dispatcher.drain()
        await sync.wait_for_bootstrap()
        await asyncio.sleep(0)
        if dispatcher.pending == 0 and not sync.bootstrap_in_flight:
            break


@pytest.fixture
def settle(
    dispatcher: EventDispatcher, sync: BookmarkStoreSync,
) -> Callable[[], Awaitable[None]]:
    """Run queued events and scheduled bootstraps until nothing is pending."""
    return lambda: _run_until_idle(dispatcher, sync)


@pytest.fixture
def auth_factory() -> FakeAuthFactory:
    return FakeAuthFactory()


@pytest.fixture
def runtime(
    auth_factory: FakeAuthFactory,
    store: FakeDataStore,
    feed: LocalChangeFeed,
    settings: Settings,
) -> Runtime:
    """Runtime whose dispatchers are driven by ``settle_runtime``."""
    return Runtime(store=store, feed=feed, settings=settings, auth_factory=auth_factory)


MakeClient = Callable[[], Awaitable[AsyncClient]]


@pytest.fixture
async def make_client(runtime: Runtime) -> AsyncGenerator[MakeClient]:
    """
    Open HTTP clients against an app wired to in-memory collaborators.

    Each client keeps its own cookies, so each one is a separate browser.
    """
    app = create_app(runtime)
    async with contextlib.AsyncExitStack() as stack:

        async def open_client() -> AsyncClient:
            return await stack.enter_async_context(
                AsyncClient(transport=ASGITransport(app=app), base_url="http://test"),
            )

        yield open_client
    await runtime.stop()


@pytest.fixture
async def client(make_client: MakeClient) -> AsyncClient:
    return await make_client()


@pytest.fixture
def settle_runtime(runtime: Runtime) -> Callable[[], Awaitable[None]]:
    """``settle`` for every browser session of ``runtime``."""

    async def settle_all() -> None:
        # Changes made by one session are delivered to the others' queues
        for _ in range(2):
            for session in list(runtime.sessions.values()):
                await _run_until_idle(session.dispatcher, session.sync)

    return settle_all
