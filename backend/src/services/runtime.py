"""
Wires the sync core to its collaborators for one running process.

The Data Store and Change Feed are shared by the whole process. Every browser
session gets its own ``ClientSession``: an Auth Service adapter holding that
session's tokens, a dispatcher, a ``SessionManager``, a ``BookmarkStoreSync``
and a ``ViewController``. One browser's identity never leaks into another's.
"""
import asyncio
import contextlib
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import Settings
from core.errors import AuthFailureError
from core.redis import RedisClient, set_redis_client
from db.session import create_engine, create_session_factory, init_db
from schemas.auth import Identity
from services.auth_service import HttpAuthService, create_auth_client
from services.bookmark_store import SqlBookmarkStore
from services.bookmark_sync import BookmarkStoreSync
from services.change_feed import LocalChangeFeed, RedisChangeFeed
from services.dispatcher import EventDispatcher
from services.interfaces import AuthService, ChangeFeed, DataStore
from services.session_manager import SessionManager
from services.view_controller import ViewController

logger = logging.getLogger(__name__)

AuthFactory = Callable[[], AuthService]


@dataclass
class ClientSession:
    """The sync core serving one browser session."""

    id: str
    auth: AuthService
    dispatcher: EventDispatcher
    sync: BookmarkStoreSync
    session_manager: SessionManager
    controller: ViewController

    @classmethod
    def assemble(
        cls,
        session_id: str,
        auth: AuthService,
        store: DataStore,
        feed: ChangeFeed,
        settings: Settings,
    ) -> "ClientSession":
        dispatcher = EventDispatcher()
        sync = BookmarkStoreSync(store, feed, dispatcher, dedupe_inserts=settings.dedupe_inserts)
        session_manager = SessionManager(
            auth,
            sync,
            dispatcher,
            oauth_provider=settings.oauth_provider,
            redirect_to=settings.oauth_redirect_url,
        )
        return cls(
            id=session_id,
            auth=auth,
            dispatcher=dispatcher,
            sync=sync,
            session_manager=session_manager,
            controller=ViewController(session_manager, sync),
        )

    @property
    def identity(self) -> Identity | None:
        return self.session_manager.identity

    async def start(self, run_dispatcher: bool = True) -> None:
        if run_dispatcher:
            self.dispatcher.start()
        await self.session_manager.initialize()

    async def stop(self) -> None:
        self.session_manager.close()
        await self.sync.teardown()
        await self.dispatcher.stop()
        aclose = getattr(self.auth, "aclose", None)
        if aclose is not None:
            await aclose()


@dataclass
class Runtime:
    """Shared collaborators plus one ``ClientSession`` per browser session."""

    store: DataStore
    feed: ChangeFeed
    settings: Settings
    auth_factory: AuthFactory
    engine: AsyncEngine | None = None
    redis: RedisClient | None = None
    auth_client: httpx.AsyncClient | None = None
    sessions: dict[str, ClientSession] = field(default_factory=dict)
    running: bool = False
    _refresh_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    def get_session(self, session_id: str | None) -> ClientSession | None:
        """The session for a cookie value, or None when unknown."""
        if not session_id:
            return None
        return self.sessions.get(session_id)

    async def open_session(self) -> ClientSession:
        """
        Create and initialize the core for a new browser session.

        The oldest sessions are closed once more than ``max_sessions`` are open.
        """
        session = ClientSession.assemble(
            secrets.token_urlsafe(32), self.auth_factory(), self.store, self.feed, self.settings,
        )
        self.sessions[session.id] = session
        await session.start(run_dispatcher=self.running)
        while len(self.sessions) > self.settings.max_sessions:
            await self.close_session(next(iter(self.sessions)))
            logger.info("client_session_evicted")
        logger.info("client_session_opened", extra={"session_count": len(self.sessions)})
        return session

    async def close_session(self, session_id: str) -> None:
        session = self.sessions.pop(session_id, None)
        if session is not None:
            await session.stop()

    async def refresh_sessions(self) -> None:
        """Refresh the access token of every signed-in session."""
        for session in list(self.sessions.values()):
            if session.identity is None:
                continue
            refresh = getattr(session.auth, "refresh_session", None)
            if refresh is None:
                continue
            try:
                await refresh()
            except AuthFailureError as e:
                logger.warning(
                    "auth_refresh_failed",
                    extra={"user_id": session.identity.id, "error": str(e)},
                )

    async def _refresh_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.refresh_sessions()

    async def start(self) -> None:
        self.running = True
        for session in self.sessions.values():
            session.dispatcher.start()
        if self.settings.auth_refresh_interval > 0:
            self._refresh_task = asyncio.create_task(
                self._refresh_periodically(self.settings.auth_refresh_interval),
                name="auth-session-refresh",
            )

    async def stop(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._refresh_task
            self._refresh_task = None
        for session_id in list(self.sessions):
            await self.close_session(session_id)
        self.running = False
        if self.auth_client is not None:
            await self.auth_client.aclose()
        if self.redis is not None:
            await self.redis.close()
            set_redis_client(None)
        if self.engine is not None:
            await self.engine.dispose()


async def build_runtime(settings: Settings) -> Runtime:
    """Connect the configured Data Store, Change Feed and Auth Service."""
    redis_client: RedisClient | None = None
    feed: ChangeFeed
    if settings.redis_enabled:
        redis_client = RedisClient(settings.redis_url, enabled=True)
        await redis_client.connect()
        set_redis_client(redis_client)
    if redis_client is not None and redis_client.is_connected:
        feed = RedisChangeFeed(redis_client)
    else:
        # Live updates then only reach sessions served by this process
        logger.info("change_feed_local")
        feed = LocalChangeFeed()

    engine = create_engine(settings.database_url)
    await init_db(engine)
    store = SqlBookmarkStore(create_session_factory(engine), feed)

    auth_client = create_auth_client(
        settings.auth_url, settings.auth_api_key, timeout=settings.auth_timeout,
    )
    return Runtime(
        store=store,
        feed=feed,
        settings=settings,
        auth_factory=lambda: HttpAuthService(settings.auth_url, client=auth_client),
        engine=engine,
        redis=redis_client,
        auth_client=auth_client,
    )
