"""Current authentication identity and its bridge to the bookmark sync."""
import logging
from enum import Enum

from core.errors import AuthFailureError
from schemas.auth import AuthEvent, Identity
from services.bookmark_sync import BookmarkStoreSync
from services.dispatcher import AuthChanged, EventDispatcher
from services.interfaces import AuthService, AuthSubscription

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of the session manager."""

    UNINITIALIZED = "uninitialized"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class SessionManager:
    """
    Maintain exactly one current identity (or none).

    Identity changes only through ``initialize`` and ``on_auth_event``;
    ``sign_in``/``sign_out`` merely ask the Auth Service, whose resulting
    event arrives later through the dispatcher. Auth Service failures are
    logged and leave the identity unchanged.
    """

    def __init__(
        self,
        auth: AuthService,
        sync: BookmarkStoreSync,
        dispatcher: EventDispatcher,
        oauth_provider: str = "google",
        redirect_to: str = "",
    ) -> None:
        self._auth = auth
        self._sync = sync
        self._dispatcher = dispatcher
        self._oauth_provider = oauth_provider
        self._redirect_to = redirect_to
        self._identity: Identity | None = None
        self._initialized = False
        self._auth_events = 0
        self._auth_subscription: AuthSubscription | None = None

        dispatcher.register(AuthChanged, self.on_auth_event)

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def state(self) -> SessionState:
        if not self._initialized:
            return SessionState.UNINITIALIZED
        if self._identity is None:
            return SessionState.ANONYMOUS
        return SessionState.AUTHENTICATED

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load the existing session and start listening for auth changes. Runs once."""
        if self._initialized:
            return
        if self._auth_subscription is None:
            self._auth_subscription = self._auth.subscribe_to_auth_changes(
                lambda event: self._dispatcher.publish(AuthChanged(event)),
            )
        events_seen = self._auth_events
        try:
            session = await self._auth.get_current_session()
        except AuthFailureError as e:
            logger.warning("auth_session_lookup_failed", extra={"error": str(e)})
            session = None
        self._initialized = True
        if self._auth_events != events_seen:
            # An auth event applied during the lookup is newer than its result
            logger.info("auth_session_lookup_superseded")
            return
        await self._set_identity(session.user if session is not None else None)

    async def on_auth_event(self, event: AuthChanged | AuthEvent) -> None:
        """Apply a session change reported by the Auth Service."""
        auth_event = event.event if isinstance(event, AuthChanged) else event
        self._auth_events += 1
        logger.info(
            "auth_state_changed",
            extra={
                "auth_event": auth_event.event,
                "user_id": auth_event.identity.id if auth_event.identity else None,
            },
        )
        await self._set_identity(auth_event.identity)

    async def _set_identity(self, identity: Identity | None) -> None:
        self._identity = identity
        if identity is not None:
            self._sync.schedule_bootstrap(identity)
        else:
            await self._sync.teardown()

    async def sign_in(self) -> str | None:
        """Begin the OAuth redirect login; returns the URL to navigate to."""
        try:
            return await self._auth.sign_in_with_oauth(self._oauth_provider, self._redirect_to)
        except AuthFailureError as e:
            logger.warning(
                "auth_sign_in_failed",
                extra={"provider": self._oauth_provider, "error": str(e)},
            )
            return None

    async def sign_out(self) -> None:
        """Ask the Auth Service to end the session."""
        try:
            await self._auth.sign_out()
        except AuthFailureError as e:
            logger.warning("auth_sign_out_failed", extra={"error": str(e)})

    def close(self) -> None:
        """Stop listening for auth changes."""
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
