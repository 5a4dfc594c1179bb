"""HTTP client for a GoTrue-style Auth Service."""
import logging
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from core.errors import AuthFailureError
from schemas.auth import AuthEvent, AuthEventType, Identity, Session
from services.interfaces import AuthChangeHandler

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class _Listener:
    """Registration returned by ``subscribe_to_auth_changes``."""

    def __init__(self, owner: "HttpAuthService", handler: AuthChangeHandler) -> None:
        self._owner = owner
        self.handler = handler

    def unsubscribe(self) -> None:
        self._owner._listeners.discard(self)


def create_auth_client(
    base_url: str, api_key: str = "", timeout: float = DEFAULT_TIMEOUT,
) -> httpx.AsyncClient:
    """HTTP client for the Auth Service, shareable by many ``HttpAuthService``."""
    headers = {"apikey": api_key} if api_key else {}
    return httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)


class HttpAuthService:
    """
    Auth Service adapter for one browser session.

    Holds that session's tokens in memory. The OAuth flow itself happens in
    the browser: ``sign_in_with_oauth`` only builds the authorize URL, and the
    callback route hands the issued tokens to ``complete_sign_in``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or create_auth_client(self._base_url, api_key, timeout)
        self._session: Session | None = None
        self._listeners: set[_Listener] = set()

    @property
    def session(self) -> Session | None:
        return self._session

    async def aclose(self) -> None:
        """Close the HTTP client unless it was passed in (and is shared)."""
        if self._owns_client:
            await self._client.aclose()

    def subscribe_to_auth_changes(self, handler: AuthChangeHandler) -> _Listener:
        listener = _Listener(self, handler)
        self._listeners.add(listener)
        return listener

    def _emit(self, event: AuthEventType, session: Session | None) -> None:
        auth_event = AuthEvent(event=event, session=session)
        for listener in list(self._listeners):
            listener.handler(auth_event)

    async def _request(self, method: str, path: str, **kwargs: object) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)  # type: ignore[arg-type]
        except httpx.HTTPError as e:
            raise AuthFailureError(f"{method} {path} failed: {e}") from e
        return response

    async def _fetch_user(self, access_token: str) -> Identity | None:
        """Resolve the token's user; None when the token is no longer valid."""
        response = await self._request(
            "GET", "/user", headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code in (401, 403):
            return None
        if response.is_error:
            raise AuthFailureError(f"GET /user returned {response.status_code}")
        try:
            return Identity.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise AuthFailureError(f"Invalid user payload: {e}") from e

    async def get_current_session(self) -> Session | None:
        """Return the stored session if its token still resolves to a user."""
        if self._session is None:
            return None
        user = await self._fetch_user(self._session.access_token)
        if user is None:
            logger.info("auth_session_expired", extra={"user_id": self._session.user.id})
            if self._session.refresh_token:
                return await self.refresh_session()
            self._session = None
            return None
        self._session = self._session.model_copy(update={"user": user})
        return self._session

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        """Build the provider authorize URL; the browser performs the redirect."""
        if not self._base_url:
            raise AuthFailureError("Auth Service URL is not configured")
        params = {"provider": provider}
        if redirect_to:
            params["redirect_to"] = redirect_to
        return f"{self._base_url}/authorize?{urlencode(params)}"

    async def complete_sign_in(
        self, access_token: str, refresh_token: str | None = None,
    ) -> Session:
        """Adopt tokens returned by the OAuth redirect and emit ``SIGNED_IN``."""
        user = await self._fetch_user(access_token)
        if user is None:
            raise AuthFailureError("Access token rejected")
        self._session = Session(
            access_token=access_token, refresh_token=refresh_token, user=user,
        )
        logger.info("auth_signed_in", extra={"user_id": user.id})
        self._emit("SIGNED_IN", self._session)
        return self._session

    async def refresh_session(self) -> Session | None:
        """
        Exchange the refresh token for a new session and emit ``TOKEN_REFRESHED``.

        A refresh token the server rejects ends the session with ``SIGNED_OUT``.
        """
        if self._session is None or not self._session.refresh_token:
            return self._session
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session.refresh_token},
        )
        if response.status_code in (400, 401):
            user_id = self._session.user.id
            self._session = None
            logger.info("auth_refresh_rejected", extra={"user_id": user_id})
            self._emit("SIGNED_OUT", None)
            return None
        if response.is_error:
            raise AuthFailureError(f"POST /token returned {response.status_code}")
        try:
            self._session = Session.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise AuthFailureError(f"Invalid token payload: {e}") from e
        self._emit("TOKEN_REFRESHED", self._session)
        return self._session

    async def sign_out(self) -> None:
        """Revoke the session server-side, then emit ``SIGNED_OUT``."""
        if self._session is None:
            self._emit("SIGNED_OUT", None)
            return
        response = await self._request(
            "POST",
            "/logout",
            headers={"Authorization": f"Bearer {self._session.access_token}"},
        )
        # An already-invalid token counts as signed out
        if response.is_error and response.status_code not in (401, 403, 404):
            raise AuthFailureError(f"POST /logout returned {response.status_code}")
        user_id = self._session.user.id
        self._session = None
        logger.info("auth_signed_out", extra={"user_id": user_id})
        self._emit("SIGNED_OUT", None)
