"""Tests for the HTTP Auth Service adapter."""
import json
from collections.abc import Callable

import httpx
import pytest

from core.errors import AuthFailureError
from schemas.auth import AuthEvent, Identity, Session
from services.auth_service import HttpAuthService, create_auth_client

BASE_URL = "https://auth.test/auth/v1"
USER_PAYLOAD = {"id": "u1", "email": "u1@example.com", "aud": "authenticated"}


def make_service(handler: Callable[[httpx.Request], httpx.Response]) -> HttpAuthService:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpAuthService(BASE_URL, client=client)


def user_endpoint(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/user"):
        if request.headers.get("Authorization") == "Bearer good":
            return httpx.Response(200, json=USER_PAYLOAD)
        return httpx.Response(401, json={"msg": "invalid token"})
    if request.url.path.endswith("/logout"):
        return httpx.Response(204)
    if request.url.path.endswith("/token"):
        body = json.loads(request.content)
        assert request.url.params["grant_type"] == "refresh_token"
        assert body == {"refresh_token": "r1"}
        return httpx.Response(
            200,
            json={"access_token": "good", "refresh_token": "r2", "user": USER_PAYLOAD},
        )
    return httpx.Response(404)


class TestSignIn:
    """Tests for the OAuth redirect flow."""

    async def test__sign_in_with_oauth__builds_authorize_url(self) -> None:
        """The URL names the provider and the redirect target."""
        service = make_service(user_endpoint)

        url = await service.sign_in_with_oauth("google", "http://app.test/auth/callback")

        assert url == (
            f"{BASE_URL}/authorize?provider=google"
            "&redirect_to=http%3A%2F%2Fapp.test%2Fauth%2Fcallback"
        )

    async def test__sign_in_with_oauth__unconfigured_raises(self) -> None:
        """Without a base URL sign-in cannot start."""
        service = HttpAuthService("")

        with pytest.raises(AuthFailureError):
            await service.sign_in_with_oauth("google", "")
        await service.aclose()

    async def test__complete_sign_in__stores_session_and_emits(self) -> None:
        """Valid tokens produce a session and a SIGNED_IN event."""
        service = make_service(user_endpoint)
        events: list[AuthEvent] = []
        service.subscribe_to_auth_changes(events.append)

        session = await service.complete_sign_in("good", "r1")

        assert session.user == Identity(id="u1", email="u1@example.com")
        assert service.session == session
        assert [e.event for e in events] == ["SIGNED_IN"]
        assert events[0].identity == session.user

    async def test__complete_sign_in__rejected_token_raises(self) -> None:
        """An invalid token is an auth failure and emits nothing."""
        service = make_service(user_endpoint)
        events: list[AuthEvent] = []
        service.subscribe_to_auth_changes(events.append)

        with pytest.raises(AuthFailureError):
            await service.complete_sign_in("bad")

        assert service.session is None
        assert events == []


class TestSession:
    """Tests for session lookup, refresh and sign-out."""

    async def test__get_current_session__none_before_sign_in(self) -> None:
        service = make_service(user_endpoint)

        assert await service.get_current_session() is None

    async def test__get_current_session__validates_stored_token(self) -> None:
        """The stored session is returned while its token resolves."""
        service = make_service(user_endpoint)
        await service.complete_sign_in("good")

        session = await service.get_current_session()

        assert session is not None
        assert session.user.id == "u1"

    async def test__get_current_session__expired_token_clears_session(self) -> None:
        """A token the server rejects means there is no session."""
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(200, json=USER_PAYLOAD)
            return httpx.Response(401)

        service = make_service(handler)
        await service.complete_sign_in("good")

        assert await service.get_current_session() is None
        assert service.session is None

    async def test__get_current_session__server_error_raises(self) -> None:
        """Errors other than an invalid token are auth failures."""
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(200, json=USER_PAYLOAD)
            return httpx.Response(503)

        service = make_service(handler)
        await service.complete_sign_in("good")

        with pytest.raises(AuthFailureError):
            await service.get_current_session()

    async def test__refresh_session__emits_token_refreshed(self) -> None:
        """Refreshing swaps the tokens and reports TOKEN_REFRESHED."""
        service = make_service(user_endpoint)
        await service.complete_sign_in("good", "r1")
        events: list[AuthEvent] = []
        service.subscribe_to_auth_changes(events.append)

        session = await service.refresh_session()

        assert session is not None
        assert session.refresh_token == "r2"
        assert [e.event for e in events] == ["TOKEN_REFRESHED"]

    async def test__sign_out__clears_session_and_emits(self) -> None:
        """A successful logout emits SIGNED_OUT without a session."""
        service = make_service(user_endpoint)
        await service.complete_sign_in("good")
        events: list[AuthEvent] = []
        service.subscribe_to_auth_changes(events.append)

        await service.sign_out()

        assert service.session is None
        assert [(e.event, e.session) for e in events] == [("SIGNED_OUT", None)]

    async def test__sign_out__server_error_keeps_session(self) -> None:
        """A rejected logout raises and leaves the session in place."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/logout"):
                return httpx.Response(500)
            return httpx.Response(200, json=USER_PAYLOAD)

        service = make_service(handler)
        await service.complete_sign_in("good")

        with pytest.raises(AuthFailureError):
            await service.sign_out()
        assert service.session is not None

    async def test__sign_out__network_error_raises_auth_failure(self) -> None:
        """Transport errors are wrapped."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/logout"):
                raise httpx.ConnectError("connection refused")
            return httpx.Response(200, json=USER_PAYLOAD)

        service = make_service(handler)
        await service.complete_sign_in("good")

        with pytest.raises(AuthFailureError):
            await service.sign_out()

    async def test__unsubscribe__stops_events(self) -> None:
        service = make_service(user_endpoint)
        events: list[AuthEvent] = []
        subscription = service.subscribe_to_auth_changes(events.append)

        subscription.unsubscribe()
        await service.complete_sign_in("good")

        assert events == []


class TestRefresh:
    """Tests for access token refresh."""

    async def test__get_current_session__expired_token_is_refreshed(self) -> None:
        """A rejected access token is exchanged using the refresh token."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/user"):
                if request.headers.get("Authorization") == "Bearer fresh":
                    return httpx.Response(200, json=USER_PAYLOAD)
                if request.headers.get("Authorization") == "Bearer stale":
                    return httpx.Response(401)
            return httpx.Response(
                200,
                json={"access_token": "fresh", "refresh_token": "r2", "user": USER_PAYLOAD},
            )

        service = make_service(handler)
        service._session = Session(
            access_token="stale", refresh_token="r1", user=Identity(id="u1"),
        )
        events: list[AuthEvent] = []
        service.subscribe_to_auth_changes(events.append)

        session = await service.get_current_session()

        assert session is not None
        assert session.access_token == "fresh"
        assert [e.event for e in events] == ["TOKEN_REFRESHED"]

    async def test__refresh_session__rejected_refresh_token_signs_out(self) -> None:
        """An invalid refresh token ends the session with SIGNED_OUT."""
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json=USER_PAYLOAD)

        service = make_service(handler)
        await service.complete_sign_in("good", "r1")
        events: list[AuthEvent] = []
        service.subscribe_to_auth_changes(events.append)

        assert await service.refresh_session() is None

        assert service.session is None
        assert [(e.event, e.session) for e in events] == [("SIGNED_OUT", None)]

    async def test__refresh_session__server_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return httpx.Response(503)
            return httpx.Response(200, json=USER_PAYLOAD)

        service = make_service(handler)
        await service.complete_sign_in("good", "r1")

        with pytest.raises(AuthFailureError):
            await service.refresh_session()
        assert service.session is not None

    async def test__refresh_session__without_refresh_token_keeps_session(self) -> None:
        service = make_service(user_endpoint)
        session = await service.complete_sign_in("good")

        assert await service.refresh_session() == session


class TestClientOwnership:
    """Tests for sharing one HTTP client between adapters."""

    async def test__aclose__leaves_shared_client_open(self) -> None:
        client = create_auth_client(BASE_URL)
        first = HttpAuthService(BASE_URL, client=client)
        second = HttpAuthService(BASE_URL, client=client)

        await first.aclose()
        await second.aclose()

        assert client.is_closed is False
        await client.aclose()

    async def test__aclose__closes_own_client(self) -> None:
        service = HttpAuthService(BASE_URL)

        await service.aclose()

        assert service._client.is_closed is True
