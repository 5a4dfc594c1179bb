"""FastAPI dependencies for injection."""
from fastapi import Depends, HTTPException, Request, Response

from services.runtime import ClientSession, Runtime
from services.view_controller import ViewController

SESSION_COOKIE = "bookmarks_session"


def get_runtime(request: Request) -> Runtime:
    """The runtime created for this app."""
    return request.app.state.runtime


def get_client_session(
    request: Request,
    runtime: Runtime = Depends(get_runtime),
) -> ClientSession:
    """The caller's browser session, from its session cookie."""
    session = runtime.get_session(request.cookies.get(SESSION_COOKIE))
    if session is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return session


async def get_or_open_client_session(
    request: Request,
    runtime: Runtime = Depends(get_runtime),
) -> ClientSession:
    """Like ``get_client_session``, but starts a new session for unknown callers."""
    session = runtime.get_session(request.cookies.get(SESSION_COOKIE))
    if session is None:
        session = await runtime.open_session()
    return session


def set_session_cookie(response: Response, session: ClientSession, runtime: Runtime) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session.id,
        httponly=True,
        samesite="lax",
        secure=runtime.settings.session_cookie_secure,
    )


def get_view_controller(
    session: ClientSession = Depends(get_client_session),
) -> ViewController:
    return session.controller


def require_identity(
    controller: ViewController = Depends(get_view_controller),
) -> ViewController:
    """Reject mutations while the caller's session is signed out."""
    if controller.identity is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return controller


__all__ = [
    "SESSION_COOKIE",
    "get_client_session",
    "get_or_open_client_session",
    "get_runtime",
    "get_view_controller",
    "require_identity",
    "set_session_cookie",
]
