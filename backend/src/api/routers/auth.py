"""Sign-in/sign-out endpoints backing the OAuth redirect flow."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from api.dependencies import (
    get_client_session,
    get_or_open_client_session,
    get_runtime,
    set_session_cookie,
)
from core.errors import AuthFailureError
from services.runtime import ClientSession, Runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class SignInResponse(BaseModel):
    """Where the browser must go to continue the OAuth login."""

    url: str


@router.post("/sign-in", response_model=SignInResponse)
async def sign_in(
    response: Response,
    session: ClientSession = Depends(get_or_open_client_session),
    runtime: Runtime = Depends(get_runtime),
) -> SignInResponse:
    """Begin the OAuth redirect login with the configured provider."""
    set_session_cookie(response, session, runtime)
    url = await session.controller.sign_in()
    if url is None:
        raise HTTPException(status_code=502, detail="Sign-in unavailable")
    return SignInResponse(url=url)


@router.get("/callback")
async def oauth_callback(
    access_token: str = Query(min_length=1),
    refresh_token: str | None = None,
    session: ClientSession = Depends(get_or_open_client_session),
    runtime: Runtime = Depends(get_runtime),
) -> RedirectResponse:
    """Adopt the tokens issued by the identity provider, then return home."""
    complete_sign_in = getattr(session.auth, "complete_sign_in", None)
    if complete_sign_in is None:
        raise HTTPException(status_code=404, detail="OAuth callback not supported")
    try:
        await complete_sign_in(access_token, refresh_token)
    except AuthFailureError as e:
        logger.warning("auth_callback_failed", extra={"error": str(e)})
        raise HTTPException(status_code=401, detail="Sign-in failed") from e
    redirect = RedirectResponse(url="/bookmarks/", status_code=303)
    set_session_cookie(redirect, session, runtime)
    return redirect


@router.post("/sign-out", status_code=202)
async def sign_out(
    session: ClientSession = Depends(get_client_session),
) -> None:
    """Ask the Auth Service to end the session."""
    await session.controller.sign_out()
