"""Pydantic schemas for identities and sessions issued by the Auth Service."""
from typing import Literal

from pydantic import BaseModel, ConfigDict

AuthEventType = Literal[
    "INITIAL_SESSION",
    "SIGNED_IN",
    "SIGNED_OUT",
    "TOKEN_REFRESHED",
    "USER_UPDATED",
]


class Identity(BaseModel):
    """The authenticated user principal for the current session."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None


class Session(BaseModel):
    """A session as returned by the Auth Service."""

    access_token: str
    refresh_token: str | None = None
    user: Identity


class AuthEvent(BaseModel):
    """A session state change reported by the Auth Service."""

    event: AuthEventType
    session: Session | None = None

    @property
    def identity(self) -> Identity | None:
        """The session user carried by the event, if any."""
        return self.session.user if self.session is not None else None
