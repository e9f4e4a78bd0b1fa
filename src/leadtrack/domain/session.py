"""Sign-in session state, driven by identity provider events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from leadtrack.domain.models import Profile


class SessionStatus(str, Enum):
    LOADING = "loading"
    GUEST = "guest"
    AUTHED = "authed"
    PASSWORD_RECOVERY = "password_recovery"


class AuthEvent(str, Enum):
    INITIAL_SESSION = "initial_session"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    PASSWORD_RECOVERY = "password_recovery"
    USER_UPDATED = "user_updated"
    TOKEN_REFRESHED = "token_refreshed"


class SessionError(RuntimeError):
    pass


@dataclass(frozen=True)
class Session:
    status: SessionStatus = SessionStatus.LOADING
    profile: Profile | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHED and self.profile is not None


GUEST = Session(status=SessionStatus.GUEST)


def apply_auth_event(session: Session, event: AuthEvent, profile: Profile | None = None) -> Session:
    """Return the session after a provider event.

    ``profile`` is the loaded profile for sign-in events; passing None for
    those means there was no provider session or the profile could not be
    loaded, and the user ends up signed out.
    """
    if event is AuthEvent.PASSWORD_RECOVERY:
        return Session(status=SessionStatus.PASSWORD_RECOVERY)
    if event in (AuthEvent.INITIAL_SESSION, AuthEvent.SIGNED_IN):
        if profile is None:
            return GUEST
        return Session(status=SessionStatus.AUTHED, profile=profile)
    if event is AuthEvent.SIGNED_OUT:
        return GUEST
    # Any other event ends password recovery.
    if session.is_authenticated:
        return session
    return GUEST


def require_authenticated(session: Session) -> Profile:
    if session.status is SessionStatus.PASSWORD_RECOVERY:
        raise SessionError("Password recovery in progress. Run `leadtrack login` again.")
    if not session.is_authenticated:
        raise SessionError("Not signed in. Run `leadtrack login <user>`.")
    return session.profile
