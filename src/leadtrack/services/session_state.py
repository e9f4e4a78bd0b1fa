from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from leadtrack.domain.session import AuthEvent, Session, SessionStatus, apply_auth_event
from leadtrack.services.profiles import ProfileNotFoundError, get_profile
from leadtrack.store.sqlite import SqliteStore

SESSION_STATE_FILE = ".session.json"


def load_session(workspace_path: Path, store: SqliteStore) -> Session:
    """Boot the session from disk, like an initial provider session event."""
    path = workspace_path / SESSION_STATE_FILE
    if not path.exists():
        return apply_auth_event(Session(), AuthEvent.INITIAL_SESSION)
    data = json.loads(path.read_text(encoding="utf-8"))
    status = data.get("status")
    if status == SessionStatus.PASSWORD_RECOVERY.value:
        return apply_auth_event(Session(), AuthEvent.PASSWORD_RECOVERY)

    profile = None
    user_id = data.get("user_id")
    if status == SessionStatus.AUTHED.value and user_id:
        try:
            profile = get_profile(store, str(user_id))
        except ProfileNotFoundError:
            profile = None
    return apply_auth_event(Session(), AuthEvent.INITIAL_SESSION, profile)


def save_session(workspace_path: Path, session: Session) -> None:
    path = workspace_path / SESSION_STATE_FILE
    payload: dict[str, Any] = {"status": session.status.value}
    if session.profile is not None:
        payload["user_id"] = session.profile.user_id
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
