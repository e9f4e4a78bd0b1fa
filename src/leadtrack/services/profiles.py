from __future__ import annotations

from uuid import uuid4

from leadtrack.domain import rules
from leadtrack.domain.models import Profile
from leadtrack.domain.stages import Role
from leadtrack.services.events import EventLogger
from leadtrack.services.utils import utc_now_iso
from leadtrack.store.rows import profile_from_row
from leadtrack.store.sqlite import SqliteStore


class ProfileNotFoundError(RuntimeError):
    pass


def create_profile(
    store: SqliteStore,
    name: str,
    email: str | None,
    role: str = Role.BROKER.value,
    user_id: str | None = None,
    events: EventLogger | None = None,
) -> Profile:
    rules.require(name, "name")
    rules.validate_enum(role, [r.value for r in Role], "role")
    email = email.strip().lower() if email else None
    if email and store.fetch_one("SELECT user_id FROM profiles WHERE email = ?", (email,)):
        raise rules.ValidationError(f"A profile with email {email} already exists.")

    now = utc_now_iso()
    user_id = user_id or str(uuid4())
    store.execute(
        "INSERT INTO profiles (user_id, name, email, role, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (user_id, name.strip(), email, role, now, now),
    )
    if events:
        events.log(
            event_type="created",
            entity_type="profile",
            entity_id=user_id,
            actor_id=user_id,
            changed_fields=["name", "email", "role"],
        )
    return get_profile(store, user_id)


def get_profile(store: SqliteStore, user_id: str) -> Profile:
    row = store.fetch_one("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
    if row is None:
        raise ProfileNotFoundError(f"Profile not found: {user_id}")
    return profile_from_row(row)


def find_profile(store: SqliteStore, user: str) -> Profile | None:
    """Look a profile up by user id or email."""
    row = store.fetch_one(
        "SELECT * FROM profiles WHERE user_id = ? OR email = ?",
        (user, user.strip().lower()),
    )
    return profile_from_row(row) if row else None


def ensure_profile(
    store: SqliteStore,
    user_id: str,
    email: str | None,
    name: str | None = None,
    events: EventLogger | None = None,
) -> Profile:
    """Return the profile for a signed-in user, creating a broker profile on
    first sign-in."""
    row = store.fetch_one("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
    if row:
        return profile_from_row(row)
    fallback = (email or "").split("@")[0] or user_id
    return create_profile(
        store,
        name=name or fallback,
        email=email,
        role=Role.BROKER.value,
        user_id=user_id,
        events=events,
    )


def list_profiles(store: SqliteStore, role: str | None = None) -> list[Profile]:
    params: list[str] = []
    where = ""
    if role:
        rules.validate_enum(role, [r.value for r in Role], "role")
        where = "WHERE role = ?"
        params.append(role)
    rows = store.fetch_all(f"SELECT * FROM profiles {where} ORDER BY name ASC", params)
    return [profile_from_row(row) for row in rows]
