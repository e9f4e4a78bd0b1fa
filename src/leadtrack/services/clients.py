from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from leadtrack.domain import rules
from leadtrack.domain.access import (
    AccessDeniedError,
    owner_scope,
    require_admin,
    require_client_access,
    require_manager,
    sees_all_clients,
)
from leadtrack.domain.lifecycle import (
    InteractionRequest,
    effective_follow_up_state,
    follow_up_due_at,
)
from leadtrack.domain.models import Client, Interaction, Profile
from leadtrack.domain.stages import (
    PENDING_FOLLOW_UP_STATES,
    ClientStatus,
    FollowUpState,
    InteractionType,
)
from leadtrack.services import interactions
from leadtrack.services.events import EventLogger
from leadtrack.services.interactions import ClientNotFoundError
from leadtrack.services.profiles import ProfileNotFoundError, get_profile
from leadtrack.services.utils import parse_currency, utc_now, utc_now_iso
from leadtrack.store.rows import CLIENT_COLUMNS, client_from_row
from leadtrack.store.sqlite import SqliteStore

DETAIL_FIELDS = ("name", "phone", "email", "source", "observations", "product", "property_value")
MANAGER_FIELDS = ("owner_id", "status")


@dataclass(frozen=True)
class ClientOverview:
    client: Client
    pending_follow_up: Interaction | None
    follow_up_state: FollowUpState

    @property
    def follow_up_due(self) -> datetime | None:
        return follow_up_due_at(self.pending_follow_up)


def create_client(
    store: SqliteStore,
    actor: Profile,
    name: str,
    phone: str,
    source: str,
    email: str | None = None,
    status: str = ClientStatus.FIRST_CONTACT.value,
    observations: str | None = None,
    product: str | None = None,
    property_value: str | float | None = None,
    owner_id: str | None = None,
    events: EventLogger | None = None,
) -> Client:
    rules.require(name, "name")
    rules.require(phone, "phone")
    rules.require(source, "source")
    rules.validate_enum(status, [s.value for s in ClientStatus], "status")
    amount = parse_currency(property_value)

    owner_id = owner_id or actor.user_id
    if owner_id != actor.user_id:
        if not sees_all_clients(actor):
            raise AccessDeniedError("Brokers can only create clients they own.")
        get_profile(store, owner_id)

    now = utc_now_iso()
    client_id = str(uuid4())
    store.execute(
        "INSERT INTO clients (client_id, name, phone, email, source, status, follow_up_state, owner_id, "
        "observations, product, property_value, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            client_id,
            name.strip(),
            phone.strip(),
            email,
            source.strip(),
            status,
            FollowUpState.NO_FOLLOW_UP.value,
            owner_id,
            observations,
            product,
            amount,
            now,
            now,
        ),
    )
    if events:
        events.log(
            event_type="created",
            entity_type="client",
            entity_id=client_id,
            actor_id=actor.user_id,
            changed_fields=["name", "phone", "source", "status", "owner_id"],
        )
    return get_client(store, actor, client_id)


def get_client(store: SqliteStore, actor: Profile, client_id: str) -> Client:
    row = store.fetch_one(f"SELECT {CLIENT_COLUMNS} FROM clients WHERE client_id = ?", (client_id,))
    if row is None:
        raise ClientNotFoundError(f"Client not found: {client_id}")
    client = client_from_row(row)
    require_client_access(actor, client)
    return client


def get_overview(
    store: SqliteStore, actor: Profile, client_id: str, now: datetime | None = None
) -> ClientOverview:
    with store.session() as session:
        snapshot = interactions.load_snapshot(session, client_id)
    require_client_access(actor, snapshot.client)
    return _overview(snapshot.client, snapshot.pending_follow_up, now or utc_now())


def list_clients(
    store: SqliteStore,
    actor: Profile,
    q: str | None = None,
    status: str | None = None,
    broker_id: str | None = None,
    now: datetime | None = None,
) -> list[ClientOverview]:
    owner_id = owner_scope(actor, broker_id)
    clauses: list[str] = []
    params: list[str] = []
    if owner_id:
        clauses.append("owner_id = ?")
        params.append(owner_id)
    if status:
        rules.validate_enum(status, [s.value for s in ClientStatus], "status")
        clauses.append("status = ?")
        params.append(status)
    if q:
        clauses.append("(name LIKE ? OR phone LIKE ? OR source LIKE ?)")
        pattern = f"%{q.strip()}%"
        params.extend([pattern, pattern, pattern])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = store.fetch_all(
        f"SELECT {CLIENT_COLUMNS} FROM clients {where} ORDER BY created_at DESC, rowid DESC",
        params,
    )
    pending = interactions.pending_follow_ups(store, owner_id)
    now = now or utc_now()
    return [
        _overview(client, pending.get(client.client_id), now)
        for client in (client_from_row(row) for row in rows)
    ]


def update_client(
    store: SqliteStore,
    actor: Profile,
    client_id: str,
    fields: dict[str, Any],
    events: EventLogger | None = None,
) -> Client:
    """Edit client details. Pipeline status and ownership are manager-only
    edits; follow-up state only ever changes through interactions."""
    current = get_client(store, actor, client_id)
    unknown = set(fields) - set(DETAIL_FIELDS) - set(MANAGER_FIELDS)
    if unknown:
        raise rules.ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    updates: dict[str, Any] = {}
    for field, value in fields.items():
        if field in MANAGER_FIELDS:
            require_manager(actor, f"change {field}")
        if field in ("name", "phone", "source"):
            rules.require(value, field)
        if field == "status":
            rules.validate_enum(value, [s.value for s in ClientStatus], "status")
        if field == "owner_id":
            rules.require(value, field)
            get_profile(store, value)
        if field == "property_value":
            value = parse_currency(value)
        if getattr(current, field) != value:
            updates[field] = value

    if not updates:
        return current

    assignments = ", ".join(f"{field} = ?" for field in updates)
    params = [*updates.values(), utc_now_iso(), client_id]
    store.execute(f"UPDATE clients SET {assignments}, updated_at = ? WHERE client_id = ?", params)
    if events:
        events.log(
            event_type="updated",
            entity_type="client",
            entity_id=client_id,
            actor_id=actor.user_id,
            changed_fields=sorted(updates),
        )
    return get_client(store, actor, client_id)


def archive_client(
    store: SqliteStore,
    actor: Profile,
    client_id: str,
    observation: str = "",
    now: datetime | None = None,
    events: EventLogger | None = None,
) -> Client:
    result = interactions.record_interaction(
        store,
        actor,
        client_id,
        InteractionRequest(
            type=InteractionType.STATUS_CHANGE,
            observation=observation,
            target_status=ClientStatus.ARCHIVED,
        ),
        now=now,
        events=events,
    )
    return result.client


def delete_client(
    store: SqliteStore, actor: Profile, client_id: str, events: EventLogger | None = None
) -> None:
    require_admin(actor, "delete clients")
    get_client(store, actor, client_id)
    with store.session() as session:
        session.execute("DELETE FROM interactions WHERE client_id = ?", (client_id,))
        session.execute("DELETE FROM clients WHERE client_id = ?", (client_id,))
    if events:
        events.log(
            event_type="deleted",
            entity_type="client",
            entity_id=client_id,
            actor_id=actor.user_id,
        )


def _overview(client: Client, pending: Interaction | None, now: datetime) -> ClientOverview:
    # A resolved follow-up keeps its scheduled row until the next schedule.
    if client.follow_up_state not in PENDING_FOLLOW_UP_STATES:
        pending = None
    return ClientOverview(
        client=client,
        pending_follow_up=pending,
        follow_up_state=effective_follow_up_state(client, pending, now),
    )


def resolve_owner(store: SqliteStore, owner_id: str | None) -> Profile | None:
    if not owner_id:
        return None
    try:
        return get_profile(store, owner_id)
    except ProfileNotFoundError:
        return None
