from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from leadtrack.domain import lifecycle
from leadtrack.domain.access import require_client_access
from leadtrack.domain.lifecycle import ClientSnapshot, InteractionRequest, LifecycleResult
from leadtrack.domain.models import Client, Interaction, Profile
from leadtrack.domain.stages import FollowUpResolution, InteractionType
from leadtrack.services.events import EventLogger
from leadtrack.services.utils import to_iso, utc_now
from leadtrack.store.rows import (
    CLIENT_COLUMNS,
    INTERACTION_COLUMNS,
    client_from_row,
    interaction_from_row,
)
from leadtrack.store.sqlite import SqliteSession, SqliteStore


class ClientNotFoundError(RuntimeError):
    pass


def record_interaction(
    store: SqliteStore,
    actor: Profile,
    client_id: str,
    request: InteractionRequest,
    now: datetime | None = None,
    events: EventLogger | None = None,
) -> LifecycleResult:
    now = now or utc_now()
    with store.session(immediate=True) as session:
        snapshot = load_snapshot(session, client_id)
        require_client_access(actor, snapshot.client)
        result = lifecycle.record_interaction(
            snapshot, request, actor_id=actor.user_id, now=now
        )
        result = _commit(session, result, now)
    _log_result(events, actor, snapshot.client, result)
    return result


def reschedule_follow_up(
    store: SqliteStore,
    actor: Profile,
    client_id: str,
    resolution: FollowUpResolution | str,
    new_date: datetime | str,
    now: datetime | None = None,
    events: EventLogger | None = None,
) -> LifecycleResult:
    now = now or utc_now()
    with store.session(immediate=True) as session:
        snapshot = load_snapshot(session, client_id)
        require_client_access(actor, snapshot.client)
        result = lifecycle.reschedule_follow_up(
            snapshot, resolution, new_date, actor_id=actor.user_id, now=now
        )
        result = _commit(session, result, now)
    _log_result(events, actor, snapshot.client, result)
    return result


def load_snapshot(session: SqliteSession, client_id: str) -> ClientSnapshot:
    row = session.fetch_one(
        f"SELECT {CLIENT_COLUMNS} FROM clients WHERE client_id = ?", (client_id,)
    )
    if row is None:
        raise ClientNotFoundError(f"Client not found: {client_id}")
    pending = session.fetch_one(
        f"SELECT {INTERACTION_COLUMNS} FROM interactions "
        "WHERE client_id = ? AND type = ? AND substituted = 0 "
        "ORDER BY rowid DESC LIMIT 1",
        (client_id, InteractionType.FOLLOW_UP_SCHEDULED.value),
    )
    return ClientSnapshot(
        client=client_from_row(row),
        pending_follow_up=interaction_from_row(pending) if pending else None,
    )


def list_interactions(store: SqliteStore, actor: Profile, client_id: str) -> list[Interaction]:
    """Timeline for one client, newest first."""
    with store.session() as session:
        snapshot = load_snapshot(session, client_id)
        require_client_access(actor, snapshot.client)
        rows = session.fetch_all(
            f"SELECT {INTERACTION_COLUMNS} FROM interactions WHERE client_id = ? "
            "ORDER BY rowid DESC",
            (client_id,),
        )
    return [interaction_from_row(row) for row in rows]


def pending_follow_ups(store: SqliteStore, owner_id: str | None = None) -> dict[str, Interaction]:
    """Current scheduled follow-up per client, keyed by client id."""
    params: list[str] = [InteractionType.FOLLOW_UP_SCHEDULED.value]
    where = ""
    if owner_id:
        where = "AND clients.owner_id = ?"
        params.append(owner_id)
    rows = store.fetch_all(
        "SELECT interactions.* FROM interactions "
        "JOIN clients ON clients.client_id = interactions.client_id "
        f"WHERE interactions.type = ? AND interactions.substituted = 0 {where} "
        "ORDER BY interactions.rowid ASC",
        params,
    )
    # Later rows win, so each client keeps its newest pending follow-up.
    return {row["client_id"]: interaction_from_row(row) for row in rows}


def _commit(session: SqliteSession, result: LifecycleResult, now: datetime) -> LifecycleResult:
    """Write an engine result and return it with every row that was substituted."""
    stamp = to_iso(now)
    client = result.client
    substituted = list(result.substituted)
    session.execute(
        "UPDATE clients SET status = ?, follow_up_state = ?, updated_at = ? WHERE client_id = ?",
        (client.status.value, client.follow_up_state.value, stamp, client.client_id),
    )

    for interaction_id in result.substituted:
        session.execute(
            "UPDATE interactions SET substituted = 1 WHERE interaction_id = ?",
            (interaction_id,),
        )
    if any(i.type is InteractionType.FOLLOW_UP_SCHEDULED for i in result.interactions):
        # Keep a single pending follow-up even if older rows were left behind.
        stale = session.fetch_all(
            "SELECT interaction_id FROM interactions "
            "WHERE client_id = ? AND type = ? AND substituted = 0 ORDER BY rowid ASC",
            (client.client_id, InteractionType.FOLLOW_UP_SCHEDULED.value),
        )
        for row in stale:
            session.execute(
                "UPDATE interactions SET substituted = 1 WHERE interaction_id = ?",
                (row["interaction_id"],),
            )
            substituted.append(row["interaction_id"])

    for interaction in result.interactions:
        session.execute(
            "INSERT INTO interactions (interaction_id, client_id, user_id, type, observation, "
            "from_status, to_status, call_outcome, substituted, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                interaction.interaction_id,
                interaction.client_id,
                interaction.user_id,
                interaction.type.value,
                interaction.observation,
                interaction.from_status.value if interaction.from_status else None,
                interaction.to_status.value if interaction.to_status else None,
                interaction.call_outcome.value if interaction.call_outcome else None,
                0,
                stamp,
            ),
        )
    return replace(result, substituted=tuple(substituted))


def _log_result(
    events: EventLogger | None, actor: Profile, before: Client, result: LifecycleResult
) -> None:
    if events is None:
        return
    for interaction in result.interactions:
        events.log(
            event_type=f"interaction.{interaction.type.value}",
            entity_type="interaction",
            entity_id=interaction.interaction_id,
            actor_id=actor.user_id,
        )
    for interaction_id in result.substituted:
        events.log(
            event_type="interaction.substituted",
            entity_type="interaction",
            entity_id=interaction_id,
            actor_id=actor.user_id,
            changed_fields=["substituted"],
        )
    changed = [
        field
        for field in ("status", "follow_up_state")
        if getattr(before, field) != getattr(result.client, field)
    ]
    if changed:
        events.log(
            event_type="updated",
            entity_type="client",
            entity_id=before.client_id,
            actor_id=actor.user_id,
            changed_fields=changed,
        )
