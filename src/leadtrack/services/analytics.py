from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from leadtrack.domain.access import owner_scope
from leadtrack.domain.lifecycle import effective_follow_up_state
from leadtrack.domain.models import Profile
from leadtrack.domain.stages import (
    FUNNEL_STAGES,
    CallOutcome,
    ClientStatus,
    FollowUpState,
    InteractionType,
    Role,
)
from leadtrack.services.interactions import pending_follow_ups
from leadtrack.services.utils import day_range, utc_now
from leadtrack.store.rows import CLIENT_COLUMNS, client_from_row
from leadtrack.store.sqlite import SqliteStore

ACTIVITY_TEMPLATES = {
    InteractionType.NOTE: "{actor} added a note to {client}",
    InteractionType.LOGGED_CALL: "{actor} logged a call with {client}",
    InteractionType.STATUS_CHANGE: "{actor} moved {client} from {from_status} to {to_status}",
    InteractionType.FOLLOW_UP_SCHEDULED: "{actor} scheduled a follow-up with {client}",
    InteractionType.FOLLOW_UP_COMPLETED: "{actor} completed the follow-up with {client}",
    InteractionType.FOLLOW_UP_CANCELED: "{actor} canceled the follow-up with {client}",
    InteractionType.FOLLOW_UP_LOST: "{actor} marked the follow-up with {client} as lost",
}


@dataclass(frozen=True)
class BrokerKpis:
    in_progress: int
    first_contact: int
    total: int
    delayed: int


@dataclass(frozen=True)
class FunnelStage:
    stage: str
    count: int


@dataclass(frozen=True)
class Funnel:
    stages: list[FunnelStage]
    conversion_rates: dict[str, float | None]


@dataclass(frozen=True)
class ProductivityKpis:
    calls: int
    connected_calls: int
    in_progress: int
    docs: int
    sales: int


@dataclass(frozen=True)
class DailyPoint:
    day: str
    calls: int
    notes: int


@dataclass(frozen=True)
class BreakdownRow:
    key: str
    label: str
    calls: int
    sales: int


@dataclass(frozen=True)
class ManagerKpis:
    vgv: float
    opportunity: float


@dataclass(frozen=True)
class ProductivityReport:
    kpis: ProductivityKpis
    daily: list[DailyPoint]
    by_broker: list[BreakdownRow]
    by_source: list[BreakdownRow]
    manager: ManagerKpis | None


@dataclass(frozen=True)
class Activity:
    interaction_id: str
    client_id: str
    client_name: str
    actor_name: str
    type: InteractionType
    description: str
    created_at: str


def broker_kpis(
    store: SqliteStore,
    actor: Profile,
    broker_id: str | None = None,
    now: datetime | None = None,
) -> BrokerKpis:
    owner_id = owner_scope(actor, broker_id)
    where, params = _owner_filter("owner_id", owner_id, prefix="WHERE")
    rows = store.fetch_all(f"SELECT {CLIENT_COLUMNS} FROM clients {where}", params)
    pending = pending_follow_ups(store, owner_id)
    now = now or utc_now()

    in_progress = first_contact = total = delayed = 0
    for row in rows:
        client = client_from_row(row)
        state = effective_follow_up_state(client, pending.get(client.client_id), now)
        if state is FollowUpState.ACTIVE:
            in_progress += 1
        elif state is FollowUpState.DELAYED:
            delayed += 1
        if client.status is ClientStatus.FIRST_CONTACT:
            first_contact += 1
        if client.status is not ClientStatus.ARCHIVED:
            total += 1
    return BrokerKpis(
        in_progress=in_progress, first_contact=first_contact, total=total, delayed=delayed
    )


def funnel(
    store: SqliteStore,
    actor: Profile,
    start: date,
    end: date,
    broker_id: str | None = None,
) -> Funnel:
    lower, upper = day_range(start, end)
    owner_id = owner_scope(actor, broker_id)
    owner_sql, owner_params = _owner_filter("clients.owner_id", owner_id)

    created = store.fetch_one(
        f"SELECT COUNT(*) AS n FROM clients WHERE created_at BETWEEN ? AND ? {owner_sql}",
        [lower, upper, *owner_params],
    )
    rows = store.fetch_all(
        "SELECT interactions.to_status AS stage, COUNT(DISTINCT interactions.client_id) AS n "
        "FROM interactions JOIN clients ON clients.client_id = interactions.client_id "
        f"WHERE interactions.type = ? AND interactions.created_at BETWEEN ? AND ? {owner_sql} "
        "GROUP BY interactions.to_status",
        [InteractionType.STATUS_CHANGE.value, lower, upper, *owner_params],
    )
    reached = {row["stage"]: row["n"] for row in rows}
    reached[ClientStatus.FIRST_CONTACT.value] = created["n"]

    stages = [FunnelStage(stage=s.value, count=int(reached.get(s.value, 0))) for s in FUNNEL_STAGES]
    rates: dict[str, float | None] = {}
    for previous, current in zip(stages, stages[1:]):
        key = f"{previous.stage}->{current.stage}"
        rates[key] = round(current.count / previous.count, 4) if previous.count else None
    return Funnel(stages=stages, conversion_rates=rates)


def productivity(
    store: SqliteStore,
    actor: Profile,
    start: date,
    end: date,
    broker_id: str | None = None,
) -> ProductivityReport:
    lower, upper = day_range(start, end)
    user_id = owner_scope(actor, broker_id)
    user_sql, user_params = _owner_filter("interactions.user_id", user_id)
    window = [lower, upper, *user_params]

    totals = store.fetch_one(
        "SELECT "
        "SUM(CASE WHEN type = ? THEN 1 ELSE 0 END) AS calls, "
        "SUM(CASE WHEN type = ? AND call_outcome = ? THEN 1 ELSE 0 END) AS connected, "
        "SUM(CASE WHEN type = ? AND to_status = ? THEN 1 ELSE 0 END) AS in_progress, "
        "SUM(CASE WHEN type = ? AND to_status = ? THEN 1 ELSE 0 END) AS docs, "
        "SUM(CASE WHEN type = ? AND to_status = ? THEN 1 ELSE 0 END) AS sales "
        f"FROM interactions WHERE created_at BETWEEN ? AND ? {user_sql}",
        [
            InteractionType.LOGGED_CALL.value,
            InteractionType.LOGGED_CALL.value,
            CallOutcome.CONNECTED.value,
            InteractionType.STATUS_CHANGE.value,
            ClientStatus.IN_PROGRESS.value,
            InteractionType.STATUS_CHANGE.value,
            ClientStatus.DOCS.value,
            InteractionType.STATUS_CHANGE.value,
            ClientStatus.SALE.value,
            *window,
        ],
    )
    kpis = ProductivityKpis(
        calls=totals["calls"] or 0,
        connected_calls=totals["connected"] or 0,
        in_progress=totals["in_progress"] or 0,
        docs=totals["docs"] or 0,
        sales=totals["sales"] or 0,
    )

    daily_rows = store.fetch_all(
        "SELECT substr(created_at, 1, 10) AS day, "
        "SUM(CASE WHEN type = ? THEN 1 ELSE 0 END) AS calls, "
        "SUM(CASE WHEN type = ? THEN 1 ELSE 0 END) AS notes "
        f"FROM interactions WHERE created_at BETWEEN ? AND ? {user_sql} "
        "GROUP BY day ORDER BY day ASC",
        [InteractionType.LOGGED_CALL.value, InteractionType.NOTE.value, *window],
    )
    daily = [DailyPoint(day=row["day"], calls=row["calls"], notes=row["notes"]) for row in daily_rows]

    by_broker = _breakdown(
        store,
        key_sql="interactions.user_id",
        label_sql="COALESCE(profiles.name, interactions.user_id)",
        user_sql=user_sql,
        window=window,
    )
    by_source = _breakdown(
        store,
        key_sql="clients.source",
        label_sql="clients.source",
        user_sql=user_sql,
        window=window,
    )

    manager = None
    if actor.role is not Role.BROKER:
        manager = _manager_kpis(store, lower, upper, user_id)
    return ProductivityReport(
        kpis=kpis, daily=daily, by_broker=by_broker, by_source=by_source, manager=manager
    )


def recent_activity(store: SqliteStore, actor: Profile, limit: int = 20) -> list[Activity]:
    owner_id = owner_scope(actor)
    owner_sql, owner_params = _owner_filter("clients.owner_id", owner_id, prefix="WHERE")
    rows = store.fetch_all(
        "SELECT interactions.interaction_id, interactions.client_id, interactions.type, "
        "interactions.from_status, interactions.to_status, interactions.created_at, "
        "clients.name AS client_name, COALESCE(profiles.name, interactions.user_id) AS actor_name "
        "FROM interactions "
        "JOIN clients ON clients.client_id = interactions.client_id "
        "LEFT JOIN profiles ON profiles.user_id = interactions.user_id "
        f"{owner_sql} ORDER BY interactions.rowid DESC LIMIT ?",
        [*owner_params, limit],
    )
    activities = []
    for row in rows:
        interaction_type = InteractionType(row["type"])
        description = ACTIVITY_TEMPLATES[interaction_type].format(
            actor=row["actor_name"],
            client=row["client_name"],
            from_status=row["from_status"],
            to_status=row["to_status"],
        )
        activities.append(
            Activity(
                interaction_id=row["interaction_id"],
                client_id=row["client_id"],
                client_name=row["client_name"],
                actor_name=row["actor_name"],
                type=interaction_type,
                description=description,
                created_at=row["created_at"],
            )
        )
    return activities


def _breakdown(
    store: SqliteStore, *, key_sql: str, label_sql: str, user_sql: str, window: list[str]
) -> list[BreakdownRow]:
    rows = store.fetch_all(
        f"SELECT {key_sql} AS key, {label_sql} AS label, "
        "SUM(CASE WHEN interactions.type = ? THEN 1 ELSE 0 END) AS calls, "
        "SUM(CASE WHEN interactions.type = ? AND interactions.to_status = ? THEN 1 ELSE 0 END) AS sales "
        "FROM interactions "
        "JOIN clients ON clients.client_id = interactions.client_id "
        "LEFT JOIN profiles ON profiles.user_id = interactions.user_id "
        f"WHERE interactions.created_at BETWEEN ? AND ? {user_sql} "
        "GROUP BY key, label ORDER BY sales DESC, calls DESC, label ASC",
        [
            InteractionType.LOGGED_CALL.value,
            InteractionType.STATUS_CHANGE.value,
            ClientStatus.SALE.value,
            *window,
        ],
    )
    return [
        BreakdownRow(key=row["key"], label=row["label"], calls=row["calls"], sales=row["sales"])
        for row in rows
    ]


def _manager_kpis(
    store: SqliteStore, lower: str, upper: str, owner_id: str | None
) -> ManagerKpis:
    owner_sql, owner_params = _owner_filter("clients.owner_id", owner_id)
    vgv = store.fetch_one(
        "SELECT COALESCE(SUM(property_value), 0) AS total FROM clients WHERE client_id IN ("
        "SELECT client_id FROM interactions "
        "WHERE type = ? AND to_status = ? AND created_at BETWEEN ? AND ?"
        f") {owner_sql}",
        [
            InteractionType.STATUS_CHANGE.value,
            ClientStatus.SALE.value,
            lower,
            upper,
            *owner_params,
        ],
    )
    opportunity = store.fetch_one(
        "SELECT COALESCE(SUM(property_value), 0) AS total FROM clients "
        f"WHERE status NOT IN (?, ?) {owner_sql}",
        [ClientStatus.SALE.value, ClientStatus.ARCHIVED.value, *owner_params],
    )
    return ManagerKpis(vgv=float(vgv["total"]), opportunity=float(opportunity["total"]))


def _owner_filter(
    column: str, owner_id: str | None, prefix: str = "AND"
) -> tuple[str, list[str]]:
    if not owner_id:
        return "", []
    return f"{prefix} {column} = ?", [owner_id]
