import json
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from leadtrack.domain.access import AccessDeniedError
from leadtrack.domain.lifecycle import (
    InteractionRequest,
    InvalidOrPastDateError,
    NoPendingFollowUpError,
)
from leadtrack.domain.stages import ClientStatus, FollowUpState, InteractionType
from leadtrack.services.clients import create_client, get_client, get_overview
from leadtrack.services.events import EventLogger
from leadtrack.services.interactions import (
    ClientNotFoundError,
    list_interactions,
    pending_follow_ups,
    record_interaction,
    reschedule_follow_up,
)
from leadtrack.services.profiles import create_profile
from leadtrack.store.sqlite import SqliteStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "test.sqlite")
    schema_path = Path(__file__).resolve().parents[1] / "resources" / "schema" / "canonical.yaml"
    store.apply_schema(schema_path)
    return store


def _setup(tmp_path: Path):
    store = _store(tmp_path)
    broker = create_profile(store, "Bruna", "bruna@example.com")
    client = create_client(store, broker, "Ana Souza", "11 99999-0000", "Instagram")
    return store, broker, client


def _schedule(days: int) -> InteractionRequest:
    return InteractionRequest(
        type=InteractionType.FOLLOW_UP_SCHEDULED,
        observation=(NOW + timedelta(days=days)).isoformat(),
    )


def _pending_rows(store: SqliteStore, client_id: str) -> list:
    return store.fetch_all(
        "SELECT interaction_id FROM interactions WHERE client_id = ? AND type = ? AND substituted = 0",
        (client_id, InteractionType.FOLLOW_UP_SCHEDULED.value),
    )


def test_note_persists_interaction_and_state(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)

    record_interaction(
        store, broker, client.client_id, InteractionRequest(type="note", observation="Hi"), now=NOW
    )

    stored = get_client(store, broker, client.client_id)
    assert stored.follow_up_state is FollowUpState.ACTIVE
    timeline = list_interactions(store, broker, client.client_id)
    assert [i.type for i in timeline] == [InteractionType.NOTE]
    assert timeline[0].user_id == broker.user_id
    assert timeline[0].created_at == NOW


def test_schedule_twice_keeps_one_pending_follow_up(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)

    first = record_interaction(store, broker, client.client_id, _schedule(1), now=NOW)
    second = record_interaction(store, broker, client.client_id, _schedule(3), now=NOW)

    assert second.substituted == (first.interactions[0].interaction_id,)
    pending = _pending_rows(store, client.client_id)
    assert [row["interaction_id"] for row in pending] == [second.interactions[0].interaction_id]
    assert pending_follow_ups(store)[client.client_id].interaction_id == second.interactions[0].interaction_id


def test_reschedule_appends_resolution_then_schedule(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    record_interaction(store, broker, client.client_id, _schedule(1), now=NOW)

    reschedule_follow_up(
        store, broker, client.client_id, "cancel", NOW + timedelta(days=4), now=NOW
    )

    timeline = list_interactions(store, broker, client.client_id)
    assert [i.type for i in timeline] == [
        InteractionType.FOLLOW_UP_SCHEDULED,
        InteractionType.FOLLOW_UP_CANCELED,
        InteractionType.FOLLOW_UP_SCHEDULED,
    ]
    assert [i.substituted for i in timeline] == [False, False, True]
    assert get_client(store, broker, client.client_id).follow_up_state is FollowUpState.ACTIVE


def test_failed_operation_leaves_no_trace(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    record_interaction(store, broker, client.client_id, _schedule(1), now=NOW)

    with pytest.raises(InvalidOrPastDateError):
        reschedule_follow_up(
            store, broker, client.client_id, "complete", NOW - timedelta(hours=1), now=NOW
        )

    timeline = list_interactions(store, broker, client.client_id)
    assert [i.type for i in timeline] == [InteractionType.FOLLOW_UP_SCHEDULED]
    assert len(_pending_rows(store, client.client_id)) == 1


def test_resolution_without_pending_follow_up_is_rejected(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)

    with pytest.raises(NoPendingFollowUpError):
        record_interaction(
            store, broker, client.client_id, InteractionRequest(type="follow_up_lost"), now=NOW
        )
    assert list_interactions(store, broker, client.client_id) == []


def test_completion_clears_pending_follow_up(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    record_interaction(store, broker, client.client_id, _schedule(1), now=NOW)

    record_interaction(
        store,
        broker,
        client.client_id,
        InteractionRequest(type="logged_call", call_outcome="connected", complete_follow_up=True),
        now=NOW,
    )

    overview = get_overview(store, broker, client.client_id, now=NOW)
    assert overview.follow_up_state is FollowUpState.COMPLETED
    assert overview.pending_follow_up is None
    assert overview.follow_up_due is None


def test_overview_reports_delayed_follow_up(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    record_interaction(store, broker, client.client_id, _schedule(1), now=NOW)

    overview = get_overview(store, broker, client.client_id, now=NOW + timedelta(days=2))
    assert overview.follow_up_state is FollowUpState.DELAYED
    assert overview.client.follow_up_state is FollowUpState.ACTIVE
    assert overview.follow_up_due == NOW + timedelta(days=1)


def test_status_change_updates_client(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)

    record_interaction(
        store,
        broker,
        client.client_id,
        InteractionRequest(type="status_change", target_status="in_progress"),
        now=NOW,
    )

    stored = get_client(store, broker, client.client_id)
    assert stored.status is ClientStatus.IN_PROGRESS
    assert stored.updated_at == NOW


def test_broker_cannot_touch_other_brokers_client(tmp_path: Path) -> None:
    store, _, client = _setup(tmp_path)
    other = create_profile(store, "Carlos", "carlos@example.com")

    with pytest.raises(AccessDeniedError):
        record_interaction(
            store, other, client.client_id, InteractionRequest(type="note", observation="x"), now=NOW
        )
    with pytest.raises(AccessDeniedError):
        list_interactions(store, other, client.client_id)


def test_manager_can_record_for_any_client(tmp_path: Path) -> None:
    store, _, client = _setup(tmp_path)
    manager = create_profile(store, "Marta", "marta@example.com", role="manager")

    result = record_interaction(
        store, manager, client.client_id, InteractionRequest(type="note", observation="x"), now=NOW
    )
    assert result.interactions[0].user_id == manager.user_id


def test_unknown_client(tmp_path: Path) -> None:
    store, broker, _ = _setup(tmp_path)
    with pytest.raises(ClientNotFoundError):
        record_interaction(store, broker, "missing", InteractionRequest(type="note"), now=NOW)


def test_interactions_are_logged_as_events(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    events = EventLogger(path=tmp_path / "events.jsonl", workspace="demo")

    record_interaction(store, broker, client.client_id, _schedule(1), now=NOW, events=events)
    record_interaction(store, broker, client.client_id, _schedule(2), now=NOW, events=events)

    lines = [json.loads(line) for line in events.path.read_text().splitlines()]
    assert [line["event_type"] for line in lines] == [
        "interaction.follow_up_scheduled",
        "updated",
        "interaction.follow_up_scheduled",
        "interaction.substituted",
    ]
    assert lines[1]["changed_fields"] == ["follow_up_state"]
    assert all(line["workspace"] == "demo" for line in lines)


def test_concurrent_schedules_keep_one_pending_follow_up(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    errors: list[Exception] = []

    def schedule_many(offset: int) -> None:
        for step in range(10):
            try:
                record_interaction(
                    store, broker, client.client_id, _schedule(1 + offset * 10 + step), now=NOW
                )
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=schedule_many, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(_pending_rows(store, client.client_id)) == 1
    total = store.fetch_one("SELECT COUNT(*) AS n FROM interactions WHERE client_id = ?", (client.client_id,))
    assert total["n"] == 40


def test_stale_pending_rows_are_substituted_and_logged(tmp_path: Path) -> None:
    store, broker, client = _setup(tmp_path)
    events = EventLogger(path=tmp_path / "events.jsonl", workspace="demo")
    first = record_interaction(store, broker, client.client_id, _schedule(1), now=NOW)
    # A row left pending by an older writer.
    store.execute(
        "INSERT INTO interactions (interaction_id, client_id, user_id, type, observation, "
        "substituted, created_at) VALUES (?, ?, ?, ?, ?, 0, ?)",
        (
            "stray",
            client.client_id,
            broker.user_id,
            InteractionType.FOLLOW_UP_SCHEDULED.value,
            (NOW + timedelta(days=2)).isoformat(),
            NOW.isoformat(),
        ),
    )

    result = record_interaction(
        store, broker, client.client_id, _schedule(5), now=NOW, events=events
    )

    assert set(result.substituted) == {first.interactions[0].interaction_id, "stray"}
    assert len(_pending_rows(store, client.client_id)) == 1
    logged = [
        json.loads(line)["entity_id"]
        for line in events.path.read_text().splitlines()
        if json.loads(line)["event_type"] == "interaction.substituted"
    ]
    assert sorted(logged) == sorted(result.substituted)
