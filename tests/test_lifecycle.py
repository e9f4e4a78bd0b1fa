from dataclasses import replace
from datetime import UTC, datetime, timedelta
from itertools import count

import pytest

from leadtrack.domain.lifecycle import (
    ClientSnapshot,
    InteractionRequest,
    InvalidOrPastDateError,
    NoPendingFollowUpError,
    NoStatusChangeError,
    UnknownInteractionTypeError,
    effective_follow_up_state,
    record_interaction,
    reschedule_follow_up,
)
from leadtrack.domain.models import Client, Interaction
from leadtrack.domain.rules import ValidationError
from leadtrack.domain.stages import (
    CallOutcome,
    ClientStatus,
    FollowUpState,
    InteractionType,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
TOMORROW = (NOW + timedelta(days=1)).isoformat()
YESTERDAY_9AM = datetime(2026, 10, 18, 9, 0, tzinfo=UTC).isoformat()


def _client(**overrides) -> Client:
    values = dict(
        client_id="client-1",
        name="Ana Souza",
        phone="11 99999-0000",
        email=None,
        source="Instagram",
        status=ClientStatus.FIRST_CONTACT,
        follow_up_state=FollowUpState.NO_FOLLOW_UP,
        owner_id="broker-1",
        observations=None,
        product=None,
        property_value=None,
        created_at=NOW - timedelta(days=3),
        updated_at=NOW - timedelta(days=3),
    )
    values.update(overrides)
    return Client(**values)


def _pending(observation: str = TOMORROW, interaction_id: str = "fu-1") -> Interaction:
    return Interaction(
        interaction_id=interaction_id,
        client_id="client-1",
        user_id="broker-1",
        type=InteractionType.FOLLOW_UP_SCHEDULED,
        observation=observation,
        from_status=None,
        to_status=None,
        call_outcome=None,
        substituted=False,
        created_at=NOW - timedelta(days=1),
    )


def _ids():
    counter = count(1)
    return lambda: f"i-{next(counter)}"


def _apply(snapshot: ClientSnapshot, request: InteractionRequest, now: datetime = NOW):
    return record_interaction(snapshot, request, actor_id="broker-1", now=now, new_id=_ids())


@pytest.mark.parametrize("interaction_type", [InteractionType.NOTE, InteractionType.LOGGED_CALL])
def test_first_touch_opens_follow_up(interaction_type: InteractionType) -> None:
    client = _client()
    result = _apply(ClientSnapshot(client), InteractionRequest(type=interaction_type, observation="Hi"))

    assert result.client == replace(client, follow_up_state=FollowUpState.ACTIVE)
    assert [i.type for i in result.interactions] == [interaction_type]
    assert result.substituted == ()


def test_touch_keeps_resolved_follow_up_state() -> None:
    client = _client(follow_up_state=FollowUpState.COMPLETED)
    result = _apply(ClientSnapshot(client), InteractionRequest(type="note", observation="Sent photos"))
    assert result.client == client


def test_logged_call_records_outcome() -> None:
    result = _apply(
        ClientSnapshot(_client()),
        InteractionRequest(type=InteractionType.LOGGED_CALL, call_outcome="connected"),
    )
    assert result.interactions[0].call_outcome is CallOutcome.CONNECTED


def test_logged_call_rejects_unknown_outcome() -> None:
    with pytest.raises(ValidationError):
        _apply(
            ClientSnapshot(_client()),
            InteractionRequest(type=InteractionType.LOGGED_CALL, call_outcome="voicemail"),
        )


def test_status_change_sets_status_and_records_transition() -> None:
    client = _client()
    result = _apply(
        ClientSnapshot(client),
        InteractionRequest(type=InteractionType.STATUS_CHANGE, target_status="docs"),
    )
    interaction = result.interactions[0]
    assert result.client.status is ClientStatus.DOCS
    assert result.client.follow_up_state is FollowUpState.NO_FOLLOW_UP
    assert interaction.from_status is ClientStatus.FIRST_CONTACT
    assert interaction.to_status is ClientStatus.DOCS
    assert interaction.observation == "Status changed from 'first_contact' to 'docs'."


def test_status_change_to_same_status_fails() -> None:
    with pytest.raises(NoStatusChangeError) as excinfo:
        _apply(
            ClientSnapshot(_client()),
            InteractionRequest(type=InteractionType.STATUS_CHANGE, target_status="first_contact"),
        )
    assert excinfo.value.code == "no_status_change"


def test_replayed_status_change_is_rejected() -> None:
    request = InteractionRequest(type=InteractionType.STATUS_CHANGE, target_status="sale")
    first = _apply(ClientSnapshot(_client()), request)
    with pytest.raises(NoStatusChangeError):
        _apply(ClientSnapshot(first.client), request)


def test_status_change_requires_target() -> None:
    with pytest.raises(ValidationError):
        _apply(ClientSnapshot(_client()), InteractionRequest(type=InteractionType.STATUS_CHANGE))


@pytest.mark.parametrize("observation", [YESTERDAY_9AM, NOW.isoformat(), "next tuesday", "", "  "])
def test_schedule_rejects_missing_invalid_or_past_dates(observation: str) -> None:
    with pytest.raises(InvalidOrPastDateError) as excinfo:
        _apply(
            ClientSnapshot(_client()),
            InteractionRequest(type=InteractionType.FOLLOW_UP_SCHEDULED, observation=observation),
        )
    assert excinfo.value.code == "invalid_or_past_date"


def test_schedule_activates_follow_up_and_normalizes_date() -> None:
    result = _apply(
        ClientSnapshot(_client(follow_up_state=FollowUpState.CANCELED)),
        InteractionRequest(
            type=InteractionType.FOLLOW_UP_SCHEDULED, observation="2026-10-20T09:30:00-03:00"
        ),
    )
    assert result.client.follow_up_state is FollowUpState.ACTIVE
    assert result.interactions[0].observation == "2026-10-20T12:30:00+00:00"


def test_schedule_substitutes_pending_follow_up() -> None:
    snapshot = ClientSnapshot(_client(follow_up_state=FollowUpState.ACTIVE), _pending())
    later = (NOW + timedelta(days=5)).isoformat()
    result = _apply(
        snapshot, InteractionRequest(type=InteractionType.FOLLOW_UP_SCHEDULED, observation=later)
    )
    assert result.substituted == ("fu-1",)
    assert result.client == snapshot.client


def test_schedule_naive_timestamp_is_utc() -> None:
    result = _apply(
        ClientSnapshot(_client()),
        InteractionRequest(type=InteractionType.FOLLOW_UP_SCHEDULED, observation="2026-10-19T12:00:01"),
    )
    assert result.interactions[0].observation == "2026-10-19T12:00:01+00:00"


@pytest.mark.parametrize(
    ("interaction_type", "expected"),
    [
        (InteractionType.FOLLOW_UP_COMPLETED, FollowUpState.COMPLETED),
        (InteractionType.FOLLOW_UP_CANCELED, FollowUpState.CANCELED),
        (InteractionType.FOLLOW_UP_LOST, FollowUpState.LOST),
    ],
)
@pytest.mark.parametrize("state", [FollowUpState.ACTIVE, FollowUpState.DELAYED])
def test_resolution_from_pending_states(
    interaction_type: InteractionType, expected: FollowUpState, state: FollowUpState
) -> None:
    result = _apply(
        ClientSnapshot(_client(follow_up_state=state), _pending()),
        InteractionRequest(type=interaction_type),
    )
    assert result.client.follow_up_state is expected
    assert [i.type for i in result.interactions] == [interaction_type]
    assert result.interactions[0].observation


@pytest.mark.parametrize(
    "state", [FollowUpState.NO_FOLLOW_UP, FollowUpState.COMPLETED, FollowUpState.LOST]
)
def test_resolution_without_pending_follow_up_fails(state: FollowUpState) -> None:
    with pytest.raises(NoPendingFollowUpError) as excinfo:
        _apply(
            ClientSnapshot(_client(follow_up_state=state)),
            InteractionRequest(type=InteractionType.FOLLOW_UP_COMPLETED),
        )
    assert excinfo.value.code == "no_pending_follow_up"


def test_unknown_interaction_type() -> None:
    with pytest.raises(UnknownInteractionTypeError) as excinfo:
        _apply(ClientSnapshot(_client()), InteractionRequest(type="email_sent"))
    assert excinfo.value.code == "unknown_interaction_type"


def test_note_can_complete_pending_follow_up() -> None:
    result = _apply(
        ClientSnapshot(_client(follow_up_state=FollowUpState.ACTIVE), _pending()),
        InteractionRequest(type=InteractionType.NOTE, observation="Visited", complete_follow_up=True),
    )
    assert [i.type for i in result.interactions] == [
        InteractionType.NOTE,
        InteractionType.FOLLOW_UP_COMPLETED,
    ]
    assert result.client.follow_up_state is FollowUpState.COMPLETED


def test_complete_follow_up_flag_needs_pending_follow_up() -> None:
    with pytest.raises(NoPendingFollowUpError):
        _apply(
            ClientSnapshot(_client()),
            InteractionRequest(type=InteractionType.NOTE, observation="Hi", complete_follow_up=True),
        )


def test_reschedule_over_active_follow_up() -> None:
    snapshot = ClientSnapshot(_client(follow_up_state=FollowUpState.ACTIVE), _pending())
    later = NOW + timedelta(days=7)
    result = reschedule_follow_up(
        snapshot, "complete", later, actor_id="broker-1", now=NOW, new_id=_ids()
    )
    assert [i.type for i in result.interactions] == [
        InteractionType.FOLLOW_UP_COMPLETED,
        InteractionType.FOLLOW_UP_SCHEDULED,
    ]
    assert [i.interaction_id for i in result.interactions] == ["i-1", "i-2"]
    assert result.substituted == ("fu-1",)
    assert result.client.follow_up_state is FollowUpState.ACTIVE


def test_reschedule_with_lost_resolution_over_delayed() -> None:
    snapshot = ClientSnapshot(
        _client(follow_up_state=FollowUpState.DELAYED), _pending(YESTERDAY_9AM)
    )
    result = reschedule_follow_up(snapshot, "lost", TOMORROW, actor_id="broker-1", now=NOW)
    assert [i.type for i in result.interactions] == [
        InteractionType.FOLLOW_UP_LOST,
        InteractionType.FOLLOW_UP_SCHEDULED,
    ]
    assert result.client.follow_up_state is FollowUpState.ACTIVE


def test_reschedule_without_pending_only_schedules() -> None:
    result = reschedule_follow_up(
        ClientSnapshot(_client()), "cancel", TOMORROW, actor_id="broker-1", now=NOW
    )
    assert [i.type for i in result.interactions] == [InteractionType.FOLLOW_UP_SCHEDULED]
    assert result.client.follow_up_state is FollowUpState.ACTIVE


def test_reschedule_validates_date_before_resolving() -> None:
    snapshot = ClientSnapshot(_client(follow_up_state=FollowUpState.ACTIVE), _pending())
    with pytest.raises(InvalidOrPastDateError):
        reschedule_follow_up(snapshot, "complete", YESTERDAY_9AM, actor_id="broker-1", now=NOW)


def test_reschedule_rejects_unknown_resolution() -> None:
    with pytest.raises(ValidationError):
        reschedule_follow_up(
            ClientSnapshot(_client()), "postpone", TOMORROW, actor_id="broker-1", now=NOW
        )


def test_effective_state_is_delayed_once_date_passes() -> None:
    client = _client(follow_up_state=FollowUpState.ACTIVE)
    pending = _pending(TOMORROW)
    assert effective_follow_up_state(client, pending, NOW) is FollowUpState.ACTIVE
    assert (
        effective_follow_up_state(client, pending, NOW + timedelta(days=2))
        is FollowUpState.DELAYED
    )


def test_effective_state_ignores_resolved_and_missing_follow_ups() -> None:
    completed = _client(follow_up_state=FollowUpState.COMPLETED)
    assert (
        effective_follow_up_state(completed, _pending(YESTERDAY_9AM), NOW)
        is FollowUpState.COMPLETED
    )
    active = _client(follow_up_state=FollowUpState.ACTIVE)
    assert effective_follow_up_state(active, None, NOW) is FollowUpState.ACTIVE


def test_single_pending_follow_up_across_operations() -> None:
    snapshot = ClientSnapshot(_client())
    log: list[Interaction] = []
    new_id = _ids()
    now = NOW
    steps = [
        InteractionRequest(type=InteractionType.NOTE, observation="first call"),
        InteractionRequest(type=InteractionType.FOLLOW_UP_SCHEDULED, observation=TOMORROW),
        InteractionRequest(
            type=InteractionType.FOLLOW_UP_SCHEDULED,
            observation=(NOW + timedelta(days=3)).isoformat(),
        ),
        InteractionRequest(type=InteractionType.FOLLOW_UP_CANCELED),
        InteractionRequest(
            type=InteractionType.FOLLOW_UP_SCHEDULED,
            observation=(NOW + timedelta(days=4)).isoformat(),
        ),
        InteractionRequest(type=InteractionType.STATUS_CHANGE, target_status="cadence"),
    ]
    for request in steps:
        result = record_interaction(snapshot, request, actor_id="broker-1", now=now, new_id=new_id)
        log = [
            replace(i, substituted=True) if i.interaction_id in result.substituted else i
            for i in log
        ]
        log.extend(result.interactions)
        pending = [
            i for i in log if i.type is InteractionType.FOLLOW_UP_SCHEDULED and not i.substituted
        ]
        assert len(pending) <= 1
        snapshot = ClientSnapshot(result.client, pending[-1] if pending else None)

    assert snapshot.client.status is ClientStatus.CADENCE
    assert snapshot.client.follow_up_state is FollowUpState.ACTIVE
    assert snapshot.pending_follow_up.observation == (NOW + timedelta(days=4)).isoformat()


def test_status_change_without_observation_uses_default_text() -> None:
    result = _apply(
        ClientSnapshot(_client()),
        InteractionRequest(type=InteractionType.STATUS_CHANGE, observation=None, target_status="sale"),
    )
    assert result.interactions[0].observation == "Status changed from 'first_contact' to 'sale'."
