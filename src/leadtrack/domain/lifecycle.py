"""Follow-up and interaction lifecycle rules.

Every function here is pure: it takes a client snapshot plus the acting user
and the current time, and returns the new client value together with the
interactions to append. Nothing is persisted. Callers must load the snapshot,
call the engine and commit the result inside one transaction per client.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TypeVar
from uuid import uuid4

from leadtrack.domain.models import Client, Interaction
from leadtrack.domain.rules import ValidationError, as_utc, parse_datetime
from leadtrack.domain.stages import (
    PENDING_FOLLOW_UP_STATES,
    RESOLUTION_TYPES,
    RESOLVED_STATES,
    CallOutcome,
    ClientStatus,
    FollowUpResolution,
    FollowUpState,
    InteractionType,
)

E = TypeVar("E", bound=Enum)

TOUCH_TYPES = frozenset({InteractionType.NOTE, InteractionType.LOGGED_CALL})
COMPLETABLE_TYPES = TOUCH_TYPES | {InteractionType.STATUS_CHANGE}

DEFAULT_OBSERVATIONS = {
    InteractionType.FOLLOW_UP_COMPLETED: "Follow-up completed.",
    InteractionType.FOLLOW_UP_CANCELED: "Follow-up canceled.",
    InteractionType.FOLLOW_UP_LOST: "Follow-up marked as lost.",
}


class LifecycleError(ValidationError):
    code = "lifecycle_error"


class NoStatusChangeError(LifecycleError):
    code = "no_status_change"


class InvalidOrPastDateError(LifecycleError):
    code = "invalid_or_past_date"


class NoPendingFollowUpError(LifecycleError):
    code = "no_pending_follow_up"


class UnknownInteractionTypeError(LifecycleError):
    code = "unknown_interaction_type"


@dataclass(frozen=True)
class ClientSnapshot:
    client: Client
    pending_follow_up: Interaction | None = None


@dataclass(frozen=True)
class InteractionRequest:
    type: InteractionType | str
    observation: str = ""
    target_status: ClientStatus | str | None = None
    call_outcome: CallOutcome | str | None = None
    complete_follow_up: bool = False


@dataclass(frozen=True)
class LifecycleResult:
    client: Client
    interactions: tuple[Interaction, ...]
    substituted: tuple[str, ...] = ()


def _new_id() -> str:
    return str(uuid4())


def record_interaction(
    snapshot: ClientSnapshot,
    request: InteractionRequest,
    *,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str] = _new_id,
) -> LifecycleResult:
    """Apply one interaction request to a client snapshot.

    Raises a ``LifecycleError`` subclass (or ``ValidationError`` for malformed
    fields) before producing anything, so a failed call never leaves a
    partial result behind.
    """
    interaction_type = _interaction_type(request.type)
    now = as_utc(now)
    client = snapshot.client

    if request.complete_follow_up:
        if interaction_type not in COMPLETABLE_TYPES:
            raise ValidationError(
                "complete_follow_up only applies to notes, calls and status changes."
            )
        _require_pending(client)

    if interaction_type in TOUCH_TYPES:
        result = _touch(client, interaction_type, request, actor_id, now, new_id)
    elif interaction_type is InteractionType.STATUS_CHANGE:
        result = _change_status(client, request, actor_id, now, new_id)
    elif interaction_type is InteractionType.FOLLOW_UP_SCHEDULED:
        result = _schedule(snapshot, request.observation, actor_id, now, new_id)
    else:
        result = _resolve(client, interaction_type, request.observation, actor_id, now, new_id)

    if request.complete_follow_up:
        completed = _resolve(
            result.client, InteractionType.FOLLOW_UP_COMPLETED, "", actor_id, now, new_id
        )
        result = _chain(result, completed)
    return result


def reschedule_follow_up(
    snapshot: ClientSnapshot,
    resolution: FollowUpResolution | str,
    new_date: datetime | str,
    *,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str] = _new_id,
) -> LifecycleResult:
    """Resolve the pending follow-up (if any) and schedule a new one."""
    resolution = _coerce(FollowUpResolution, resolution, "resolution")
    now = as_utc(now)
    when = new_date.isoformat() if isinstance(new_date, datetime) else new_date
    parse_follow_up_at(when, now)

    schedule = InteractionRequest(type=InteractionType.FOLLOW_UP_SCHEDULED, observation=when)
    if snapshot.client.follow_up_state not in PENDING_FOLLOW_UP_STATES:
        return record_interaction(snapshot, schedule, actor_id=actor_id, now=now, new_id=new_id)

    resolved = record_interaction(
        snapshot,
        InteractionRequest(type=RESOLUTION_TYPES[resolution]),
        actor_id=actor_id,
        now=now,
        new_id=new_id,
    )
    scheduled = record_interaction(
        ClientSnapshot(resolved.client, snapshot.pending_follow_up),
        schedule,
        actor_id=actor_id,
        now=now,
        new_id=new_id,
    )
    return _chain(resolved, scheduled)


def effective_follow_up_state(
    client: Client, pending_follow_up: Interaction | None, now: datetime
) -> FollowUpState:
    """Read-time view of the follow-up state: an active follow-up whose date
    has passed is reported as delayed."""
    if client.follow_up_state is not FollowUpState.ACTIVE:
        return client.follow_up_state
    due = follow_up_due_at(pending_follow_up)
    if due is not None and due < as_utc(now):
        return FollowUpState.DELAYED
    return client.follow_up_state


def follow_up_due_at(interaction: Interaction | None) -> datetime | None:
    if interaction is None or interaction.substituted:
        return None
    if interaction.type is not InteractionType.FOLLOW_UP_SCHEDULED:
        return None
    try:
        return parse_datetime(interaction.observation, "observation")
    except ValidationError:
        return None


def parse_follow_up_at(value: str | None, now: datetime) -> datetime:
    if value is None or not value.strip():
        raise InvalidOrPastDateError("Follow-up date is required.")
    try:
        scheduled_at = parse_datetime(value, "follow-up date")
    except ValidationError as exc:
        raise InvalidOrPastDateError(str(exc)) from exc
    if scheduled_at <= as_utc(now):
        raise InvalidOrPastDateError("Follow-up date must be in the future.")
    return scheduled_at


def _touch(
    client: Client,
    interaction_type: InteractionType,
    request: InteractionRequest,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str],
) -> LifecycleResult:
    call_outcome = None
    if interaction_type is InteractionType.LOGGED_CALL and request.call_outcome is not None:
        call_outcome = _coerce(CallOutcome, request.call_outcome, "call_outcome")

    interaction = _interaction(
        client, interaction_type, request.observation, actor_id, now, new_id,
        call_outcome=call_outcome,
    )
    # First touch opens the follow-up cadence.
    if client.follow_up_state is FollowUpState.NO_FOLLOW_UP:
        client = replace(client, follow_up_state=FollowUpState.ACTIVE)
    return LifecycleResult(client=client, interactions=(interaction,))


def _change_status(
    client: Client,
    request: InteractionRequest,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str],
) -> LifecycleResult:
    if request.target_status is None or str(request.target_status).strip() == "":
        raise ValidationError("target_status is required.")
    target = _coerce(ClientStatus, request.target_status, "target_status")
    if target is client.status:
        raise NoStatusChangeError(f"Client is already in status '{target.value}'.")

    observation = (
        (request.observation or "").strip()
        or f"Status changed from '{client.status.value}' to '{target.value}'."
    )
    interaction = _interaction(
        client, InteractionType.STATUS_CHANGE, observation, actor_id, now, new_id,
        from_status=client.status, to_status=target,
    )
    return LifecycleResult(client=replace(client, status=target), interactions=(interaction,))


def _schedule(
    snapshot: ClientSnapshot,
    observation: str | None,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str],
) -> LifecycleResult:
    scheduled_at = parse_follow_up_at(observation, now)
    client = snapshot.client
    pending = snapshot.pending_follow_up

    substituted: tuple[str, ...] = ()
    if pending is not None and not pending.substituted:
        substituted = (pending.interaction_id,)

    interaction = _interaction(
        client, InteractionType.FOLLOW_UP_SCHEDULED, scheduled_at.isoformat(),
        actor_id, now, new_id,
    )
    if client.follow_up_state is not FollowUpState.ACTIVE:
        client = replace(client, follow_up_state=FollowUpState.ACTIVE)
    return LifecycleResult(client=client, interactions=(interaction,), substituted=substituted)


def _resolve(
    client: Client,
    interaction_type: InteractionType,
    observation: str | None,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str],
) -> LifecycleResult:
    _require_pending(client)
    text = (observation or "").strip() or DEFAULT_OBSERVATIONS[interaction_type]
    interaction = _interaction(client, interaction_type, text, actor_id, now, new_id)
    client = replace(client, follow_up_state=RESOLVED_STATES[interaction_type])
    return LifecycleResult(client=client, interactions=(interaction,))


def _require_pending(client: Client) -> None:
    if client.follow_up_state not in PENDING_FOLLOW_UP_STATES:
        raise NoPendingFollowUpError(
            f"Client has no pending follow-up (state: {client.follow_up_state.value})."
        )


def _chain(first: LifecycleResult, second: LifecycleResult) -> LifecycleResult:
    return LifecycleResult(
        client=second.client,
        interactions=first.interactions + second.interactions,
        substituted=first.substituted + second.substituted,
    )


def _interaction(
    client: Client,
    interaction_type: InteractionType,
    observation: str | None,
    actor_id: str,
    now: datetime,
    new_id: Callable[[], str],
    *,
    from_status: ClientStatus | None = None,
    to_status: ClientStatus | None = None,
    call_outcome: CallOutcome | None = None,
) -> Interaction:
    return Interaction(
        interaction_id=new_id(),
        client_id=client.client_id,
        user_id=actor_id,
        type=interaction_type,
        observation=(observation or "").strip(),
        from_status=from_status,
        to_status=to_status,
        call_outcome=call_outcome,
        substituted=False,
        created_at=now,
    )


def _interaction_type(value: InteractionType | str) -> InteractionType:
    if isinstance(value, InteractionType):
        return value
    try:
        return InteractionType(value)
    except ValueError as exc:
        raise UnknownInteractionTypeError(f"Unknown interaction type: {value!r}") from exc


def _coerce(enum_cls: type[E], value: E | str, field: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(sorted(member.value for member in enum_cls))
        raise ValidationError(f"{field} must be one of: {allowed}") from exc
