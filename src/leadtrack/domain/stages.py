from __future__ import annotations

from enum import Enum


class ClientStatus(str, Enum):
    FIRST_CONTACT = "first_contact"
    IN_PROGRESS = "in_progress"
    CADENCE = "cadence"
    DOCS = "docs"
    SALE = "sale"
    ARCHIVED = "archived"


class FollowUpState(str, Enum):
    NO_FOLLOW_UP = "no_follow_up"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    LOST = "lost"


class InteractionType(str, Enum):
    NOTE = "note"
    LOGGED_CALL = "logged_call"
    STATUS_CHANGE = "status_change"
    FOLLOW_UP_SCHEDULED = "follow_up_scheduled"
    FOLLOW_UP_COMPLETED = "follow_up_completed"
    FOLLOW_UP_CANCELED = "follow_up_canceled"
    FOLLOW_UP_LOST = "follow_up_lost"


class FollowUpResolution(str, Enum):
    COMPLETE = "complete"
    CANCEL = "cancel"
    LOST = "lost"


class CallOutcome(str, Enum):
    CONNECTED = "connected"
    NOT_CONNECTED = "not_connected"


class Role(str, Enum):
    BROKER = "broker"
    MANAGER = "manager"
    ADMIN = "admin"


PENDING_FOLLOW_UP_STATES = frozenset({FollowUpState.ACTIVE, FollowUpState.DELAYED})

RESOLUTION_TYPES = {
    FollowUpResolution.COMPLETE: InteractionType.FOLLOW_UP_COMPLETED,
    FollowUpResolution.CANCEL: InteractionType.FOLLOW_UP_CANCELED,
    FollowUpResolution.LOST: InteractionType.FOLLOW_UP_LOST,
}

RESOLVED_STATES = {
    InteractionType.FOLLOW_UP_COMPLETED: FollowUpState.COMPLETED,
    InteractionType.FOLLOW_UP_CANCELED: FollowUpState.CANCELED,
    InteractionType.FOLLOW_UP_LOST: FollowUpState.LOST,
}

# Pipeline order used by the funnel; archived is not a stage.
FUNNEL_STAGES = (
    ClientStatus.FIRST_CONTACT,
    ClientStatus.IN_PROGRESS,
    ClientStatus.CADENCE,
    ClientStatus.DOCS,
    ClientStatus.SALE,
)
