from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from leadtrack.domain.stages import (
    CallOutcome,
    ClientStatus,
    FollowUpState,
    InteractionType,
    Role,
)


@dataclass(frozen=True)
class Profile:
    user_id: str
    name: str
    email: str | None
    role: Role
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Client:
    client_id: str
    name: str
    phone: str
    email: str | None
    source: str
    status: ClientStatus
    follow_up_state: FollowUpState
    owner_id: str | None
    observations: str | None
    product: str | None
    property_value: float | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Interaction:
    interaction_id: str
    client_id: str
    user_id: str
    type: InteractionType
    observation: str
    from_status: ClientStatus | None
    to_status: ClientStatus | None
    call_outcome: CallOutcome | None
    substituted: bool
    created_at: datetime
