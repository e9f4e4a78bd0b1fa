from __future__ import annotations

import sqlite3
from datetime import datetime

from leadtrack.domain.models import Client, Interaction, Profile
from leadtrack.domain.stages import (
    CallOutcome,
    ClientStatus,
    FollowUpState,
    InteractionType,
    Role,
)

CLIENT_COLUMNS = (
    "client_id, name, phone, email, source, status, follow_up_state, owner_id, "
    "observations, product, property_value, created_at, updated_at"
)
INTERACTION_COLUMNS = (
    "interaction_id, client_id, user_id, type, observation, from_status, to_status, "
    "call_outcome, substituted, created_at"
)


def profile_from_row(row: sqlite3.Row) -> Profile:
    return Profile(
        user_id=row["user_id"],
        name=row["name"],
        email=row["email"],
        role=Role(row["role"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def client_from_row(row: sqlite3.Row) -> Client:
    return Client(
        client_id=row["client_id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        source=row["source"],
        status=ClientStatus(row["status"]),
        follow_up_state=FollowUpState(row["follow_up_state"]),
        owner_id=row["owner_id"],
        observations=row["observations"],
        product=row["product"],
        property_value=row["property_value"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def interaction_from_row(row: sqlite3.Row) -> Interaction:
    return Interaction(
        interaction_id=row["interaction_id"],
        client_id=row["client_id"],
        user_id=row["user_id"],
        type=InteractionType(row["type"]),
        observation=row["observation"] or "",
        from_status=ClientStatus(row["from_status"]) if row["from_status"] else None,
        to_status=ClientStatus(row["to_status"]) if row["to_status"] else None,
        call_outcome=CallOutcome(row["call_outcome"]) if row["call_outcome"] else None,
        substituted=bool(row["substituted"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
