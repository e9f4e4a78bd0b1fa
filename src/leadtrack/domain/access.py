from __future__ import annotations

from leadtrack.domain.models import Client, Profile
from leadtrack.domain.stages import Role


class AccessDeniedError(RuntimeError):
    pass


def sees_all_clients(actor: Profile) -> bool:
    return actor.role in (Role.MANAGER, Role.ADMIN)


def can_access_client(actor: Profile, client: Client) -> bool:
    return sees_all_clients(actor) or client.owner_id == actor.user_id


def require_client_access(actor: Profile, client: Client) -> None:
    if not can_access_client(actor, client):
        raise AccessDeniedError(f"{actor.name} cannot access client {client.client_id}.")


def require_admin(actor: Profile, action: str) -> None:
    if actor.role is not Role.ADMIN:
        raise AccessDeniedError(f"Only admins can {action}.")


def require_manager(actor: Profile, action: str) -> None:
    if not sees_all_clients(actor):
        raise AccessDeniedError(f"Only managers and admins can {action}.")


def owner_scope(actor: Profile, broker_id: str | None = None) -> str | None:
    """Owner filter for list and analytics queries; None means every owner.

    Brokers are always pinned to themselves, whatever broker_id they ask for.
    """
    if actor.role is Role.BROKER:
        return actor.user_id
    return broker_id or None
