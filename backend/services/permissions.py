from __future__ import annotations

from dataclasses import dataclass, field

from backend.app.db.models.core_types import Permission, Role


@dataclass(frozen=True)
class Actor:
    name: str
    role: Role = Role.staff
    permissions: frozenset[Permission] = field(default_factory=frozenset)


def has_permission(actor: Actor | None, permission: Permission) -> bool:
    if actor is None:
        return False
    if actor.role == Role.admin:
        return True
    return permission in actor.permissions
