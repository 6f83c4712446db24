from __future__ import annotations

import logging
from typing import Generator

from fastapi import Depends, Header

from backend.app.db.models.core_types import Permission, Role
from backend.app.db.session import SessionLocal
from backend.services.errors import PermissionDeniedError
from backend.services.permissions import Actor, has_permission

logger = logging.getLogger(__name__)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _parse_role(raw: str | None) -> Role:
    try:
        return Role((raw or "").strip().upper())
    except ValueError:
        return Role.staff


def _parse_permissions(raw: str | None) -> frozenset[Permission]:
    granted = set()
    for token in (raw or "").split(","):
        token = token.strip().upper()
        if not token:
            continue
        try:
            granted.add(Permission(token))
        except ValueError:
            logger.debug("ignoring unknown permission %r", token)
    return frozenset(granted)


def get_actor(
    x_actor: str | None = Header(default=None),
    x_role: str | None = Header(default=None),
    x_permissions: str | None = Header(default=None),
) -> Actor | None:
    """
    Caller identity as forwarded by the authentication gateway.

    No X-Actor header means an anonymous caller.
    """
    if not x_actor or not x_actor.strip():
        return None
    return Actor(name=x_actor.strip(), role=_parse_role(x_role), permissions=_parse_permissions(x_permissions))


def require_permission(permission: Permission):
    def dependency(actor: Actor | None = Depends(get_actor)) -> Actor:
        if not has_permission(actor, permission):
            logger.warning("permission %s denied to %s", permission.value, actor.name if actor else "anonymous")
            raise PermissionDeniedError(
                f"Permission {permission.value} required",
                permission=permission.value,
            )
        return actor

    return dependency


def require_role(role: Role):
    def dependency(actor: Actor | None = Depends(get_actor)) -> Actor:
        if actor is None or actor.role != role:
            logger.warning("role %s denied to %s", role.value, actor.name if actor else "anonymous")
            raise PermissionDeniedError(f"Role {role.value} required", role=role.value)
        return actor

    return dependency
