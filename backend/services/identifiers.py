"""
Identifier allocation.

Material ids are workshop scoped and sequential: PREFIX/WORKSHOP/NNNNN.
The counter lives in its own row (workshop_sequences) and is bumped with a
single UPDATE, so two creations in the same workshop serialize on that row
instead of both scanning the materials table and picking the same max+1.

Receipt ids only group the lines of one commit; they are not sequential.
"""
from __future__ import annotations

import logging
import secrets
import string
import time

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.db.models.core_types import MovementKind
from backend.app.db.models.models_v1 import Material, WorkshopSequence
from backend.services.errors import ValidationError
from backend.services.inventory import unit_of_work

logger = logging.getLogger(__name__)

RECEIPT_PREFIXES = {
    MovementKind.IN: "PNK",
    MovementKind.OUT: "PXK",
    MovementKind.TRANSFER: "PCK",
}

_BASE36 = string.digits + string.ascii_lowercase


def format_material_id(prefix: str, workshop: str, number: int) -> str:
    return f"{prefix}/{workshop}/{number:05d}"


def parse_material_number(material_id: str, prefix: str, workshop: str) -> int | None:
    head = f"{prefix}/{workshop}/"
    if not material_id or not material_id.startswith(head):
        return None
    tail = material_id[len(head):]
    if not tail.isdigit():
        return None
    return int(tail)


def _normalize_workshop(workshop: str | None) -> str:
    code = (workshop or "").strip()
    if not code:
        raise ValidationError("Workshop is required", field="workshop")
    return code


def _scan_max_number(db: Session, workshop: str, prefix: str) -> int:
    ids = (
        db.execute(
            select(Material.id)
            .where(Material.workshop == workshop)
            .where(Material.id.like(f"{prefix}/{workshop}/%"))
        )
        .scalars()
        .all()
    )
    numbers = [n for n in (parse_material_number(i, prefix, workshop) for i in ids) if n is not None]
    return max(numbers, default=0)


def _insert_sequence_row(db: Session, workshop: str, start: int) -> None:
    """INSERT ... ON CONFLICT DO NOTHING: a concurrent first allocation keeps its row."""
    dialect = postgresql if db.get_bind().dialect.name == "postgresql" else sqlite
    db.execute(
        dialect.insert(WorkshopSequence)
        .values(workshop=workshop, last_value=start)
        .on_conflict_do_nothing(index_elements=[WorkshopSequence.workshop])
    )


def _ensure_sequence(db: Session, workshop: str, prefix: str) -> None:
    exists = db.execute(
        select(WorkshopSequence.workshop).where(WorkshopSequence.workshop == workshop)
    ).scalar_one_or_none()
    if exists:
        return
    # first allocation for this workshop: start after whatever already exists
    _insert_sequence_row(db, workshop, _scan_max_number(db, workshop, prefix))


def next_material_id(db: Session, workshop: str, *, prefix: str | None = None) -> str:
    """
    Allocate inside the caller's unit of work (no commit).
    """
    workshop = _normalize_workshop(workshop)
    prefix = prefix or settings.MATERIAL_ID_PREFIX
    _ensure_sequence(db, workshop, prefix)

    while True:
        db.execute(
            update(WorkshopSequence)
            .where(WorkshopSequence.workshop == workshop)
            .values(last_value=WorkshopSequence.last_value + 1)
            .execution_options(synchronize_session=False)
        )
        value = db.execute(
            select(WorkshopSequence.last_value).where(WorkshopSequence.workshop == workshop)
        ).scalar_one()
        candidate = format_material_id(prefix, workshop, value)
        # explicit catalog ids may already occupy the slot
        if db.get(Material, candidate) is None:
            return candidate


def allocate_material_id(db: Session, workshop: str, *, prefix: str | None = None) -> str:
    with unit_of_work(db):
        material_id = next_material_id(db, workshop, prefix=prefix)
    logger.info("allocated material id %s", material_id)
    return material_id


def new_receipt_id(kind: MovementKind, now_ms: int | None = None) -> str:
    prefix = RECEIPT_PREFIXES[MovementKind(kind)]
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{stamp}-{suffix}"
