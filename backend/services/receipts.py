"""
Batch commit engine.

A receipt (IN or OUT) or a transfer is applied as one unit of work: every
valid line is applied and logged, or nothing is. Lines are processed in the
order given; a failure on any line rolls back the lines already applied.

Rules per line:
- quantity is rounded to 2 places; lines that round to <= 0 are skipped
- the stock holder is the material matching (workshop, name, origin), the
  material id given on the line only seeds that lookup
- IN creates the holder at the workshop when missing, OUT refuses
- decrements are conditional (quantity >= requested) in a single UPDATE
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session

from backend.app.db.models.core_types import MovementKind
from backend.app.db.models.models_v1 import Material, Movement
from backend.services.clock import Clock, system_clock
from backend.services.errors import NotFoundError, ValidationError
from backend.services.identifiers import new_receipt_id, next_material_id
from backend.services.inventory import (
    Found,
    Missing,
    MaterialLookup,
    conditional_decrement,
    find_at_workshop,
    increment,
    unit_of_work,
)
from backend.services.notifications import ChangeEvent, ChangeNotifier, notifier as default_notifier
from backend.services.quantities import ZERO, is_present, round_qty

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "SYSTEM"


@dataclass(frozen=True)
class LineItem:
    material_id: str
    quantity: Decimal


@dataclass(frozen=True)
class CommitMetadata:
    receipt_id: str | None = None
    business_date: date | None = None
    actor: str | None = None
    order_code: str | None = None
    supplier: str | None = None


@dataclass
class CommitResult:
    affected_count: int
    receipt_id: str
    movement_ids: list[int] = field(default_factory=list)


# ---------- Helpers ----------
def _coerce_items(items: Any) -> list[LineItem]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Item list is empty", field="items")

    lines: list[LineItem] = []
    for index, raw in enumerate(items):
        if isinstance(raw, LineItem):
            material_id, quantity = raw.material_id, raw.quantity
        elif isinstance(raw, Mapping):
            material_id, quantity = raw.get("material_id"), raw.get("quantity")
        else:
            raise ValidationError(f"Item {index} is malformed", field="items", index=index)
        if not material_id or not str(material_id).strip():
            raise ValidationError(f"Item {index} has no material_id", field="items", index=index)
        lines.append(LineItem(material_id=str(material_id).strip(), quantity=round_qty(quantity)))
    return lines


def _valid_lines(lines: Iterable[LineItem]) -> list[LineItem]:
    # non-positive quantities are dropped, not rejected
    return [ln for ln in lines if is_present(ln.quantity)]


def _create_holder(db: Session, base: Material, workshop: str, today: date) -> Material:
    """Material for `base` at another workshop, starting empty."""
    mat = Material(
        id=next_material_id(db, workshop),
        name=base.name,
        classification=base.classification,
        unit=base.unit,
        workshop=workshop,
        origin=base.origin,
        note=base.note,
        image=base.image,
        quantity=ZERO,
        opening_quantity=ZERO,
        min_threshold=base.min_threshold,
        last_updated=today,
    )
    db.add(mat)
    db.flush()
    logger.info("created material %s (%s) at workshop %s", mat.id, mat.name, workshop)
    return mat


def _notify(notifier: ChangeNotifier | None, action: str, result: CommitResult) -> None:
    (notifier or default_notifier).notify(
        ChangeEvent(
            action=action,
            entity_ids=tuple(str(i) for i in result.movement_ids),
            payload={"receipt_id": result.receipt_id, "affected": result.affected_count},
        )
    )


# ---------- Receipt (IN / OUT) ----------
def _apply_receipt(
    db: Session,
    kind: MovementKind,
    workshop: str,
    lines: list[LineItem],
    meta: CommitMetadata,
    clock: Clock,
) -> CommitResult:
    today = clock.today()
    receipt_id = meta.receipt_id or new_receipt_id(kind)
    rows: list[Movement] = []

    for ln in lines:
        base = db.get(Material, ln.material_id)
        if not base:
            raise NotFoundError(f"Material {ln.material_id} not found", material_id=ln.material_id)

        lookup: MaterialLookup = find_at_workshop(db, workshop, base.name, base.origin)
        if isinstance(lookup, Missing):
            if kind == MovementKind.OUT:
                raise NotFoundError(
                    f"Material {base.name} has never been received at workshop {workshop}",
                    material_id=base.id,
                    workshop=workshop,
                )
            holder = _create_holder(db, base, workshop, today)
        else:
            holder = lookup.material

        if kind == MovementKind.IN:
            increment(db, holder, ln.quantity, today=today)
        else:
            conditional_decrement(db, holder, ln.quantity, today=today, workshop=workshop)

        rows.append(
            Movement(
                receipt_id=receipt_id,
                material_id=holder.id,
                material_name=holder.name,
                kind=kind,
                quantity=ln.quantity,
                business_date=meta.business_date or today,
                transaction_time=clock.time_of_day(),
                created_by=meta.actor or DEFAULT_ACTOR,
                workshop=workshop,
                target_workshop=None,
                target_material_id=None,
                order_code=meta.order_code,
                note=meta.supplier if kind == MovementKind.IN else None,
            )
        )

    db.add_all(rows)
    db.flush()
    return CommitResult(affected_count=len(rows), receipt_id=receipt_id, movement_ids=[int(r.id) for r in rows])


def commit_receipt(
    db: Session,
    kind: MovementKind | str,
    workshop: str | None,
    items: Any,
    metadata: CommitMetadata | None = None,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> CommitResult:
    try:
        kind = MovementKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown receipt kind {kind!r}", field="kind") from None
    if kind == MovementKind.TRANSFER:
        raise ValidationError("Transfers are committed with commit_transfer", field="kind")

    workshop = (workshop or "").strip()
    if not workshop:
        raise ValidationError("Receipt workshop is required", field="workshop")

    lines = _valid_lines(_coerce_items(items))
    if not lines:
        raise ValidationError("No valid line to commit", field="items")

    with unit_of_work(db):
        result = _apply_receipt(db, kind, workshop, lines, metadata or CommitMetadata(), clock or system_clock)

    logger.info("committed %s receipt %s at %s (%d lines)", kind.value, result.receipt_id, workshop, result.affected_count)
    _notify(notifier, f"receipt.{kind.value.lower()}", result)
    return result


# ---------- Transfer ----------
def _apply_transfer(
    db: Session,
    from_workshop: str,
    to_workshop: str,
    lines: list[LineItem],
    meta: CommitMetadata,
    clock: Clock,
) -> CommitResult:
    today = clock.today()
    receipt_id = meta.receipt_id or new_receipt_id(MovementKind.TRANSFER)
    rows: list[Movement] = []

    for ln in lines:
        source = db.get(Material, ln.material_id)
        if not source or source.workshop != from_workshop:
            raise NotFoundError(
                f"Material {ln.material_id} not found at source workshop {from_workshop}",
                material_id=ln.material_id,
                workshop=from_workshop,
            )

        conditional_decrement(db, source, ln.quantity, today=today, workshop=from_workshop)

        lookup: MaterialLookup = find_at_workshop(db, to_workshop, source.name, source.origin)
        if isinstance(lookup, Found):
            dest = lookup.material
        else:
            dest = _create_holder(db, source, to_workshop, today)

        increment(db, dest, ln.quantity, today=today)

        rows.append(
            Movement(
                receipt_id=receipt_id,
                material_id=source.id,
                material_name=source.name,
                kind=MovementKind.TRANSFER,
                quantity=ln.quantity,
                business_date=meta.business_date or today,
                transaction_time=clock.time_of_day(),
                created_by=meta.actor or DEFAULT_ACTOR,
                workshop=from_workshop,
                target_workshop=to_workshop,
                target_material_id=dest.id,
                order_code=meta.order_code,
                note=None,
            )
        )

    db.add_all(rows)
    db.flush()
    return CommitResult(affected_count=len(rows), receipt_id=receipt_id, movement_ids=[int(r.id) for r in rows])


def commit_transfer(
    db: Session,
    from_workshop: str | None,
    to_workshop: str | None,
    items: Any,
    metadata: CommitMetadata | None = None,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> CommitResult:
    from_workshop = (from_workshop or "").strip()
    to_workshop = (to_workshop or "").strip()
    if not from_workshop or not to_workshop:
        raise ValidationError("Source and destination workshops are required", field="workshop")
    if from_workshop == to_workshop:
        raise ValidationError("Source and destination workshops must differ", field="workshop")

    lines = _valid_lines(_coerce_items(items))
    if not lines:
        raise ValidationError("No valid line to transfer", field="items")

    with unit_of_work(db):
        result = _apply_transfer(db, from_workshop, to_workshop, lines, metadata or CommitMetadata(), clock or system_clock)

    logger.info(
        "committed transfer %s %s -> %s (%d lines)",
        result.receipt_id,
        from_workshop,
        to_workshop,
        result.affected_count,
    )
    _notify(notifier, "transfer", result)
    return result


def commit_batch(
    db: Session,
    kind: MovementKind | str,
    *,
    items: Any,
    workshop: str | None = None,
    from_workshop: str | None = None,
    to_workshop: str | None = None,
    metadata: CommitMetadata | None = None,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> CommitResult:
    try:
        kind = MovementKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown movement kind {kind!r}", field="kind") from None

    if kind == MovementKind.TRANSFER:
        return commit_transfer(db, from_workshop, to_workshop, items, metadata, clock=clock, notifier=notifier)
    return commit_receipt(db, kind, workshop, items, metadata, clock=clock, notifier=notifier)
