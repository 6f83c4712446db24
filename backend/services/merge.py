"""
Merge engine: consolidate several materials of one workshop into a new one.

The caller states the merged quantity explicitly; it is not recomputed from
the sources so that a count discrepancy can be fixed during the merge.
History is kept: every movement pointing at a source (as material or as
transfer destination) is re-pointed at the new material.

Authorization (privileged role) is the API layer's job.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.db.models.models_v1 import Material, Movement
from backend.services.clock import Clock, system_clock
from backend.services.errors import InvariantViolationError, NotFoundError, ValidationError
from backend.services.identifiers import next_material_id
from backend.services.inventory import net_movement_sum, unit_of_work
from backend.services.notifications import ChangeEvent, ChangeNotifier, notifier as default_notifier
from backend.services.quantities import ZERO, round_qty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeTarget:
    name: str
    unit: str
    quantity: Decimal = ZERO
    classification: str | None = None
    origin: str | None = None
    note: str | None = None
    min_threshold: Decimal | None = None


@dataclass
class MergeResult:
    new_material_id: str
    merged_count: int


def _validate(source_ids, target: MergeTarget) -> list[str]:
    ids = list(dict.fromkeys(str(i).strip() for i in (source_ids or []) if i and str(i).strip()))
    if len(ids) < 2:
        raise ValidationError("Select at least two materials to merge", field="material_ids")
    if target is None or not (target.name or "").strip() or not (target.unit or "").strip():
        raise ValidationError("Merged material needs a name and a unit", field="target")
    if round_qty(target.quantity) < ZERO:
        raise ValidationError("Merged quantity cannot be negative", field="quantity")
    return ids


def _merge(db: Session, ids: list[str], target: MergeTarget, clock: Clock) -> MergeResult:
    sources: list[Material] = []
    for material_id in ids:
        mat = db.get(Material, material_id)
        if not mat:
            raise NotFoundError(f"Material {material_id} not found", material_id=material_id)
        sources.append(mat)

    workshops = {m.workshop for m in sources}
    if len(workshops) > 1:
        raise InvariantViolationError(
            "Only materials of the same workshop can be merged",
            workshops=sorted(workshops),
        )
    units = {m.unit for m in sources}
    if len(units) > 1:
        raise InvariantViolationError(
            "Only materials with the same unit can be merged",
            units=sorted(units),
        )

    workshop = sources[0].workshop
    quantity = round_qty(target.quantity)
    min_threshold = (
        round_qty(target.min_threshold)
        if target.min_threshold is not None
        else round_qty(sources[0].min_threshold or settings.DEFAULT_MIN_THRESHOLD)
    )

    merged = Material(
        id=next_material_id(db, workshop),
        name=target.name.strip(),
        classification=target.classification,
        unit=target.unit.strip(),
        workshop=workshop,
        origin=target.origin,
        note=target.note,
        quantity=quantity,
        opening_quantity=ZERO,
        min_threshold=min_threshold,
        last_updated=clock.today(),
    )
    db.add(merged)
    db.flush()

    db.execute(
        update(Movement)
        .where(Movement.material_id.in_(ids))
        .values(material_id=merged.id, material_name=merged.name)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(Movement)
        .where(Movement.target_material_id.in_(ids))
        .values(target_material_id=merged.id)
        .execution_options(synchronize_session=False)
    )

    # the stated quantity may differ from the inherited history; the gap
    # becomes the opening balance so the ledger still reconciles
    merged.opening_quantity = round_qty(quantity - net_movement_sum(db, merged.id))

    db.execute(delete(Material).where(Material.id.in_(ids)).execution_options(synchronize_session=False))
    for mat in sources:
        db.expunge(mat)
    db.flush()

    return MergeResult(new_material_id=merged.id, merged_count=len(ids))


def merge_materials(
    db: Session,
    source_ids,
    target: MergeTarget,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> MergeResult:
    ids = _validate(source_ids, target)

    with unit_of_work(db):
        result = _merge(db, ids, target, clock or system_clock)

    logger.info("merged %s into %s", ", ".join(ids), result.new_material_id)
    (notifier or default_notifier).notify(
        ChangeEvent(
            action="materials.merged",
            entity_ids=(result.new_material_id, *ids),
            payload={"merged_count": result.merged_count},
        )
    )
    return result
