"""
Correction engine: change the quantity recorded on a committed movement.

The signed delta (new - old) is pushed to the same materials the movement
moved, in the same direction: IN adds it, OUT removes it, TRANSFER removes
it from the source and adds it to the destination. If any of them would go
negative nothing is applied.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Material, Movement
from backend.services.clock import Clock, system_clock
from backend.services.errors import ConflictError, InvariantViolationError, ValidationError
from backend.services.inventory import apply_guarded_changes, lock_movement, movement_legs, unit_of_work
from backend.services.notifications import ChangeEvent, ChangeNotifier, notifier as default_notifier
from backend.services.quantities import ZERO, round_qty

logger = logging.getLogger(__name__)


@dataclass
class CorrectionResult:
    movement_id: int
    old_quantity: Decimal
    new_quantity: Decimal
    changed: bool


def _negative_stock(mv: Movement):
    def build(mat: Material, current: Decimal, change: Decimal) -> InvariantViolationError:
        return InvariantViolationError(
            f"Not enough stock of {mat.name} at {mat.workshop} to apply this change "
            f"(current {current} {mat.unit}, change {round_qty(change)} {mat.unit})",
            movement_id=mv.id,
            material_id=mat.id,
            current=current,
            change=round_qty(change),
        )

    return build


def _correct(db: Session, movement_id: int, new_quantity: Decimal, clock: Clock) -> CorrectionResult:
    mv = lock_movement(db, movement_id)

    old_quantity = round_qty(mv.quantity)
    delta = round_qty(new_quantity - old_quantity)
    if delta == ZERO:
        return CorrectionResult(movement_id, old_quantity, old_quantity, changed=False)

    changes = [(leg.material, round_qty(leg.sign * delta)) for leg in movement_legs(db, mv)]
    apply_guarded_changes(db, changes, today=clock.today(), on_negative=_negative_stock(mv))

    # the delta is only valid against the quantity it was computed from
    updated = db.execute(
        update(Movement)
        .where(Movement.id == movement_id)
        .where(Movement.quantity == old_quantity)
        .values(quantity=new_quantity)
        .execution_options(synchronize_session=False)
    ).rowcount
    if updated == 0:
        raise ConflictError(
            f"Movement {movement_id} changed while it was being corrected, try again",
            movement_id=movement_id,
            old_quantity=old_quantity,
        )
    return CorrectionResult(movement_id, old_quantity, new_quantity, changed=True)


def correct_movement_quantity(
    db: Session,
    movement_id: int,
    new_quantity,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> CorrectionResult:
    qty = round_qty(new_quantity)
    if qty <= ZERO:
        raise ValidationError("New quantity must be greater than zero", field="quantity", quantity=qty)

    with unit_of_work(db):
        result = _correct(db, movement_id, qty, clock or system_clock)

    if not result.changed:
        logger.info("movement %s already at %s, nothing to correct", movement_id, qty)
        return result

    logger.info("corrected movement %s: %s -> %s", movement_id, result.old_quantity, result.new_quantity)
    (notifier or default_notifier).notify(
        ChangeEvent(
            action="movement.corrected",
            entity_ids=(str(movement_id),),
            payload={"old_quantity": str(result.old_quantity), "new_quantity": str(result.new_quantity)},
        )
    )
    return result
