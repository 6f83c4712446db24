"""
Reversal engine: undo a committed movement and delete it.

Guards, checked in this order before anything is written:
1. the movement exists
2. no newer movement touches the same material
3. undoing it leaves every affected material >= 0

"Newer" is ordered by (business_date, id): a later business date, or the
same date recorded after this movement. Comparing dates alone would let a
same-day reversal slide under a later issue that already consumed the stock.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Material, Movement
from backend.services.clock import Clock, system_clock
from backend.services.errors import ConflictError, InvariantViolationError, NotFoundError
from backend.services.inventory import (
    apply_guarded_changes,
    lock_material_rows,
    lock_movement,
    movement_legs,
    unit_of_work,
)
from backend.services.notifications import ChangeEvent, ChangeNotifier, notifier as default_notifier
from backend.services.quantities import round_qty

logger = logging.getLogger(__name__)


def count_newer_movements(db: Session, mv: Movement) -> int:
    touches_material = or_(
        Movement.material_id == mv.material_id,
        Movement.target_material_id == mv.material_id,
    )
    is_newer = or_(
        Movement.business_date > mv.business_date,
        and_(Movement.business_date == mv.business_date, Movement.id > mv.id),
    )
    return db.execute(
        select(func.count())
        .select_from(Movement)
        .where(Movement.id != mv.id)
        .where(touches_material)
        .where(is_newer)
    ).scalar_one()


def _negative_stock(mv: Movement):
    def build(mat: Material, current: Decimal, change: Decimal) -> InvariantViolationError:
        return InvariantViolationError(
            f"Reverting movement {mv.id} would make stock of {mat.name} at {mat.workshop} negative "
            f"(current {current} {mat.unit}, to remove {round_qty(-change)} {mat.unit})",
            movement_id=mv.id,
            material_id=mat.id,
            current=current,
            change=round_qty(change),
        )

    return build


def _revert(db: Session, movement_id: int, clock: Clock) -> dict:
    mv = lock_movement(db, movement_id)
    # held until commit: a concurrent commit on these materials cannot slip
    # in between the guard below and the delete
    lock_material_rows(db, [mv.material_id, mv.target_material_id])

    newer = count_newer_movements(db, mv)
    if newer:
        logger.warning("refused reversal of movement %s: %d newer movements", mv.id, newer)
        raise ConflictError(
            f"Movement {mv.id} cannot be reverted: {newer} newer movements exist for this material",
            movement_id=mv.id,
            material_id=mv.material_id,
            newer_count=newer,
        )

    qty = round_qty(mv.quantity)
    changes = [(leg.material, round_qty(-leg.sign * qty)) for leg in movement_legs(db, mv)]
    apply_guarded_changes(db, changes, today=clock.today(), on_negative=_negative_stock(mv))

    reverted = {
        "kind": mv.kind.value,
        "receipt_id": mv.receipt_id,
        "material_id": mv.material_id,
        "quantity": qty,
    }
    deleted = db.execute(
        delete(Movement).where(Movement.id == mv.id).execution_options(synchronize_session=False)
    ).rowcount
    if deleted == 0:
        # reverted meanwhile by another request; raising rolls the stock changes back
        raise NotFoundError(f"Movement {movement_id} not found", movement_id=movement_id)
    db.expunge(mv)
    return reverted


def reverse_movement(
    db: Session,
    movement_id: int,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> bool:
    with unit_of_work(db):
        reverted = _revert(db, movement_id, clock or system_clock)

    logger.info(
        "reverted %s movement %s (%s x %s)",
        reverted["kind"],
        movement_id,
        reverted["material_id"],
        reverted["quantity"],
    )
    (notifier or default_notifier).notify(
        ChangeEvent(
            action="movement.reversed",
            entity_ids=(str(movement_id),),
            payload={"receipt_id": reverted["receipt_id"], "material_id": reverted["material_id"]},
        )
    )
    return True
