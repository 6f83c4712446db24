from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.db.models.models_v1 import Material, Movement
from backend.services.clock import Clock, system_clock
from backend.services.errors import InvariantViolationError, ValidationError
from backend.services.identifiers import next_material_id
from backend.services.inventory import get_material, unit_of_work
from backend.services.notifications import ChangeEvent, ChangeNotifier, notifier as default_notifier
from backend.services.quantities import ZERO, round_qty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterialDefinition:
    name: str
    unit: str
    workshop: str
    id: str | None = None
    classification: str | None = None
    quantity: Decimal = ZERO
    min_threshold: Decimal | None = None
    origin: str | None = None
    note: str | None = None
    image: str | None = None


@dataclass(frozen=True)
class MaterialChanges:
    """Descriptive fields only; None means unchanged."""

    name: str | None = None
    classification: str | None = None
    unit: str | None = None
    min_threshold: Decimal | None = None
    origin: str | None = None
    note: str | None = None
    image: str | None = None


def _notify(notifier: ChangeNotifier | None, action: str, material_id: str) -> None:
    (notifier or default_notifier).notify(ChangeEvent(action=action, entity_ids=(material_id,)))


def create_material(
    db: Session,
    definition: MaterialDefinition,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> str:
    clock = clock or system_clock
    name = (definition.name or "").strip()
    unit = (definition.unit or "").strip()
    workshop = (definition.workshop or "").strip()
    if not name or not unit or not workshop:
        raise ValidationError("Material needs a name, a unit and a workshop", field="material")

    quantity = round_qty(definition.quantity)
    if quantity < ZERO:
        raise ValidationError("Quantity cannot be negative", field="quantity")
    threshold = definition.min_threshold if definition.min_threshold is not None else settings.DEFAULT_MIN_THRESHOLD

    with unit_of_work(db):
        if definition.id:
            if db.get(Material, definition.id):
                raise ValidationError(f"Material {definition.id} already exists", field="id", material_id=definition.id)
            material_id = definition.id
        else:
            material_id = next_material_id(db, workshop)

        db.add(
            Material(
                id=material_id,
                name=name,
                classification=definition.classification,
                unit=unit,
                workshop=workshop,
                origin=definition.origin,
                note=definition.note,
                image=definition.image,
                quantity=quantity,
                opening_quantity=quantity,
                min_threshold=round_qty(threshold),
                last_updated=clock.today(),
            )
        )
        db.flush()

    logger.info("created material %s (%s) at %s", material_id, name, workshop)
    _notify(notifier, "material.created", material_id)
    return material_id


def update_material(
    db: Session,
    material_id: str,
    changes: MaterialChanges,
    *,
    clock: Clock | None = None,
    notifier: ChangeNotifier | None = None,
) -> None:
    clock = clock or system_clock
    with unit_of_work(db):
        mat = get_material(db, material_id)
        for f in fields(changes):
            value = getattr(changes, f.name)
            if value is None:
                continue
            if f.name == "min_threshold":
                value = round_qty(value)
                if value < ZERO:
                    raise ValidationError("Minimum threshold cannot be negative", field="min_threshold")
            elif f.name in ("name", "unit") and not str(value).strip():
                raise ValidationError(f"Material {f.name} cannot be empty", field=f.name)
            setattr(mat, f.name, value)
        mat.last_updated = clock.today()
        db.flush()

    _notify(notifier, "material.updated", material_id)


def count_movements(db: Session, material_id: str) -> int:
    return db.execute(
        select(func.count())
        .select_from(Movement)
        .where(or_(Movement.material_id == material_id, Movement.target_material_id == material_id))
    ).scalar_one()


def delete_material(
    db: Session,
    material_id: str,
    *,
    notifier: ChangeNotifier | None = None,
) -> None:
    with unit_of_work(db):
        mat = get_material(db, material_id)
        used = count_movements(db, material_id)
        if used:
            raise InvariantViolationError(
                f"Material {material_id} has {used} movements and cannot be deleted; merge it instead",
                material_id=material_id,
                movement_count=used,
            )
        db.delete(mat)
        db.flush()

    logger.info("deleted material %s", material_id)
    _notify(notifier, "material.deleted", material_id)
