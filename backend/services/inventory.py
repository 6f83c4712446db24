"""
Stock primitives shared by the ledger engines.

Every quantity change in the system goes through change_quantity(): a single
UPDATE statement that, for decrements, only matches the row when the stock
is sufficient. Two concurrent issues against the same material therefore
cannot both read a stale quantity and both succeed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterator, Union

from sqlalchemy import case, func, literal, select, union_all, update
from sqlalchemy.orm import Session

from backend.app.db.models.core_types import MovementKind
from backend.app.db.models.models_v1 import Material, Movement
from backend.services.errors import InsufficientStockError, NotFoundError
from backend.services.quantities import ZERO, round_qty

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit on success, roll everything back on any error."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


# ---------- LOOKUP ----------
@dataclass(frozen=True)
class Found:
    material: Material


@dataclass(frozen=True)
class Missing:
    workshop: str
    name: str
    origin: str | None


MaterialLookup = Union[Found, Missing]


def find_at_workshop(db: Session, workshop: str, name: str, origin: str | None) -> MaterialLookup:
    """
    Material holding the stock of (name, origin) inside a workshop.

    origin=None matches materials without origin (IS NULL).
    """
    mat = (
        db.execute(
            select(Material)
            .where(Material.workshop == workshop)
            .where(Material.name == name)
            .where(Material.origin == origin)
            .order_by(Material.id.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )
    if mat is None:
        return Missing(workshop=workshop, name=name, origin=origin)
    return Found(mat)


def get_material(db: Session, material_id: str) -> Material:
    mat = db.get(Material, material_id)
    if not mat:
        raise NotFoundError(f"Material {material_id} not found", material_id=material_id)
    return mat


def resolve_material(
    db: Session,
    material_id: str | None,
    material_name: str,
    workshop: str | None,
) -> Material | None:
    """By id first, then by (name, workshop) when the stored reference is stale."""
    if material_id:
        mat = db.get(Material, material_id)
        if mat:
            return mat
    if not workshop:
        return None
    return (
        db.execute(
            select(Material)
            .where(Material.name == material_name)
            .where(Material.workshop == workshop)
            .order_by(Material.id.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def lock_movement(db: Session, movement_id: int) -> Movement:
    """
    Fresh copy of the movement, row locked until the unit of work ends.

    populate_existing overwrites whatever the session already holds, so a
    movement changed or deleted by another request is never acted on stale.
    """
    mv = (
        db.execute(
            select(Movement)
            .where(Movement.id == movement_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )
    if mv is None:
        raise NotFoundError(f"Movement {movement_id} not found", movement_id=movement_id)
    return mv


def lock_material_rows(db: Session, material_ids) -> None:
    """Serialize against concurrent commits touching these materials."""
    ids = sorted({i for i in material_ids if i})
    if ids:
        db.execute(select(Material.id).where(Material.id.in_(ids)).order_by(Material.id).with_for_update()).all()


def current_quantity(db: Session, material_id: str) -> Decimal | None:
    qty = db.execute(select(Material.quantity).where(Material.id == material_id)).scalar_one_or_none()
    if qty is None:
        return None
    return round_qty(qty)


# ---------- MUTATION ----------
def change_quantity(db: Session, material_id: str, change: Decimal, *, today: date) -> bool:
    """
    quantity = round(quantity + change, 2) in one statement.

    Negative changes carry the guard quantity >= -change in the WHERE clause.
    Returns False when no row matched (missing material or short stock).
    """
    change = round_qty(change)
    stmt = update(Material).where(Material.id == material_id)
    if change < ZERO:
        stmt = stmt.where(Material.quantity >= -change)
    result = db.execute(
        stmt.values(
            quantity=func.round(Material.quantity + change, 2),
            last_updated=today,
        ).execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def increment(db: Session, material: Material, qty: Decimal, *, today: date) -> None:
    if not change_quantity(db, material.id, qty, today=today):
        raise NotFoundError(f"Material {material.id} not found", material_id=material.id)


def conditional_decrement(
    db: Session,
    material: Material,
    qty: Decimal,
    *,
    today: date,
    workshop: str | None = None,
) -> None:
    if change_quantity(db, material.id, -qty, today=today):
        return

    current = current_quantity(db, material.id)
    if current is None:
        raise NotFoundError(f"Material {material.id} not found", material_id=material.id)

    logger.warning("insufficient stock for %s: current=%s requested=%s", material.id, current, qty)
    raise InsufficientStockError(
        material.id,
        current,
        round_qty(qty),
        unit=material.unit,
        workshop=workshop or material.workshop,
    )


# ---------- SIGNED LEDGER ----------
def signed_movements():
    """
    One row per (material, movement leg) with its signed effect.

    IN +q, OUT -q, TRANSFER -q on the source and +q on the destination.
    """
    outgoing = select(
        Movement.material_id.label("material_id"),
        Movement.business_date.label("business_date"),
        Movement.quantity.label("quantity"),
        case((Movement.kind == MovementKind.IN, Movement.quantity), else_=-Movement.quantity).label("net"),
        case((Movement.kind == MovementKind.IN, 1), else_=0).label("is_in"),
    )
    incoming = (
        select(
            Movement.target_material_id.label("material_id"),
            Movement.business_date.label("business_date"),
            Movement.quantity.label("quantity"),
            Movement.quantity.label("net"),
            literal(1).label("is_in"),
        )
        .where(Movement.kind == MovementKind.TRANSFER)
        .where(Movement.target_material_id.is_not(None))
    )
    return union_all(outgoing, incoming).subquery("signed_movements")


def net_movement_sum(db: Session, material_id: str) -> Decimal:
    sm = signed_movements()
    total = db.execute(
        select(func.coalesce(func.sum(sm.c.net), 0)).where(sm.c.material_id == material_id)
    ).scalar_one()
    return round_qty(total)


# ---------- MOVEMENT LEGS ----------
@dataclass(frozen=True)
class Leg:
    material: Material
    sign: int


def movement_legs(db: Session, mv: Movement) -> list[Leg]:
    """
    Materials a movement acts on and the direction it moved them.

    Stale references fall back to (material_name, workshop); a leg that
    cannot be resolved at all is an error rather than a silent skip.
    """
    source = resolve_material(db, mv.material_id, mv.material_name, mv.workshop)
    if source is None:
        raise NotFoundError(
            f"Material {mv.material_id} of movement {mv.id} not found",
            material_id=mv.material_id,
            movement_id=mv.id,
        )

    if mv.kind == MovementKind.IN:
        return [Leg(source, 1)]
    if mv.kind == MovementKind.OUT:
        return [Leg(source, -1)]

    dest = resolve_material(db, mv.target_material_id, mv.material_name, mv.target_workshop)
    if dest is None:
        raise NotFoundError(
            f"Destination material of transfer {mv.id} not found",
            material_id=mv.target_material_id,
            movement_id=mv.id,
        )
    return [Leg(source, -1), Leg(dest, 1)]


def apply_guarded_changes(
    db: Session,
    changes: list[tuple[Material, Decimal]],
    *,
    today: date,
    on_negative,
) -> None:
    """
    Apply several quantity changes, all or none.

    Every change is checked against the current quantity before the first
    write; on_negative(material, current, change) builds the error raised
    when a material would go below zero. The writes stay conditional so a
    concurrent issue between check and write still cannot drive stock
    negative.
    """
    for mat, change in changes:
        if change >= ZERO:
            continue
        current = current_quantity(db, mat.id)
        if current is None:
            raise NotFoundError(f"Material {mat.id} not found", material_id=mat.id)
        if round_qty(current + change) < ZERO:
            raise on_negative(mat, current, change)

    for mat, change in changes:
        if change == ZERO:
            continue
        if not change_quantity(db, mat.id, change, today=today):
            raise on_negative(mat, current_quantity(db, mat.id) or ZERO, change)
