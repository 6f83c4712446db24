"""
Read models over the movement ledger.

Nothing here writes. Figures are derived from the cached material quantity
and the signed movement legs (see inventory.signed_movements).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.db.models.models_v1 import Material, Movement
from backend.services.errors import ValidationError
from backend.services.inventory import signed_movements
from backend.services.quantities import ZERO, round_qty

logger = logging.getLogger(__name__)


def list_movements(
    db: Session,
    *,
    material_id: str | None = None,
    workshop: str | None = None,
    receipt_id: str | None = None,
    limit: int | None = None,
) -> list[Movement]:
    stmt = select(Movement).order_by(
        Movement.business_date.desc(),
        Movement.transaction_time.desc(),
        Movement.id.desc(),
    )
    if material_id is not None:
        stmt = stmt.where((Movement.material_id == material_id) | (Movement.target_material_id == material_id))
    if workshop is not None:
        stmt = stmt.where((Movement.workshop == workshop) | (Movement.target_workshop == workshop))
    if receipt_id is not None:
        stmt = stmt.where(Movement.receipt_id == receipt_id)

    return list(db.execute(stmt.limit(limit or settings.HISTORY_LIMIT)).scalars().all())


# ---------- PERIOD REPORT ----------
@dataclass
class StockReportRow:
    material_id: str
    name: str
    unit: str
    workshop: str
    quantity: Decimal
    opening_stock: Decimal
    period_in: Decimal
    period_out: Decimal
    closing_stock: Decimal


def stock_report(db: Session, start: date, end: date, workshop: str | None = None) -> list[StockReportRow]:
    """
    Opening and closing stock of every material for [start, end].

    Stock is walked back from the current quantity:
    opening = quantity - net(date >= start), closing = quantity - net(date > end).
    """
    if start > end:
        raise ValidationError("Report start date is after its end date", start=str(start), end=str(end))

    sm = signed_movements()
    in_period = and_(sm.c.business_date >= start, sm.c.business_date <= end)
    totals = (
        select(
            sm.c.material_id.label("material_id"),
            func.sum(case((sm.c.business_date >= start, sm.c.net), else_=0)).label("since_start"),
            func.sum(case((sm.c.business_date > end, sm.c.net), else_=0)).label("after_end"),
            func.sum(case((and_(in_period, sm.c.is_in == 1), sm.c.quantity), else_=0)).label("period_in"),
            func.sum(case((and_(in_period, sm.c.is_in == 0), sm.c.quantity), else_=0)).label("period_out"),
        )
        .group_by(sm.c.material_id)
        .subquery("totals")
    )

    stmt = (
        select(Material, totals.c.since_start, totals.c.after_end, totals.c.period_in, totals.c.period_out)
        .outerjoin(totals, totals.c.material_id == Material.id)
        .order_by(Material.workshop, Material.name, Material.id)
    )
    if workshop is not None:
        stmt = stmt.where(Material.workshop == workshop)

    rows = []
    for mat, since_start, after_end, period_in, period_out in db.execute(stmt).all():
        quantity = round_qty(mat.quantity)
        rows.append(
            StockReportRow(
                material_id=mat.id,
                name=mat.name,
                unit=mat.unit,
                workshop=mat.workshop,
                quantity=quantity,
                opening_stock=round_qty(quantity - round_qty(since_start)),
                period_in=round_qty(period_in),
                period_out=round_qty(period_out),
                closing_stock=round_qty(quantity - round_qty(after_end)),
            )
        )
    return rows


# ---------- DASHBOARD ----------
def _in_out_by_day(db: Session, start: date, end: date) -> dict[date, tuple[Decimal, Decimal]]:
    sm = signed_movements()
    stmt = (
        select(
            sm.c.business_date,
            func.sum(case((sm.c.is_in == 1, sm.c.quantity), else_=0)),
            func.sum(case((sm.c.is_in == 0, sm.c.quantity), else_=0)),
        )
        .where(sm.c.business_date >= start)
        .where(sm.c.business_date <= end)
        .group_by(sm.c.business_date)
    )
    return {day: (round_qty(qty_in), round_qty(qty_out)) for day, qty_in, qty_out in db.execute(stmt).all()}


def dashboard_summary(db: Session, today: date) -> dict:
    low_stock = Material.quantity <= Material.min_threshold

    total_items = db.execute(select(func.count()).select_from(Material)).scalar_one()
    low_stock_count = db.execute(select(func.count()).select_from(Material).where(low_stock)).scalar_one()
    low_stock_items = (
        db.execute(select(Material).where(low_stock).order_by(Material.quantity.asc(), Material.id).limit(10))
        .scalars()
        .all()
    )
    workshops = db.execute(
        select(Material.workshop, func.count(), func.coalesce(func.sum(Material.quantity), 0))
        .group_by(Material.workshop)
        .order_by(Material.workshop)
    ).all()

    week_start = today - timedelta(days=6)
    by_day = _in_out_by_day(db, week_start, today)
    today_in, today_out = by_day.get(today, (ZERO, ZERO))

    activity = []
    for offset in range(7):
        day = week_start + timedelta(days=offset)
        qty_in, qty_out = by_day.get(day, (ZERO, ZERO))
        activity.append({"date": day, "in": qty_in, "out": qty_out})

    return {
        "total_items": total_items,
        "low_stock_count": low_stock_count,
        "low_stock_items": list(low_stock_items),
        "today_in": today_in,
        "today_out": today_out,
        "workshops": [
            {"workshop": name, "total": count, "quantity": round_qty(qty)} for name, count, qty in workshops
        ],
        "activity": activity,
    }


# ---------- RECONCILIATION ----------
@dataclass(frozen=True)
class Drift:
    material_id: str
    cached_quantity: Decimal
    ledger_quantity: Decimal

    @property
    def difference(self) -> Decimal:
        return round_qty(self.cached_quantity - self.ledger_quantity)


def reconcile(db: Session, material_id: str | None = None) -> list[Drift]:
    """Materials whose cached quantity disagrees with opening + signed movements."""
    sm = signed_movements()
    net = (
        select(sm.c.material_id.label("material_id"), func.sum(sm.c.net).label("net"))
        .group_by(sm.c.material_id)
        .subquery("net")
    )
    stmt = (
        select(Material.id, Material.quantity, Material.opening_quantity, net.c.net)
        .outerjoin(net, net.c.material_id == Material.id)
        .order_by(Material.id)
    )
    if material_id is not None:
        stmt = stmt.where(Material.id == material_id)

    drifts = []
    for mid, quantity, opening, movement_net in db.execute(stmt).all():
        cached = round_qty(quantity)
        expected = round_qty(round_qty(opening) + round_qty(movement_net))
        if cached != expected:
            logger.warning("stock drift on %s: cached=%s ledger=%s", mid, cached, expected)
            drifts.append(Drift(material_id=mid, cached_quantity=cached, ledger_quantity=expected))
    return drifts
