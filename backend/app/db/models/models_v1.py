from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db.base import Base
from backend.app.db.models.core_types import MovementKind

# SQLite only auto-increments INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

Quantity = Numeric(14, 2)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- CATALOG ----------
class Material(Base):
    __tablename__ = "materials"
    # workshop-scoped code, e.g. VT/OG/00012
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    classification: Mapped[str | None] = mapped_column(String(64))
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    workshop: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    origin: Mapped[str | None] = mapped_column(String(255))
    note: Mapped[str | None] = mapped_column(Text)
    image: Mapped[str | None] = mapped_column(Text)

    quantity: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"), nullable=False)
    # quantity before the first movement; quantity - opening == signed movement sum
    opening_quantity: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"), nullable=False)
    min_threshold: Mapped[Decimal] = mapped_column(Quantity, default=Decimal("0"), nullable=False)

    last_updated: Mapped[date | None] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_material_quantity_nonneg"),
        CheckConstraint("min_threshold >= 0", name="ck_material_min_threshold_nonneg"),
        Index("ix_materials_workshop_name_origin", "workshop", "name", "origin"),
    )


class WorkshopSequence(Base):
    """Per-workshop counter backing material id allocation."""

    __tablename__ = "workshop_sequences"
    workshop: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (CheckConstraint("last_value >= 0", name="ck_workshop_sequence_nonneg"),)


# ---------- LEDGER ----------
class Movement(Base):
    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    receipt_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    material_id: Mapped[str] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # snapshot at commit time, not joined
    material_name: Mapped[str] = mapped_column(String(255), nullable=False)

    kind: Mapped[MovementKind] = mapped_column(Enum(MovementKind, name="movement_kind"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False)

    business_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    transaction_time: Mapped[str | None] = mapped_column(String(8))
    created_by: Mapped[str] = mapped_column(String(100), default="SYSTEM", nullable=False)

    workshop: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    # TRANSFER only
    target_workshop: Mapped[str | None] = mapped_column(String(32))
    target_material_id: Mapped[str | None] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"),
        index=True,
    )

    order_code: Mapped[str | None] = mapped_column(String(64))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
        Index("ix_stock_movements_material_date", "material_id", "business_date"),
    )
