from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import MovementKind


class LineItemIn(BaseModel):
    material_id: str = Field(min_length=1, max_length=64)
    # <= 0 is accepted here and skipped by the ledger
    quantity: Decimal


class ReceiptCreate(BaseModel):
    kind: MovementKind
    workshop: str = Field(min_length=1, max_length=32)
    items: list[LineItemIn] = Field(min_length=1)
    receipt_id: str | None = Field(default=None, max_length=64)
    business_date: date | None = None
    order_code: str | None = Field(default=None, max_length=64)
    supplier: str | None = None


class TransferCreate(BaseModel):
    from_workshop: str = Field(min_length=1, max_length=32)
    to_workshop: str = Field(min_length=1, max_length=32)
    items: list[LineItemIn] = Field(min_length=1)
    receipt_id: str | None = Field(default=None, max_length=64)
    business_date: date | None = None
    order_code: str | None = Field(default=None, max_length=64)


class CorrectionRequest(BaseModel):
    quantity: Decimal = Field(gt=0)


class CommitRead(BaseModel):
    success: bool = True
    affected_count: int
    receipt_id: str
    movement_ids: list[int]


class MovementRead(BaseModel):
    id: int
    receipt_id: str
    material_id: str
    material_name: str
    kind: MovementKind
    quantity: Decimal
    business_date: date
    transaction_time: str | None
    created_by: str
    workshop: str
    target_workshop: str | None
    target_material_id: str | None
    order_code: str | None
    note: str | None

    class Config:
        from_attributes = True
