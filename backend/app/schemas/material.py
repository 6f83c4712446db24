from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field


class MaterialCreate(BaseModel):
    id: str | None = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    unit: str = Field(min_length=1, max_length=32)
    workshop: str = Field(min_length=1, max_length=32)
    classification: str | None = Field(default=None, max_length=64)
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    min_threshold: Decimal | None = Field(default=None, ge=0)
    origin: str | None = Field(default=None, max_length=255)
    note: str | None = None
    image: str | None = None


class MaterialUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    unit: str | None = Field(default=None, min_length=1, max_length=32)
    classification: str | None = Field(default=None, max_length=64)
    min_threshold: Decimal | None = Field(default=None, ge=0)
    origin: str | None = Field(default=None, max_length=255)
    note: str | None = None
    image: str | None = None


class MaterialRead(BaseModel):
    id: str
    name: str
    classification: str | None
    unit: str
    workshop: str
    origin: str | None
    note: str | None
    quantity: Decimal
    min_threshold: Decimal
    last_updated: date | None

    class Config:
        from_attributes = True


class StockReportRead(BaseModel):
    material_id: str
    name: str
    unit: str
    workshop: str
    quantity: Decimal
    opening_stock: Decimal
    period_in: Decimal
    period_out: Decimal
    closing_stock: Decimal

    class Config:
        from_attributes = True


class MaterialIdRequest(BaseModel):
    workshop: str = Field(min_length=1, max_length=32)


class MergeRequest(BaseModel):
    material_ids: list[str] = Field(min_length=2)
    name: str = Field(min_length=1, max_length=255)
    unit: str = Field(min_length=1, max_length=32)
    quantity: Decimal = Field(default=Decimal("0"), ge=0)
    classification: str | None = Field(default=None, max_length=64)
    origin: str | None = Field(default=None, max_length=255)
    note: str | None = None
    min_threshold: Decimal | None = Field(default=None, ge=0)
