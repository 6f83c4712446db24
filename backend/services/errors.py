"""
Structured failures raised by the stock ledger.

Each error carries a stable code, a human readable message and a dict of
fields the caller can use to render its own message.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any


class StockLedgerError(Exception):
    code = "STOCK_LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.details.items()},
        }


class ValidationError(StockLedgerError):
    """Missing or malformed request shape."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(StockLedgerError):
    code = "NOT_FOUND"
    status_code = 404


class InsufficientStockError(StockLedgerError):
    """A conditional decrement matched no row."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, material_id: str, current: Decimal, requested: Decimal, *, unit: str | None = None, workshop: str | None = None):
        where = f" at {workshop}" if workshop else ""
        suffix = f" {unit}" if unit else ""
        super().__init__(
            f"Insufficient stock for {material_id}{where}: current {current}{suffix}, requested {requested}{suffix}",
            material_id=material_id,
            current=current,
            requested=requested,
            unit=unit,
            workshop=workshop,
        )
        self.current = current
        self.requested = requested


class InvariantViolationError(StockLedgerError):
    code = "INVARIANT_VIOLATION"
    status_code = 409


class ConflictError(StockLedgerError):
    code = "CONFLICT"
    status_code = 409


class PermissionDeniedError(StockLedgerError):
    code = "FORBIDDEN"
    status_code = 403
