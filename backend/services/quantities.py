"""
Quantity arithmetic shared by every stock mutation.

Quantities are Decimals with two places. They are rounded after every
arithmetic step so that many small movements cannot accumulate drift.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

QTY_STEP = Decimal("0.01")
ZERO = Decimal("0.00")


def round_qty(value) -> Decimal:
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        qty = value if isinstance(value, Decimal) else Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return ZERO
    if not qty.is_finite():
        return ZERO
    return qty.quantize(QTY_STEP, rounding=ROUND_HALF_UP)


def is_present(value) -> bool:
    """A line quantity is processed only if it is > 0 once rounded."""
    return round_qty(value) > ZERO
