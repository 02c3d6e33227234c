"""
Currency helpers.

Amounts are stored as integer cents and exchanged on the wire as currency
units (e.g. 59.90). Conversion goes through Decimal so binary float noise
never reaches the database.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")
QUANTITY_STEP = Decimal("0.001")


def to_cents(value) -> int:
    """Convert a currency amount (int, float, str or Decimal) to cents."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int | None) -> float | None:
    if cents is None:
        return None
    return float((Decimal(cents) / 100).quantize(CENT))


def to_quantity(value) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("quantity must be a number")
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid quantity: {value!r}")
    if not quantity.is_finite():
        raise ValueError(f"invalid quantity: {value!r}")
    return quantity.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def line_total_cents(quantity: Decimal, unit_price_cents: int) -> int:
    """quantity x unit price, rounded half-up to the cent."""
    return int((quantity * unit_price_cents).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def quantity_to_json(quantity: Decimal | None) -> float | None:
    if quantity is None:
        return None
    return float(quantity)
