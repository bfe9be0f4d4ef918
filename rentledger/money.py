"""Currency helpers. All amounts are Kenyan Shillings held as ``Decimal`` cents."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CURRENCY = "KES"
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` to a Decimal rounded to the smallest currency unit.

    Floats go through ``str`` first so 0.1 stays 0.10 rather than
    0.1000000000000000055511151231257827.
    """
    if value is None or value == "":
        raise ValueError("amount is required")
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value) if value is not None else ZERO
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(value) -> float:
    if value is None:
        return 0.0
    return float(to_money(value))


def whole_shillings(value) -> int:
    return int(to_money(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_kes(value) -> str:
    """KES 20,000 style display string, zero decimal places."""
    amount = whole_shillings(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY} {abs(amount):,}"
