"""
Money helpers.

All amounts are Decimal in major units (KES shillings) with two decimal
places. Settings may hold amounts as strings, ints, or Decimals; to_money()
accepts all of them.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """
    Coerce a value to a two-place Decimal, rounding half up.

    Floats go through str() so 0.1 becomes Decimal("0.10"), not its binary
    expansion.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount, percent) -> Decimal:
    """Return percent% of amount, rounded to cents."""
    return to_money(to_money(amount) * Decimal(str(percent)) / Decimal("100"))


def to_minor_units(amount) -> int:
    """Convert major units to the provider's minor unit (cents/kobo)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value) -> Decimal:
    """Convert a provider minor-unit integer back to major units."""
    return to_money(Decimal(int(value)) / Decimal("100"))
