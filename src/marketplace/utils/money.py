"""Money helpers — every amount is a ``Decimal`` rounded half-up to cents.

Amounts are persisted as strings with exactly two fraction digits so that a
stored order reproduces its totals exactly.
"""

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Round any numeric value (or numeric string) to cents, half-up."""
    if value is None or value == "":
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value) -> str:
    return str(to_money(value))


def to_minor_units(value) -> int:
    """Convert a money amount to integer minor units (cents)."""
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def as_utc(moment: datetime | None) -> datetime | None:
    """Treat naive datetimes coming back from storage as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment
