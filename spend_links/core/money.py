"""Naira/kobo conversions.

All internal arithmetic is done on whole kobo. Major-unit (naira) values
only exist at the edges, as :class:`~decimal.Decimal`.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from .errors import ValidationError

KOBO_PER_NAIRA = 100
CURRENCY_SYMBOL = "₦"

_CENTS = Decimal("0.01")

MajorAmount = Union[Decimal, int, float, str]


def _as_decimal(value: MajorAmount) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError("Amount must be a number")
    if isinstance(value, float):
        # str() keeps the value as written (50.005 stays 50.005)
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return result


def to_minor_units(major: MajorAmount) -> int:
    """Convert naira to kobo, rounding half-up to the nearest kobo."""
    amount = _as_decimal(major) * KOBO_PER_NAIRA
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_units(minor: int) -> Decimal:
    if isinstance(minor, bool) or not isinstance(minor, int):
        raise ValidationError("Minor units must be a whole number")
    return (Decimal(minor) / KOBO_PER_NAIRA).quantize(_CENTS)


def format_naira(major: MajorAmount) -> str:
    """Format e.g. ``1234.5`` as ``"₦1,234.50"``."""
    amount = _as_decimal(major).quantize(_CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(amount):,.2f}"


def format_kobo(minor: int) -> str:
    return format_naira(to_major_units(minor))
