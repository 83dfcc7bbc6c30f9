"""
Money Utilities - Safe Decimal operations for monetary values.

Checkout totals are agreed once at the summary step and must not drift between
attempts, so everything is carried as Decimal and only turned into float at
the JSON boundary.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

Number = Union[str, int, float, Decimal, None]

# Default precision for money operations (2 decimal places)
MONEY_PRECISION = Decimal("0.01")

# Precision for whole-rupee amounts
INTEGER_PRECISION = Decimal("1")


def to_decimal(value: Number) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        if isinstance(value, float):
            # Go through str to avoid binary float artifacts
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_money(value: Number, to_int: bool = False) -> Decimal:
    """
    Round monetary value to appropriate precision.

    Args:
        value: Value to round
        to_int: If True, round to whole units

    Returns:
        Rounded Decimal value
    """
    precision = INTEGER_PRECISION if to_int else MONEY_PRECISION
    return to_decimal(value).quantize(precision, rounding=ROUND_HALF_UP)


def to_float(value: Number) -> float:
    """
    Convert Decimal to float for JSON serialization or external APIs.

    Use only at API boundaries, not for internal calculations.
    """
    return float(to_decimal(value))


def add(a: Number, b: Number) -> Decimal:
    """Safe addition of monetary values."""
    return to_decimal(a) + to_decimal(b)


def subtract(a: Number, b: Number) -> Decimal:
    """Safe subtraction of monetary values."""
    return to_decimal(a) - to_decimal(b)


def multiply(value: Number, factor: Number) -> Decimal:
    """Safe multiplication of monetary value by a factor."""
    return to_decimal(value) * to_decimal(factor)


def percent(value: Number, percent_value: Number) -> Decimal:
    """Calculate percentage of a monetary value."""
    return multiply(value, to_decimal(percent_value) / Decimal(100))
