"""Decimal utilities for financial calculations.

All monetary calculations use Decimal to avoid floating-point drift in
running balances and totals. Ratios, scores and probabilities are floats.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")


def safe_decimal(value: Optional[object], default: Decimal = ZERO) -> Decimal:
    """Safely convert a value to Decimal.

    Provider payloads carry amounts as JSON numbers, numeric strings or
    nothing at all; anything unparseable falls back to ``default``.

    Args:
        value: Value to convert (string, int, float, Decimal or None).
        default: Default value if conversion fails.

    Returns:
        Decimal value or default.
    """
    if value is None or isinstance(value, bool):
        return default

    try:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float, str)):
            # Go through str so 0.1 stays 0.1 rather than its binary expansion
            text = str(value).strip().replace(",", "")
            if not text:
                return default
            result = Decimal(text)
            if not result.is_finite():
                return default
            return result
        return default
    except (InvalidOperation, ValueError):
        return default


def optional_decimal(value: Optional[object]) -> Optional[Decimal]:
    """Convert a value to Decimal, keeping None (and junk) as None.

    Args:
        value: Value to convert.

    Returns:
        Decimal value or None.
    """
    sentinel = Decimal("NaN")
    result = safe_decimal(value, default=sentinel)
    return None if result.is_nan() else result


def quantize_cents(amount: Decimal) -> Decimal:
    """Round an amount to cents (half-up), normalising -0.00 to 0.00.

    Args:
        amount: Amount to round.

    Returns:
        Amount with exactly two decimal places.
    """
    rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if rounded == 0:
        return Decimal("0.00")
    return rounded


def format_currency(
    amount: Decimal,
    decimal_places: int = 2,
    include_sign: bool = True,
) -> str:
    """Format a Decimal amount for display or JSON output.

    Args:
        amount: The amount to format.
        decimal_places: Number of decimal places (default 2).
        include_sign: Whether to include sign for negative amounts.

    Returns:
        Formatted string like "-1234.56" or "1234.56".
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    rounded = amount.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)
    if rounded == 0:
        rounded = abs(rounded)

    if include_sign and rounded < 0:
        return str(rounded)
    return str(abs(rounded))


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Sum Decimal amounts, returning Decimal zero for an empty input.

    Args:
        amounts: Decimal amounts.

    Returns:
        Sum as Decimal.
    """
    total = ZERO
    for amount in amounts:
        total += amount
    return total
