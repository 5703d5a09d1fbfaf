"""
Money and Tag Helpers

Fixed-point helpers shared by the normalizer and the metrics calculations.
All monetary values travel as Decimal and are only quantized when stored.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Union

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """
    Coerce an upstream amount to Decimal.

    None and empty strings become zero. Floats go through str() so that
    0.1 stays 0.1 instead of its binary expansion.

    Raises:
        ValueError: If the value is not a number
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def quantize_money(value: Union[Decimal, int, str]) -> Decimal:
    """Round to cents, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole x 100 rounded to two places; zero when whole is not positive."""
    if whole <= ZERO:
        return ZERO.quantize(CENT)
    return (part / whole * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def split_tags(value: Union[str, Iterable[str], None]) -> List[str]:
    """
    Split a comma-joined tag string into trimmed, unique tags.

    Order of first appearance is kept.

    Example:
        >>> split_tags(" vip, wholesale,,vip ")
        ['vip', 'wholesale']
    """
    if value is None:
        return []
    parts = value.split(",") if isinstance(value, str) else value

    tags: List[str] = []
    for part in parts:
        tag = str(part).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags
