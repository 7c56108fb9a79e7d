"""
Money Precision Module

Decimal helpers for the cooperative's single operating currency.
NEVER uses float for monetary values: every amount entering the core is
converted to Decimal and rounded to cents only at presentation boundaries.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Any, Iterable
import re

# 28 significant digits for every Decimal operation in the process
getcontext().prec = 28

ZERO = Decimal('0')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def to_decimal(value: Any) -> Decimal:
    """
    Convert a number-like value to Decimal without binary float artefacts

    Floats go through ``str`` so that 0.1 becomes Decimal('0.1') rather
    than its binary expansion. None is treated as zero. NaN and infinity
    are rejected.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError("Boolean is not a monetary value")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        return decimal_from_string(value)
    else:
        raise ValueError(f"Cannot convert {type(value).__name__} to Decimal")
    if not result.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return result


def round_money(value: Any) -> Decimal:
    """
    Round to currency precision (2 decimal places, half up)

    Raises:
        ValueError: When the value has too many digits to hold in cents
    """
    try:
        return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value}")


def has_sub_cent_digits(value: Any) -> bool:
    """True for amounts such as 87.925 that cents cannot represent"""
    amount = to_decimal(value)
    return round_money(amount) != amount


def sum_money(values: Iterable[Any]) -> Decimal:
    """Sum amounts exactly in Decimal"""
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return total


def _normalize_separators(text: str) -> str:
    """Resolve thousands and decimal commas to a plain dotted number"""
    if ',' not in text:
        return text
    if '.' in text:
        return text.replace(',', '')
    if text.count(',') == 1:
        fraction = text.split(',')[1]
        # "87,92" is a decimal comma, "10,000" a thousands separator
        return text.replace(',', '.' if len(fraction) <= 2 else '')
    return text


def decimal_from_string(value: str) -> Decimal:
    """
    Parse user-entered amounts such as "$1,234.56" or "87,92"

    Raises:
        ValueError: For empty, non-numeric or non-finite input
    """
    if not isinstance(value, str) or not value:
        raise ValueError("Amount must be a non-empty string")

    text = _normalize_separators(re.sub(r'[^\d.,\-+eE]', '', value.strip()))
    try:
        result = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: '{value}'")
    if not result.is_finite():
        raise ValueError(f"Not a valid amount: '{value}'")
    return result


def format_money(value: Any) -> str:
    """Format for display"""
    return f"{round_money(value):,.2f}"
