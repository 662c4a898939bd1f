"""Number parsing utilities for amounts, percentages and counts coming off the wire."""
import re
from decimal import Decimal, InvalidOperation

PERCENT_PATTERN = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*%?\s*$")
CENT = Decimal('0.01')


def parse_decimal(value, field: str = 'value') -> Decimal:
    """
    Parse a monetary value (number or numeric string) into an exact Decimal.

    Floats are converted through their string form so 0.1 stays 0.1.

    Raises:
        ValueError: if the value is empty, not numeric or negative.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'{field} is required')

    cleaned = str(value).strip().replace(',', '')
    if not cleaned:
        raise ValueError(f'{field} is required')

    try:
        decimal_value = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        raise ValueError(f'{field} must be a number, got {value!r}')

    if not decimal_value.is_finite():
        raise ValueError(f'{field} must be a number, got {value!r}')
    if decimal_value < 0:
        raise ValueError(f'{field} cannot be negative')

    return decimal_value


def amount_text(value: Decimal) -> str:
    """
    Render a stored amount with at least two decimals and no padding beyond.

    '100.000000' -> '100.00', '10.125000' -> '10.125'
    """
    value = Decimal(value)
    cents = value.quantize(CENT)
    if cents == value:
        return str(cents)
    return format(value.normalize(), 'f')


def parse_percent(value, field: str = 'discount') -> Decimal:
    """
    Parse a discount percentage such as 12, "12.5" or "12.5%".

    Returns the percentage (not the fraction); it must lie in [0, 100].

    Raises:
        ValueError: if the value is invalid or out of range.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'{field} is required')

    match = PERCENT_PATTERN.match(str(value))
    if not match:
        raise ValueError(f'{field} must be a percentage, got {value!r}')

    pct = Decimal(match.group(1))
    if pct < 0 or pct > 100:
        raise ValueError(f'{field} must be between 0 and 100')
    return pct


def parse_count(value, field: str = 'quantity', allow_zero: bool = False) -> int:
    """
    Parse an exact integer count (packs or units).

    Accepts ints and integral numeric strings ("12", "12.0"); rejects
    fractional values instead of rounding them.

    Raises:
        ValueError: if the value is not a whole number or not positive.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'{field} is required')

    if isinstance(value, int):
        count = value
    else:
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f'{field} must be a whole number, got {value!r}')
        if not number.is_finite() or number != number.to_integral_value():
            raise ValueError(f'{field} must be a whole number, got {value!r}')
        count = int(number)

    if count < 0 or (count == 0 and not allow_zero):
        raise ValueError(f'{field} must be greater than 0')
    return count
