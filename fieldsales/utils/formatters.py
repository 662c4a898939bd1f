"""
Formatting helpers for amounts shown to field users.
Amounts use comma thousands separators and two decimals (1,234.50).
"""
from decimal import Decimal, InvalidOperation
from typing import Union, Optional


def money(value: Union[int, float, Decimal, str, None], currency: Optional[str] = 'PKR') -> str:
    """
    Format an amount with thousands separators and exactly two decimals.

    Examples:
        money(1500) -> "1,500.00 PKR"
        money(Decimal('1234567.891')) -> "1,234,567.89 PKR"
        money(-20, currency=None) -> "-20.00"
        money(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    formatted = f"{num:,.2f}"
    if currency:
        return f"{formatted} {currency}"
    return formatted


def percent(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format a discount percentage the way the ERP shows it.

    Examples:
        percent(Decimal('12.50')) -> "12.5%"
        percent(0) -> "0%"
    """
    if value is None or value == "":
        return "-"
    try:
        num = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return "-"
    text = f"{num:f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return f"{text}%"
