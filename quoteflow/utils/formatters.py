"""
Formatting helpers for e-mail bodies and JSON payloads.
Money uses dot for thousands and comma for decimals (1.234,56).
"""
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Union, Optional


def money(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Format a monetary amount with exactly two decimals.

    Examples:
        money(Decimal('45')) -> "45,00"
        money(1500.5) -> "1.500,50"
        money(None) -> "-"
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value).replace(",", ".")).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    integer_part, decimal_part = f"{abs(num):.2f}".split(".")
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return f"{sign}{'.'.join(groups)[::-1]},{decimal_part}"


def datetime_label(value: Optional[datetime]) -> str:
    """DD/MM/YYYY HH:MM (UTC), or "-" when missing."""
    if not isinstance(value, datetime):
        return "-"
    return value.strftime("%d/%m/%Y %H:%M")


def decimal_str(value) -> Optional[str]:
    """Serialize a Decimal for JSON without float rounding."""
    if value is None:
        return None
    return str(value)


def iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for JSON payloads."""
    return value.isoformat() if value else None
