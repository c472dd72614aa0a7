"""Number parsing utilities for prices and quantities coming from the boundary."""
import re
from decimal import Decimal, InvalidOperation

from quoteflow.exceptions import ValidationError

AR_NUMBER_PATTERN = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+)(?:,\d+)?$")

# Largest values the Numeric(14, 2), Numeric(12, 3) and Integer columns hold
MONEY_MAX = Decimal('999999999999.99')
QTY_MAX = Decimal('999999999.999')
INT_MAX = 2147483647


def parse_decimal(value, field: str = 'valor', allow_none: bool = True, places: str = None,
                  max_value=QTY_MAX):
    """
    Parse a price or quantity into a non-negative Decimal.

    Accepts Decimal/int/float, plain strings ("4.50") and Argentine-style
    strings ("1.234,56"). Empty values return None when allow_none is set.

    Raises:
        ValidationError: if the value is invalid, missing, negative or
            larger than max_value.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f'El campo {field} es requerido', field=field)

    if isinstance(value, bool):
        raise ValidationError(f'Formato inválido para {field}', field=field)

    try:
        if isinstance(value, Decimal):
            decimal_value = value
        elif isinstance(value, (int, float)):
            decimal_value = Decimal(str(value))
        else:
            cleaned = str(value).strip()
            if AR_NUMBER_PATTERN.match(cleaned) and ',' in cleaned:
                cleaned = cleaned.replace('.', '').replace(',', '.')
            else:
                cleaned = cleaned.replace(',', '.')
            decimal_value = Decimal(cleaned)
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Formato inválido para {field}. Usá 1.234,56', field=field)

    if not decimal_value.is_finite():
        raise ValidationError(f'Formato inválido para {field}', field=field)

    if decimal_value < 0:
        raise ValidationError(f'El campo {field} no puede ser negativo', field=field)

    # Checked before rounding so the rounded value also fits
    if max_value is not None and decimal_value > max_value:
        raise ValidationError(f'El valor de {field} es demasiado grande', field=field)

    if places:
        decimal_value = decimal_value.quantize(Decimal(places))

    return decimal_value


def parse_money(value, field: str = 'precio', allow_none: bool = True):
    """Parse a monetary amount, rounded to cents."""
    return parse_decimal(value, field=field, allow_none=allow_none, places='0.01', max_value=MONEY_MAX)


def parse_int(value, field: str, allow_none: bool = True):
    """Parse a non-negative whole number (e.g. delivery days)."""
    parsed = parse_decimal(value, field=field, allow_none=allow_none, max_value=INT_MAX)
    if parsed is None:
        return None
    if parsed != parsed.to_integral_value():
        raise ValidationError(f'El campo {field} debe ser un número entero', field=field)
    return int(parsed)
