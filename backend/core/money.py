from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def to_decimal(value, default=None):
    """Convert user input to Decimal without going through float."""
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default


def money(value):
    """Quantize to currency precision (two places, half-up)."""
    return to_decimal(value, ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount, percent):
    return money(to_decimal(amount, ZERO) * to_decimal(percent, ZERO) / HUNDRED)


def round_half_up_int(value):
    return int(to_decimal(value, ZERO).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
