"""
Decimal helpers for coin and currency amounts.

All ledger arithmetic is done in Decimal quantized to cents so that
balance_after == balance_before + amount holds exactly.
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

from .exceptions import ValidationError

CENT = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value, field: str = 'amount') -> Decimal:
    """Parse an int/float/str/Decimal into a Decimal, rejecting junk."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f'{field} must be a number', field)
    if not result.is_finite():
        raise ValidationError(f'{field} must be a finite number', field)
    return result


def quantize(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_cents(value: Decimal) -> Decimal:
    """Truncate to cents (never award or allow more than earned)."""
    return value.quantize(CENT, rounding=ROUND_DOWN)


def positive_amount(value, field: str = 'amount') -> Decimal:
    """Parse an amount that must be strictly positive and in whole cents."""
    amount = to_decimal(value, field)
    if amount != quantize(amount):
        raise ValidationError(f'{field} has more than 2 decimal places', field)
    if amount <= ZERO:
        raise ValidationError(f'{field} must be positive', field)
    return quantize(amount)


def whole_days(value, field: str) -> int:
    """Parse a day count. Booleans and fractional values are rejected."""
    message = f'{field} must be a whole number of days'
    if value is None or isinstance(value, bool):
        raise ValidationError(message, field)
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(message, field)
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(message, field)
    return int(number)
