from datetime import datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.utils import timezone

from common.errors import ValidationError

MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    try:
        # str() first so floats such as 0.1 do not carry binary noise
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount", {"value": str(value)}) from None
    if not amount.is_finite():
        raise ValidationError("Invalid amount", {"value": str(value)})
    return amount


def to_money(value) -> Decimal:
    try:
        return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError("Amount is out of range", {"value": str(value)}) from None


def local_day_bounds(day):
    """Inclusive start/end of a calendar day in the active time zone."""
    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(day, time.min), tz)
    end = timezone.make_aware(datetime.combine(day, time.max), tz)
    return start, end
