from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from errors import ValidationError

DATE_FORMAT = "%d-%m-%Y"
TIME_FORMAT = "%I:%M %p"
TIMESTAMP_FORMAT = "%d-%m-%Y %I:%M:%S %p"

# DECIMAL(10,2)
MAX_AMOUNT_CENTS = 9_999_999_999


def parse_expense_date(value: str) -> date:
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except (AttributeError, ValueError) as exc:
        raise ValidationError("Invalid date format. Use dd-mm-yyyy") from exc


def parse_expense_time(value: str) -> time:
    try:
        return datetime.strptime(value.strip().upper(), TIME_FORMAT).time()
    except (AttributeError, ValueError) as exc:
        raise ValidationError("Invalid time format. Use hh:mm AM/PM") from exc


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def format_time(value: time) -> str:
    return value.strftime(TIME_FORMAT)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(TIMESTAMP_FORMAT)


def parse_amount(value: Union[str, int, float, Decimal], *, field: str = "amount") -> int:
    """Convert a decimal amount to integer cents.

    More than two fractional digits is rejected instead of rounded, so the
    stored value always equals what the caller sent.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field} value")
    if isinstance(value, str):
        clean = value.strip().replace(" ", "").replace(",", ".")
    else:
        clean = str(value)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid {field} value") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid {field} value")
    if abs(amount) > Decimal(MAX_AMOUNT_CENTS) / 100:
        raise ValidationError(f"{field} cannot exceed 99999999.99")
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValidationError(f"{field} supports at most two decimal places")
    return int(cents)


def cents_to_amount(cents: int) -> float:
    return cents / 100
