"""Rounding and calendar helpers shared by every calculator."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from payroll_run_engine.config import REPORTING_TIMEZONE

CURRENCY_PRECISION = Decimal("0.01")
QUANTITY_PRECISION = Decimal("0.0001")

_DAY_NAMES = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce DB values (Decimal, float, int, str, None) to Decimal."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def round_currency(amount: Decimal | int) -> Decimal:
    """Round to 2 decimal places, half up."""
    return Decimal(amount).quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)


def round_quantity(amount: Decimal | int) -> Decimal:
    """Round a day/hour quantity or rate to 4 decimal places, half up."""
    return Decimal(amount).quantize(QUANTITY_PRECISION, rounding=ROUND_HALF_UP)


def to_reporting_date(value: datetime | date) -> date:
    """Date key in the reporting timezone; naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(REPORTING_TIMEZONE).date()
    return value


def reporting_year(now: datetime) -> int:
    return to_reporting_date(now).year


def date_range(start: date, end: date) -> list[date]:
    """Every calendar day from start to end inclusive."""
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def inclusive_day_count(start: date, end: date) -> int:
    if end < start:
        return 0
    return (end - start).days + 1


def day_name(value: date) -> str:
    return _DAY_NAMES[value.weekday()]
