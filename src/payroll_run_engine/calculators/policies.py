"""Policy resolvers: stored configuration to per-period decisions.

All functions here are pure. They never raise on malformed configuration;
unknown values fall back to the documented defaults so a run still produces
a deterministic result for review.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from payroll_run_engine.calculators.numeric import round_currency
from payroll_run_engine.calculators.types import (
    AttendanceDeductionBasis,
    AttendanceRule,
    HolidayInfo,
    HolidayType,
    OvertimeType,
    PayFrequency,
    PeriodHalf,
    StatutorySchedule,
    StatutoryTiming,
)

DEFAULT_REST_DAYS = ("SATURDAY", "SUNDAY")
DEFAULT_OVERTIME_MULTIPLIER = Decimal("1.25")

HALF_DAY_MARKERS = ("[HALF_DAY]", "HALF DAY", "HALFDAY")

# Keys accepted in a stored schedule, mapped to StatutorySchedule fields.
_SCHEDULE_KEYS = {
    "sss": ("sss",),
    "phil_health": ("philHealth", "phil_health", "philhealth"),
    "pag_ibig": ("pagIbig", "pag_ibig", "pagibig"),
    "withholding_tax": ("withholdingTax", "withholding_tax"),
}


def parse_statutory_schedule(value: Any) -> StatutorySchedule:
    """Parse a stored timing schedule; invalid or missing entries use defaults."""
    default = StatutorySchedule()
    if not isinstance(value, dict):
        return default

    resolved: dict[str, StatutoryTiming] = {}
    for field_name, keys in _SCHEDULE_KEYS.items():
        fallback = getattr(default, field_name)
        raw = next((value[k] for k in keys if k in value), None)
        try:
            resolved[field_name] = StatutoryTiming(raw) if raw is not None else fallback
        except (TypeError, ValueError):
            resolved[field_name] = fallback
    return StatutorySchedule(**resolved)


def should_apply_by_timing(
    timing: StatutoryTiming | str,
    pay_frequency: PayFrequency | str,
    period_half: PeriodHalf | str | None,
) -> bool:
    """Whether a contribution with this timing is deducted in this period.

    Outside semi-monthly patterns every enabled timing behaves as EVERY_PERIOD.
    """
    timing = StatutoryTiming(timing)
    if timing == StatutoryTiming.DISABLED:
        return False
    if timing == StatutoryTiming.EVERY_PERIOD:
        return True
    if pay_frequency != PayFrequency.SEMI_MONTHLY:
        return True
    if timing == StatutoryTiming.FIRST_HALF:
        return period_half == PeriodHalf.FIRST
    return period_half == PeriodHalf.SECOND


def is_second_half_period(pay_frequency: PayFrequency | str, period_half: PeriodHalf | str | None) -> bool:
    """Monthly-frequency items apply once per month: on the second half, or always when not semi-monthly."""
    if pay_frequency != PayFrequency.SEMI_MONTHLY:
        return True
    return period_half == PeriodHalf.SECOND


def parse_rest_days(value: Any) -> tuple[str, ...]:
    """Uppercased weekday names; anything but a list means the default weekend."""
    if not isinstance(value, list):
        return DEFAULT_REST_DAYS
    return tuple(entry.upper() for entry in value if isinstance(entry, str))


def is_half_day_remark(remarks: str | None) -> bool:
    """Free-text half-day marker on an attendance row."""
    if not remarks:
        return False
    text = remarks.upper()
    return any(marker in text for marker in HALF_DAY_MARKERS)


def resolve_overtime_type(is_rest_day: bool, holiday: HolidayInfo | None) -> OvertimeType:
    """Rest day + holiday beats holiday alone, which beats rest day alone."""
    holiday_type = holiday.holiday_type if holiday else None
    is_regular_holiday = holiday_type == HolidayType.REGULAR
    is_special_holiday = holiday_type in (
        HolidayType.SPECIAL_NON_WORKING,
        HolidayType.SPECIAL_WORKING,
    )

    if is_rest_day and (is_regular_holiday or is_special_holiday):
        return OvertimeType.REST_DAY_HOLIDAY_OT
    if is_regular_holiday:
        return OvertimeType.REGULAR_HOLIDAY_OT
    if is_special_holiday:
        return OvertimeType.SPECIAL_HOLIDAY_OT
    if is_rest_day:
        return OvertimeType.REST_DAY_OT
    return OvertimeType.REGULAR_OT


def overtime_multiplier(rates: Mapping[str, Decimal], overtime_type: OvertimeType) -> Decimal:
    return rates.get(overtime_type.value, DEFAULT_OVERTIME_MULTIPLIER)


def attendance_rule_deduction(
    minutes: int,
    hourly_rate: Decimal,
    daily_rate: Decimal,
    rule: AttendanceRule | None,
) -> Decimal:
    """Peso deduction for tardiness/undertime minutes under a deduction rule."""
    if minutes <= 0:
        return Decimal("0.00")

    deductible = max(0, minutes - (rule.threshold_mins if rule else 0))
    if deductible == 0:
        return Decimal("0.00")

    per_minute = round_currency(Decimal(deductible) / 60 * hourly_rate)
    if rule is None:
        return per_minute

    basis = rule.calculation_basis
    if basis == AttendanceDeductionBasis.PER_15_MINS:
        return round_currency(math.ceil(deductible / 15) * (hourly_rate / 4))
    if basis == AttendanceDeductionBasis.PER_30_MINS:
        return round_currency(math.ceil(deductible / 30) * (hourly_rate / 2))
    if basis == AttendanceDeductionBasis.PER_HOUR:
        return round_currency(math.ceil(deductible / 60) * hourly_rate)
    if basis == AttendanceDeductionBasis.DAILY_RATE:
        return round_currency(daily_rate)
    return per_minute


def parse_night_diff_rate(value: str | None, default: Decimal) -> Decimal:
    """NIGHT_DIFF_RATE config value; missing, non-numeric or negative uses the default."""
    if value is None:
        return default
    try:
        rate = Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        return default
    if rate.is_nan() or rate < 0:
        return default
    return rate
