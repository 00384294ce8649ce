"""Attendance aggregation for one employee over one pay period."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from payroll_run_engine.calculators.numeric import day_name, round_currency, round_quantity
from payroll_run_engine.calculators.policies import (
    is_half_day_remark,
    overtime_multiplier,
    parse_rest_days,
    resolve_overtime_type,
)
from payroll_run_engine.calculators.types import (
    ZERO,
    AttendanceSnapshot,
    AttendanceStatus,
    DtrEntry,
    HolidayInfo,
    LeaveInterval,
)

HALF = Decimal("0.5")
ONE = Decimal("1")


@dataclass
class AttendanceInputs:
    """Everything the aggregator reads; built by the engine from stored rows."""

    dates_in_period: list[date]
    daily_rate: Decimal
    hourly_rate: Decimal
    rest_days: Any = None
    holidays_by_date: Mapping[date, HolidayInfo] = field(default_factory=dict)
    dtrs: Iterable[DtrEntry] = ()
    approved_leaves: list[LeaveInterval] = field(default_factory=list)
    approved_overtime_by_date: Mapping[date, Decimal] = field(default_factory=dict)
    overtime_rates: Mapping[str, Decimal] = field(default_factory=dict)
    is_overtime_eligible: bool = True
    is_night_diff_eligible: bool = True


class AttendanceAggregator:
    """Folds daily attendance, leave, overtime and holidays into a snapshot.

    Each calendar day is classified into exactly one bucket, first match wins:

    1. holiday            -> payable 1
    2. approved paid leave   -> payable 1 (0.5 for half-day leave)
    3. approved unpaid leave -> unpaid 1 (0.5 for half-day leave)
    4. rest day (schedule or REST_DAY status) -> payable 1
    5. PRESENT / HOLIDAY status -> payable 1, or 0.5 payable + 0.5 unpaid
       when the row carries a half-day marker
    6. ON_LEAVE status with no approved leave -> unpaid 1 (0.5 half-day)
    7. anything else -> unpaid 1

    The aggregator has no side effects and may be called repeatedly.
    """

    def aggregate(self, inputs: AttendanceInputs) -> AttendanceSnapshot:
        rest_days = parse_rest_days(inputs.rest_days)
        dtr_by_date = {row.attendance_date: row for row in inputs.dtrs}

        working_days = 0
        payable = ZERO
        unpaid = ZERO
        tardiness = 0
        undertime = 0
        hours_worked = ZERO
        night_diff = ZERO
        overtime_hours = ZERO
        overtime_pay = ZERO
        holiday_premium = ZERO

        for day in inputs.dates_in_period:
            holiday = inputs.holidays_by_date.get(day)
            is_rest_day = day_name(day) in rest_days
            dtr = dtr_by_date.get(day)

            if not is_rest_day:
                working_days += 1

            leave = next((lv for lv in inputs.approved_leaves if lv.covers(day)), None)
            leave_value = HALF if leave and leave.is_half_day else ONE
            half_day_dtr = dtr is not None and is_half_day_remark(dtr.remarks)
            dtr_value = HALF if half_day_dtr else ONE

            if holiday is not None:
                payable += ONE
            elif leave is not None and leave.is_paid:
                payable += leave_value
            elif leave is not None:
                unpaid += leave_value
            elif is_rest_day or (dtr and dtr.attendance_status == AttendanceStatus.REST_DAY):
                payable += ONE
            elif dtr and dtr.attendance_status in (AttendanceStatus.PRESENT, AttendanceStatus.HOLIDAY):
                payable += dtr_value
                if half_day_dtr:
                    unpaid += HALF
            elif dtr and dtr.attendance_status == AttendanceStatus.ON_LEAVE:
                unpaid += dtr_value
            else:
                unpaid += ONE

            if dtr is None:
                continue

            tardiness += dtr.tardiness_mins
            undertime += dtr.undertime_mins
            hours_worked += dtr.hours_worked

            if inputs.is_night_diff_eligible:
                night_diff += dtr.night_diff_hours

            if holiday is not None and dtr.attendance_status == AttendanceStatus.PRESENT:
                premium = max(holiday.pay_multiplier - ONE, ZERO)
                holiday_premium += round_currency(inputs.daily_rate * premium)

            if not inputs.is_overtime_eligible:
                continue

            approved_hours = inputs.approved_overtime_by_date.get(day, ZERO)
            if approved_hours <= 0:
                continue

            overtime_hours += approved_hours
            ot_type = resolve_overtime_type(is_rest_day, holiday)
            multiplier = overtime_multiplier(inputs.overtime_rates, ot_type)
            overtime_pay += round_currency(approved_hours * inputs.hourly_rate * multiplier)

        return AttendanceSnapshot(
            total_working_days=working_days,
            total_payable_days=round_quantity(payable),
            unpaid_absences=round_quantity(unpaid),
            tardiness_mins=tardiness,
            undertime_mins=undertime,
            overtime_hours=round_quantity(overtime_hours),
            overtime_pay=round_currency(overtime_pay),
            night_diff_hours=round_quantity(night_diff),
            holiday_premium_pay=round_currency(holiday_premium),
            hours_worked=round_quantity(hours_worked),
        )
