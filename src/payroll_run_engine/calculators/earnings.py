"""Earnings composition: rates, basic pay, bonus variants, recurring earnings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.numeric import inclusive_day_count, round_currency, to_decimal
from payroll_run_engine.calculators.types import (
    ZERO,
    AdjustmentCarryOver,
    AttendanceSnapshot,
    EarningLine,
    EmployeeRates,
    EmployeeYtd,
    RecurringEarningInput,
    RunType,
    ThirteenthMonthFormula,
)

DEFAULT_MONTHLY_DIVISOR = 365
DEFAULT_HOURS_PER_DAY = Decimal("8")
THIRTEENTH_MONTH_DAY_BASIS = 365

BASIC_PAY_LABELS = {
    RunType.REGULAR: ("BASIC_PAY", "Basic Pay"),
    RunType.THIRTEENTH_MONTH: ("THIRTEENTH_MONTH", "13th Month Pay"),
    RunType.MID_YEAR_BONUS: ("MID_YEAR_BONUS", "Mid-Year Bonus"),
}


@dataclass
class EarningsResult:
    """Composed earning lines plus the figures later steps read back."""

    basic_pay: Decimal
    overtime_pay: Decimal
    night_diff_pay: Decimal
    holiday_pay: Decimal
    recurring_total: Decimal
    adjustment_total: Decimal
    gross_pay: Decimal
    lines: list[EarningLine] = field(default_factory=list)
    ytd_regular_basic: Decimal | None = None


def compute_rates(
    base_salary: Decimal,
    daily_rate: Decimal | None,
    hourly_rate: Decimal | None,
    monthly_divisor: int | None,
    hours_per_day: Decimal | None,
    periods_per_year: int,
    salary_rate_type: str,
) -> EmployeeRates:
    """Derive daily/hourly/period rates; zero or missing inputs use the fallbacks."""
    base_salary = to_decimal(base_salary)
    divisor = monthly_divisor or DEFAULT_MONTHLY_DIVISOR
    hpd = to_decimal(hours_per_day) or DEFAULT_HOURS_PER_DAY

    daily = to_decimal(daily_rate) or base_salary * 12 / divisor
    hourly = to_decimal(hourly_rate) or daily / hpd

    return EmployeeRates(
        base_salary=base_salary,
        daily_rate=daily,
        hourly_rate=hourly,
        hours_per_day=hpd,
        period_base_salary=base_salary * 12 / max(periods_per_year, 1),
        salary_rate_type=salary_rate_type,
    )


def regular_basic_pay(rates: EmployeeRates, attendance: AttendanceSnapshot) -> Decimal:
    """Monthly-rate: period base less unpaid days. Daily/hourly-rate: payable days."""
    if rates.salary_rate_type == "MONTHLY":
        amount = rates.period_base_salary - attendance.unpaid_absences * rates.daily_rate
        return round_currency(max(ZERO, amount))
    return round_currency(attendance.total_payable_days * rates.daily_rate)


def thirteenth_month_pay(
    rates: EmployeeRates,
    ytd: EmployeeYtd,
    formula: ThirteenthMonthFormula,
    hire_date: date,
    separation_date: date | None,
    year_start: date,
    coverage_end: date,
) -> Decimal:
    """YTD-based 13th month with a calendar-prorated fallback.

    The fallback divides by a flat 365 days, leap years included.
    """
    if formula == ThirteenthMonthFormula.GROSS_EARNED_TO_DATE:
        earned = ytd.regular_gross
    else:
        earned = ytd.regular_basic

    if earned > 0:
        return round_currency(earned / 12)

    start = max(hire_date, year_start)
    end = coverage_end
    if separation_date is not None and separation_date < end:
        end = separation_date
    days = inclusive_day_count(start, end)
    return round_currency(rates.base_salary * Decimal(days) / THIRTEENTH_MONTH_DAY_BASIS)


def mid_year_bonus_pay(rates: EmployeeRates) -> Decimal:
    return round_currency(rates.base_salary / 2)


def recurring_earning_amount(
    earning: RecurringEarningInput,
    attendance: AttendanceSnapshot,
    hours_per_day: Decimal,
    second_half: bool,
) -> Decimal:
    """Amount for one recurring earning this period; zero means skip."""
    if earning.frequency == "MONTHLY" and not second_half:
        return ZERO

    amount = earning.amount
    working_days = attendance.total_working_days
    if earning.proration_rule == "PRORATED_DAYS" and working_days > 0:
        amount = amount * attendance.total_payable_days / working_days
    elif earning.proration_rule == "PRORATED_HOURS" and working_days > 0:
        scheduled = working_days * hours_per_day
        actual = attendance.total_payable_days * hours_per_day
        if scheduled > 0:
            amount = amount * actual / scheduled

    return round_currency(max(amount, ZERO))


class EarningsComposer:
    """Builds the ordered earning lines for one employee.

    Line order: basic (or bonus), recurring, carried-over adjustments,
    overtime, night differential, holiday premium. Bonus runs carry only the
    bonus line and adjustments.
    """

    def __init__(self, run_type: RunType, night_diff_rate: Decimal, second_half: bool):
        self.run_type = run_type
        self.night_diff_rate = night_diff_rate
        self.second_half = second_half

    def compose(
        self,
        rates: EmployeeRates,
        attendance: AttendanceSnapshot,
        basic_pay: Decimal,
        recurring: list[RecurringEarningInput],
        adjustments: AdjustmentCarryOver,
        ytd_regular_basic: Decimal | None = None,
    ) -> EarningsResult:
        is_bonus = self.run_type.is_bonus
        code, label = BASIC_PAY_LABELS[self.run_type]

        lines = [
            LineItemBuilder.earning(
                code,
                label,
                basic_pay,
                days=None if is_bonus else attendance.total_payable_days,
                rate=None if is_bonus else rates.daily_rate,
            )
        ]

        recurring_total = ZERO
        if not is_bonus:
            for earning in recurring:
                amount = recurring_earning_amount(
                    earning, attendance, rates.hours_per_day, self.second_half
                )
                if amount <= 0:
                    continue
                recurring_total += amount
                lines.append(
                    LineItemBuilder.earning(
                        "RECURRING",
                        earning.name,
                        amount,
                        is_taxable=earning.is_taxable,
                        earning_type_id=earning.earning_type_id,
                    )
                )

        adjustment_total = ZERO
        for item in adjustments.earnings:
            line = LineItemBuilder.earning(
                "ADJUSTMENT", item.description, max(item.amount, ZERO), is_taxable=item.is_taxable
            )
            adjustment_total += line.amount
            lines.append(line)

        if is_bonus:
            overtime_pay = night_diff_pay = holiday_pay = ZERO
        else:
            overtime_pay = round_currency(attendance.overtime_pay)
            night_diff_pay = round_currency(
                attendance.night_diff_hours * rates.hourly_rate * self.night_diff_rate
            )
            holiday_pay = round_currency(attendance.holiday_premium_pay)

        if overtime_pay > 0:
            lines.append(
                LineItemBuilder.earning(
                    "OVERTIME",
                    "Overtime Pay",
                    overtime_pay,
                    hours=attendance.overtime_hours,
                    rate=rates.hourly_rate,
                )
            )
        if night_diff_pay > 0:
            lines.append(
                LineItemBuilder.earning(
                    "NIGHT_DIFF",
                    "Night Differential",
                    night_diff_pay,
                    hours=attendance.night_diff_hours,
                    rate=rates.hourly_rate,
                )
            )
        if holiday_pay > 0:
            lines.append(LineItemBuilder.earning("HOLIDAY_PAY", "Holiday Premium", holiday_pay))

        gross = round_currency(
            basic_pay + overtime_pay + night_diff_pay + holiday_pay + recurring_total + adjustment_total
        )

        return EarningsResult(
            basic_pay=basic_pay,
            overtime_pay=overtime_pay,
            night_diff_pay=night_diff_pay,
            holiday_pay=holiday_pay,
            recurring_total=round_currency(recurring_total),
            adjustment_total=round_currency(adjustment_total),
            gross_pay=gross,
            lines=lines,
            ytd_regular_basic=ytd_regular_basic,
        )
