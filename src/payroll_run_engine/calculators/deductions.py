"""Deduction assembly and capacity-gated loan allocation."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.numeric import round_currency
from payroll_run_engine.calculators.policies import attendance_rule_deduction
from payroll_run_engine.calculators.types import (
    ZERO,
    AdjustmentCarryOver,
    AppliedAmortization,
    AttendanceRule,
    AttendanceSnapshot,
    DeductionLine,
    DueAmortization,
    EmployeeRates,
    PayFrequency,
    PeriodHalf,
    RecurringDeductionInput,
    ReferenceType,
    StatutoryContributions,
)


@dataclass
class LoanAllocation:
    lines: list[DeductionLine] = field(default_factory=list)
    applied: list[AppliedAmortization] = field(default_factory=list)
    remaining_net: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return round_currency(sum((line.amount for line in self.lines), ZERO))


@dataclass
class DeductionResult:
    """Ordered deduction lines and the per-bucket totals reported in the trace."""

    lines: list[DeductionLine]
    tardiness: Decimal
    undertime: Decimal
    withholding_tax: Decimal
    recurring_total: Decimal
    pre_tax_recurring: Decimal
    adjustment_total: Decimal
    loans: LoanAllocation
    total_deductions: Decimal


def attendance_deductions(
    attendance: AttendanceSnapshot,
    rates: EmployeeRates,
    rules: dict[str, AttendanceRule],
) -> tuple[Decimal, Decimal]:
    """(tardiness, undertime) peso deductions under the active rules."""
    tardiness = attendance_rule_deduction(
        attendance.tardiness_mins, rates.hourly_rate, rates.daily_rate, rules.get("TARDINESS")
    )
    undertime = attendance_rule_deduction(
        attendance.undertime_mins, rates.hourly_rate, rates.daily_rate, rules.get("UNDERTIME")
    )
    return tardiness, undertime


def recurring_deduction_amount(
    deduction: RecurringDeductionInput,
    basic_pay: Decimal,
    gross_pay: Decimal,
    net_base: Decimal,
    pay_frequency: str,
    period_half: str | None,
    second_half: bool,
) -> Decimal:
    """Amount for one recurring deduction this period; zero means skip.

    Half applicability only restricts semi-monthly patterns; other
    frequencies have no halves to choose between.
    """
    if pay_frequency == PayFrequency.SEMI_MONTHLY:
        if deduction.pay_period_applicability == "FIRST_HALF" and period_half != PeriodHalf.FIRST:
            return ZERO
        if deduction.pay_period_applicability == "SECOND_HALF" and period_half != PeriodHalf.SECOND:
            return ZERO
    if deduction.frequency == "MONTHLY" and not second_half:
        return ZERO

    amount = deduction.amount
    if deduction.is_percentage and deduction.percentage_rate:
        rate = deduction.percentage_rate
        if deduction.percentage_base == "BASIC":
            amount = basic_pay * rate
        elif deduction.percentage_base == "NET":
            amount = net_base * rate
        else:
            amount = gross_pay * rate

    if deduction.max_deduction_limit:
        amount = min(amount, deduction.max_deduction_limit)
    return round_currency(max(amount, ZERO))


def allocate_loans(
    amortizations: list[DueAmortization], available_net: Decimal
) -> LoanAllocation:
    """Apply whole amortizations in priority order while they fit.

    An amortization larger than the remaining net is deferred, never split.
    """
    ordered = sorted(amortizations, key=lambda a: (a.deduction_priority, a.due_date))
    allocation = LoanAllocation(remaining_net=max(available_net, ZERO))

    for amortization in ordered:
        amount = round_currency(amortization.total_payment)
        if amount <= 0 or amount > allocation.remaining_net:
            continue

        allocation.lines.append(
            LineItemBuilder.deduction(
                "LOAN_PAYMENT",
                f"Loan Amortization ({amortization.loan_number})",
                amount,
                reference_type=ReferenceType.LOAN,
                reference_id=amortization.loan_id,
            )
        )
        allocation.applied.append(
            AppliedAmortization(
                amortization_id=amortization.amortization_id,
                loan_id=amortization.loan_id,
                loan_number=amortization.loan_number,
                amount=amount,
                principal_amount=amortization.principal_amount,
                interest_amount=amortization.interest_amount,
            )
        )
        allocation.remaining_net = round_currency(max(allocation.remaining_net - amount, ZERO))

    return allocation


class DeductionAllocator:
    """Orders one employee's deductions.

    Reporting order: tardiness, undertime, SSS, PhilHealth, Pag-IBIG,
    withholding tax, recurring, manual adjustments, loans. Loans only see the
    net left after every other line.
    """

    def __init__(self, pay_frequency: str, period_half: str | None, second_half: bool, is_bonus_run: bool):
        self.pay_frequency = pay_frequency
        self.period_half = period_half
        self.second_half = second_half
        self.is_bonus_run = is_bonus_run

    def recurring_lines(
        self,
        recurring: list[RecurringDeductionInput],
        basic_pay: Decimal,
        gross_pay: Decimal,
        net_base: Decimal,
    ) -> list[DeductionLine]:
        if self.is_bonus_run:
            return []

        lines: list[DeductionLine] = []
        for deduction in recurring:
            amount = recurring_deduction_amount(
                deduction,
                basic_pay,
                gross_pay,
                net_base,
                self.pay_frequency,
                self.period_half,
                self.second_half,
            )
            if amount <= 0:
                continue
            lines.append(
                LineItemBuilder.deduction(
                    "RECURRING",
                    deduction.description,
                    amount,
                    reference_type=ReferenceType.RECURRING,
                    reference_id=deduction.recurring_id,
                    is_pre_tax=deduction.is_pre_tax,
                    deduction_type_id=deduction.deduction_type_id,
                )
            )
        return lines

    @staticmethod
    def net_base_for_recurring(
        gross_pay: Decimal,
        tardiness: Decimal,
        undertime: Decimal,
        contributions: StatutoryContributions,
    ) -> Decimal:
        return max(ZERO, gross_pay - (tardiness + undertime + contributions.employee_total))

    def assemble(
        self,
        gross_pay: Decimal,
        tardiness: Decimal,
        undertime: Decimal,
        contributions: StatutoryContributions,
        withholding_tax: Decimal,
        recurring_lines: list[DeductionLine],
        adjustments: AdjustmentCarryOver,
        amortizations: list[DueAmortization],
    ) -> DeductionResult:
        lines: list[DeductionLine] = []

        if tardiness > 0:
            lines.append(
                LineItemBuilder.deduction(
                    "TARDINESS", "Tardiness Deduction", tardiness, reference_type=ReferenceType.ATTENDANCE
                )
            )
        if undertime > 0:
            lines.append(
                LineItemBuilder.deduction(
                    "UNDERTIME", "Undertime Deduction", undertime, reference_type=ReferenceType.ATTENDANCE
                )
            )
        if contributions.sss_employee > 0:
            lines.append(
                LineItemBuilder.deduction(
                    "SSS",
                    "SSS Contribution",
                    contributions.sss_employee,
                    reference_type=ReferenceType.GOVERNMENT,
                    employer_share=contributions.sss_employer,
                    is_pre_tax=True,
                )
            )
        if contributions.philhealth_employee > 0:
            lines.append(
                LineItemBuilder.deduction(
                    "PHILHEALTH",
                    "PhilHealth Contribution",
                    contributions.philhealth_employee,
                    reference_type=ReferenceType.GOVERNMENT,
                    employer_share=contributions.philhealth_employer,
                    is_pre_tax=True,
                )
            )
        if contributions.pagibig_employee > 0:
            lines.append(
                LineItemBuilder.deduction(
                    "PAGIBIG",
                    "Pag-IBIG Contribution",
                    contributions.pagibig_employee,
                    reference_type=ReferenceType.GOVERNMENT,
                    employer_share=contributions.pagibig_employer,
                    is_pre_tax=True,
                )
            )
        if withholding_tax > 0:
            lines.append(
                LineItemBuilder.deduction(
                    "WTAX", "Withholding Tax", withholding_tax, reference_type=ReferenceType.TAX
                )
            )

        lines.extend(recurring_lines)

        adjustment_lines = [
            LineItemBuilder.deduction(
                "ADJUSTMENT",
                item.description,
                max(item.amount, ZERO),
                reference_type=item.reference_type or ReferenceType.ADJUSTMENT,
            )
            for item in adjustments.deductions
        ]
        lines.extend(adjustment_lines)

        before_loans = LineItemBuilder.calculate_total_deductions(lines)
        if self.is_bonus_run:
            loans = LoanAllocation(remaining_net=max(gross_pay - before_loans, ZERO))
        else:
            loans = allocate_loans(amortizations, gross_pay - before_loans)
        lines.extend(loans.lines)

        recurring_total = round_currency(sum((line.amount for line in recurring_lines), ZERO))
        pre_tax_recurring = round_currency(
            sum((line.amount for line in recurring_lines if line.is_pre_tax), ZERO)
        )

        return DeductionResult(
            lines=lines,
            tardiness=tardiness,
            undertime=undertime,
            withholding_tax=withholding_tax,
            recurring_total=recurring_total,
            pre_tax_recurring=pre_tax_recurring,
            adjustment_total=round_currency(sum((line.amount for line in adjustment_lines), ZERO)),
            loans=loans,
            total_deductions=LineItemBuilder.calculate_total_deductions(lines),
        )
