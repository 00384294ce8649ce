"""Tests for deduction assembly and loan allocation."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_run_engine.calculators.deductions import (
    DeductionAllocator,
    allocate_loans,
    attendance_deductions,
    recurring_deduction_amount,
)
from payroll_run_engine.calculators.earnings import compute_rates
from payroll_run_engine.calculators.types import (
    AdjustmentCarryOver,
    AttendanceRule,
    AttendanceSnapshot,
    DeductionLine,
    DueAmortization,
    RecurringDeductionInput,
    ReferenceType,
    StatutoryContributions,
)


def amortization(total: str, priority: int = 1, due: date = date(2026, 1, 15), number: str = "LN-1"):
    return DueAmortization(
        amortization_id=uuid4(),
        loan_id=uuid4(),
        loan_number=number,
        due_date=due,
        deduction_priority=priority,
        total_payment=Decimal(total),
        principal_amount=Decimal(total),
        interest_amount=Decimal("0"),
    )


def recurring(**overrides) -> RecurringDeductionInput:
    values = dict(
        recurring_id=uuid4(),
        deduction_type_id=uuid4(),
        description="Union Dues",
        amount=Decimal("500"),
        is_percentage=False,
        percentage_rate=None,
        frequency="PER_PAYROLL",
        pay_period_applicability=None,
        percentage_base=None,
        max_deduction_limit=None,
        is_pre_tax=False,
    )
    values.update(overrides)
    return RecurringDeductionInput(**values)


CONTRIBUTIONS = StatutoryContributions(
    sss_employee=Decimal("1350"),
    sss_employer=Decimal("2850"),
    philhealth_employee=Decimal("750"),
    philhealth_employer=Decimal("750"),
    pagibig_employee=Decimal("200"),
    pagibig_employer=Decimal("200"),
)


class TestAttendanceDeductions:
    def test_rules_are_looked_up_by_type(self):
        rates = compute_rates(Decimal("0"), Decimal("960"), Decimal("120"), 365, Decimal("8"), 24, "DAILY")
        attendance = AttendanceSnapshot(tardiness_mins=20, undertime_mins=10)
        rules = {"TARDINESS": AttendanceRule(calculation_basis="PER_15_MINS")}

        tardiness, undertime = attendance_deductions(attendance, rates, rules)

        # 20 minutes -> two 15-minute blocks; undertime has no rule -> per minute
        assert tardiness == Decimal("60.00")
        assert undertime == Decimal("20.00")


class TestRecurringDeductionAmount:
    def _amount(self, deduction, frequency="SEMI_MONTHLY", half="FIRST", second_half=False):
        return recurring_deduction_amount(
            deduction,
            basic_pay=Decimal("15000"),
            gross_pay=Decimal("16000"),
            net_base=Decimal("12000"),
            pay_frequency=frequency,
            period_half=half,
            second_half=second_half,
        )

    def test_fixed_amount(self):
        assert self._amount(recurring()) == Decimal("500.00")

    def test_half_applicability_on_semi_monthly(self):
        first_only = recurring(pay_period_applicability="FIRST_HALF")
        second_only = recurring(pay_period_applicability="SECOND_HALF")

        assert self._amount(first_only, half="FIRST") == Decimal("500.00")
        assert self._amount(first_only, half="SECOND", second_half=True) == Decimal("0")
        assert self._amount(second_only, half="FIRST") == Decimal("0")

    def test_half_applicability_ignored_outside_semi_monthly(self):
        second_only = recurring(pay_period_applicability="SECOND_HALF")
        assert self._amount(second_only, frequency="MONTHLY", half=None, second_half=True) == Decimal("500.00")

    def test_monthly_frequency_waits_for_second_half(self):
        monthly = recurring(frequency="MONTHLY")

        assert self._amount(monthly) == Decimal("0")
        assert self._amount(monthly, half="SECOND", second_half=True) == Decimal("500.00")

    @pytest.mark.parametrize(
        "base,expected",
        [("BASIC", "300.00"), ("GROSS", "320.00"), ("NET", "240.00"), (None, "320.00")],
    )
    def test_percentage_bases(self, base, expected):
        deduction = recurring(is_percentage=True, percentage_rate=Decimal("0.02"), percentage_base=base)
        assert self._amount(deduction) == Decimal(expected)

    def test_max_limit_caps_the_amount(self):
        deduction = recurring(
            is_percentage=True,
            percentage_rate=Decimal("0.10"),
            percentage_base="GROSS",
            max_deduction_limit=Decimal("1000"),
        )
        assert self._amount(deduction) == Decimal("1000.00")


class TestAllocateLoans:
    def test_priority_then_due_date(self):
        late = amortization("100", priority=1, due=date(2026, 1, 15), number="LN-LATE")
        early = amortization("100", priority=1, due=date(2026, 1, 1), number="LN-EARLY")
        urgent = amortization("100", priority=0, due=date(2026, 1, 31), number="LN-URGENT")

        allocation = allocate_loans([late, early, urgent], Decimal("1000"))

        assert [a.loan_number for a in allocation.applied] == ["LN-URGENT", "LN-EARLY", "LN-LATE"]
        assert allocation.total == Decimal("300.00")
        assert allocation.remaining_net == Decimal("700.00")

    def test_amortization_is_never_split(self):
        """An installment that does not fit is deferred; smaller ones later in line still apply."""
        big = amortization("900", priority=1, number="LN-BIG")
        small = amortization("300", priority=2, number="LN-SMALL")

        allocation = allocate_loans([big, small], Decimal("800"))

        assert [a.loan_number for a in allocation.applied] == ["LN-SMALL"]
        assert allocation.lines[0].amount == Decimal("300.00")
        assert allocation.lines[0].description == "Loan Amortization (LN-SMALL)"
        assert allocation.lines[0].reference_type == ReferenceType.LOAN

    def test_exact_fit_applies(self):
        allocation = allocate_loans([amortization("500")], Decimal("500"))

        assert len(allocation.applied) == 1
        assert allocation.remaining_net == Decimal("0.00")

    def test_negative_net_applies_nothing(self):
        allocation = allocate_loans([amortization("1")], Decimal("-50"))

        assert allocation.applied == []
        assert allocation.remaining_net == Decimal("0")


class TestDeductionAllocator:
    def test_reporting_order(self):
        allocator = DeductionAllocator("SEMI_MONTHLY", "FIRST", False, is_bonus_run=False)
        recurring_lines = allocator.recurring_lines(
            [recurring()], Decimal("15000"), Decimal("15000"), Decimal("12000")
        )
        adjustments = AdjustmentCarryOver(
            deductions=(DeductionLine(type_code="ADJUSTMENT", description="Uniform", amount=Decimal("250")),)
        )

        result = allocator.assemble(
            gross_pay=Decimal("15000"),
            tardiness=Decimal("50"),
            undertime=Decimal("25"),
            contributions=CONTRIBUTIONS,
            withholding_tax=Decimal("400"),
            recurring_lines=recurring_lines,
            adjustments=adjustments,
            amortizations=[amortization("1000")],
        )

        assert [line.type_code for line in result.lines] == [
            "TARDINESS",
            "UNDERTIME",
            "SSS",
            "PHILHEALTH",
            "PAGIBIG",
            "WTAX",
            "RECURRING",
            "ADJUSTMENT",
            "LOAN_PAYMENT",
        ]
        assert result.lines[2].employer_share == Decimal("2850.00")
        assert result.lines[7].reference_type == ReferenceType.ADJUSTMENT
        assert result.total_deductions == Decimal("4525.00")
        assert result.adjustment_total == Decimal("250.00")

    def test_loans_see_net_after_every_other_deduction(self):
        allocator = DeductionAllocator("SEMI_MONTHLY", "FIRST", False, is_bonus_run=False)

        result = allocator.assemble(
            gross_pay=Decimal("3000"),
            tardiness=Decimal("0"),
            undertime=Decimal("0"),
            contributions=CONTRIBUTIONS,
            withholding_tax=Decimal("0"),
            recurring_lines=[],
            adjustments=AdjustmentCarryOver(),
            amortizations=[amortization("1000")],
        )

        # 3000 - 2300 statutory leaves 700, not enough for the 1000 installment
        assert result.loans.applied == []
        assert result.total_deductions == Decimal("2300.00")

    def test_bonus_run_skips_recurring_and_loans(self):
        allocator = DeductionAllocator("SEMI_MONTHLY", "SECOND", True, is_bonus_run=True)

        recurring_lines = allocator.recurring_lines(
            [recurring()], Decimal("30000"), Decimal("30000"), Decimal("30000")
        )
        result = allocator.assemble(
            gross_pay=Decimal("30000"),
            tardiness=Decimal("0"),
            undertime=Decimal("0"),
            contributions=StatutoryContributions(),
            withholding_tax=Decimal("0"),
            recurring_lines=recurring_lines,
            adjustments=AdjustmentCarryOver(),
            amortizations=[amortization("1000")],
        )

        assert recurring_lines == []
        assert result.lines == []
        assert result.loans.remaining_net == Decimal("30000")

    def test_pre_tax_recurring_total(self):
        allocator = DeductionAllocator("MONTHLY", None, True, is_bonus_run=False)

        lines = allocator.recurring_lines(
            [recurring(is_pre_tax=True), recurring(amount=Decimal("100"))],
            Decimal("30000"),
            Decimal("30000"),
            Decimal("28000"),
        )
        result = allocator.assemble(
            gross_pay=Decimal("30000"),
            tardiness=Decimal("0"),
            undertime=Decimal("0"),
            contributions=StatutoryContributions(),
            withholding_tax=Decimal("0"),
            recurring_lines=lines,
            adjustments=AdjustmentCarryOver(),
            amortizations=[],
        )

        assert result.recurring_total == Decimal("600.00")
        assert result.pre_tax_recurring == Decimal("500.00")

    def test_net_base_for_recurring(self):
        net_base = DeductionAllocator.net_base_for_recurring(
            Decimal("3000"), Decimal("100"), Decimal("0"), CONTRIBUTIONS
        )
        assert net_base == Decimal("600")
