"""Unit tests for LineItemBuilder."""

from decimal import Decimal
from uuid import uuid4

from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.types import ReferenceType


class TestLineConstruction:
    """Test canonical rounding and sign handling."""

    def test_earning_rounds_amount_and_quantities(self):
        line = LineItemBuilder.earning(
            "OVERTIME",
            "Overtime Pay",
            Decimal("308.2191"),
            hours=Decimal("2.00005"),
            rate=Decimal("123.287671"),
        )

        assert line.amount == Decimal("308.22")
        assert line.hours == Decimal("2.0001")
        assert line.rate == Decimal("123.2877")
        assert line.days is None
        assert line.is_taxable is True

    def test_amounts_are_stored_positive(self):
        earning = LineItemBuilder.earning("ADJUSTMENT", "Correction", Decimal("-150.005"))
        deduction = LineItemBuilder.deduction("ADJUSTMENT", "Correction", Decimal("-75.50"))

        assert earning.amount == Decimal("150.01")
        assert deduction.amount == Decimal("75.50")

    def test_deduction_reference_and_employer_share(self):
        loan_id = uuid4()
        line = LineItemBuilder.deduction(
            "LOAN_PAYMENT",
            "Loan Amortization (LN-0001)",
            Decimal("1000"),
            reference_type=ReferenceType.LOAN,
            reference_id=loan_id,
        )
        sss = LineItemBuilder.deduction(
            "SSS", "SSS Contribution", Decimal("1350"), employer_share=Decimal("2850.004"), is_pre_tax=True
        )

        assert line.reference_id == loan_id
        assert line.employer_share is None
        assert sss.employer_share == Decimal("2850.00")
        assert sss.is_pre_tax is True


class TestTotals:
    def test_gross_and_deductions(self):
        earnings = [
            LineItemBuilder.earning("BASIC_PAY", "Basic Pay", Decimal("15000")),
            LineItemBuilder.earning("OVERTIME", "Overtime Pay", Decimal("308.22")),
        ]
        deductions = [
            LineItemBuilder.deduction("SSS", "SSS Contribution", Decimal("1350")),
            LineItemBuilder.deduction("WTAX", "Withholding Tax", Decimal("912.15")),
        ]

        assert LineItemBuilder.calculate_gross(earnings) == Decimal("15308.22")
        assert LineItemBuilder.calculate_total_deductions(deductions) == Decimal("2262.15")

    def test_empty_totals(self):
        assert LineItemBuilder.calculate_gross([]) == Decimal("0.00")
        assert LineItemBuilder.calculate_total_deductions([]) == Decimal("0.00")

    def test_net_floors_at_zero(self):
        assert LineItemBuilder.calculate_net(Decimal("1000"), Decimal("250.50")) == Decimal("749.50")
        assert LineItemBuilder.calculate_net(Decimal("1000"), Decimal("1500")) == Decimal("0.00")


class TestLinesHash:
    """Test the payslip line fingerprint."""

    def _lines(self, basic="15000"):
        earnings = [LineItemBuilder.earning("BASIC_PAY", "Basic Pay", Decimal(basic), days=Decimal("15"))]
        deductions = [
            LineItemBuilder.deduction(
                "SSS", "SSS Contribution", Decimal("1350"), ReferenceType.GOVERNMENT, employer_share=Decimal("2850")
            )
        ]
        return earnings, deductions

    def test_hash_is_deterministic(self):
        assert LineItemBuilder.compute_lines_hash(*self._lines()) == LineItemBuilder.compute_lines_hash(
            *self._lines()
        )

    def test_hash_length(self):
        assert len(LineItemBuilder.compute_lines_hash(*self._lines())) == 32

    def test_hash_changes_with_amounts(self):
        assert LineItemBuilder.compute_lines_hash(*self._lines("15000")) != LineItemBuilder.compute_lines_hash(
            *self._lines("15000.01")
        )

    def test_hash_depends_on_order(self):
        earnings = [
            LineItemBuilder.earning("BASIC_PAY", "Basic Pay", Decimal("100")),
            LineItemBuilder.earning("OVERTIME", "Overtime Pay", Decimal("50")),
        ]

        forward = LineItemBuilder.compute_lines_hash(earnings, [])
        backward = LineItemBuilder.compute_lines_hash(list(reversed(earnings)), [])

        assert forward != backward
