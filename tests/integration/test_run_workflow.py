"""End-to-end tests of the six-step run pipeline against the database.

Seed (see tests/conftest.py): E001 at 30,000/month with a 1,000 loan
amortization due on the cutoff end, E002 at 20,000/month, full approved
attendance, first semi-monthly half of January 2026.
"""

import re
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from payroll_run_engine.exceptions import InvalidTransitionError
from payroll_run_engine.models import (
    AuditLog,
    Loan,
    LoanAmortization,
    LoanPayment,
    PayPeriod,
)

from tests.conftest import CUTOFF_END
from tests.integration.conftest import fetch_run, payslips_by_employee

pytestmark = pytest.mark.asyncio


class TestCreateRun:
    """Test step 1."""

    async def test_create_starts_at_validation(self, workflow, service, seeded, actor, session_factory):
        result = await service.create_run(actor, seeded.period_id)
        await workflow.session.commit()

        assert result.ok is True
        assert re.fullmatch(r"RUN-\d{4}-00001", result.run_number)
        assert result.message == f"Payroll run {result.run_number} created."

        run, steps = await fetch_run(session_factory, result.run_id)
        assert run.status_code == "DRAFT"
        assert run.current_step_number == 2
        assert run.total_employees == 2
        assert steps[1].status == "COMPLETED"
        assert steps[2].status == "IN_PROGRESS"
        assert all(steps[n].status == "PENDING" for n in (3, 4, 5, 6))

    async def test_create_bumps_period_guard_and_audits(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.create(actor, seeded.period_id)

        async with session_factory() as session:
            period = await session.get(PayPeriod, seeded.period_id)
            audit = await session.execute(
                select(AuditLog).where(AuditLog.record_id == str(run_id), AuditLog.reason == "CREATE_PAYROLL_RUN")
            )
            rows = list(audit.scalars().all())

        assert period.run_guard_version == 1
        assert {row.field_name for row in rows} == {
            "run_number",
            "run_type_code",
            "pay_period_id",
            "total_employees",
        }
        assert all(row.action == "CREATE" and row.user_id == actor.user_id for row in rows)


class TestCalculation:
    """Test step 3 output against hand-computed amounts."""

    async def test_run_totals(self, workflow, service, seeded, actor):
        run_id = await workflow.create(actor, seeded.period_id)
        report = await workflow.step("validate_run", run_id, actor)
        assert report.is_valid, report.errors
        await workflow.step("proceed_to_calculate", run_id, actor)

        summary = await workflow.step("calculate_run", run_id, actor)

        assert summary.processed_count == 2
        assert summary.skipped_count == 0
        assert summary.total_gross == Decimal("25000.00")
        assert summary.total_deductions == Decimal("3194.95")
        assert summary.total_net == Decimal("21805.05")
        assert summary.total_employer_contributions == Decimal("1650.00")
        assert summary.total_employer_cost == Decimal("26650.00")

    async def test_payslips(self, workflow, service, seeded, actor, session_factory):
        run_id = await workflow.computed(actor, seeded.period_id)
        run = await service.get_run(run_id, actor)

        payslips = await payslips_by_employee(session_factory, run_id)
        first = payslips[seeded.employee_ids["E001"]]
        second = payslips[seeded.employee_ids["E002"]]

        assert first.payslip_number == f"PSL-{run.run_number[4:]}-{str(first.employee_id)[:6].upper()}"
        assert first.gross_pay == Decimal("15000.00")
        assert first.philhealth_employee == Decimal("750.00")
        assert first.pagibig_employee == Decimal("200.00")
        assert first.sss_employee == Decimal("0.00")
        assert first.withholding_tax == Decimal("544.95")
        assert first.total_deductions == Decimal("2494.95")
        assert first.net_pay == Decimal("12505.05")
        assert first.deductions[-1].description == "Loan Amortization (LN-0001)"

        assert second.gross_pay == Decimal("10000.00")
        assert second.withholding_tax == Decimal("0.00")
        assert second.total_deductions == Decimal("700.00")
        assert second.net_pay == Decimal("9300.00")
        assert second.ytd_gross_pay == Decimal("10000.00")

    async def test_completed_step_carries_the_trace(self, workflow, seeded, actor, session_factory, settings):
        run_id = await workflow.computed(actor, seeded.period_id)

        run, steps = await fetch_run(session_factory, run_id)

        assert run.status_code == "COMPUTED"
        assert steps[3].status == "COMPLETED"
        assert steps[3].notes["calculation_version"] == settings.engine_version
        assert steps[3].notes["processed_employee_count"] == 2
        assert steps[4].status == "PENDING"

    async def test_loan_is_applied(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.computed(actor, seeded.period_id)

        async with session_factory() as session:
            loan = await session.get(Loan, seeded.loan_id)
            amortization = await session.get(LoanAmortization, seeded.amortization_id)
            payments = list((await session.execute(select(LoanPayment))).scalars().all())

        assert loan.principal_balance == Decimal("5000.00")
        assert loan.total_balance == Decimal("5000.00")
        assert amortization.is_paid is True
        assert amortization.payroll_run_id == run_id
        assert amortization.paid_date == CUTOFF_END
        assert len(payments) == 1
        assert payments[0].amount_paid == Decimal("1000.00")
        assert payments[0].remarks.startswith("Auto-deducted from payroll run RUN-")


class TestReviewAndClose:
    """Test steps 4 to 6."""

    async def test_full_pipeline_locks_period(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.for_payment(actor, seeded.period_id)

        result = await workflow.step("close_run", run_id, actor)

        assert result.message == "Payroll run closed successfully."
        run, steps = await fetch_run(session_factory, run_id)
        assert run.status_code == "PAID"
        assert run.paid_at is not None
        assert run.closed_by_id == actor.user_id
        assert all(step.is_completed for step in steps.values())

        async with session_factory() as session:
            period = await session.get(PayPeriod, seeded.period_id)
        assert period.status_code == "LOCKED"
        assert period.locked_at is not None

    async def test_generate_stamps_payslips(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.for_payment(actor, seeded.period_id)

        run, steps = await fetch_run(session_factory, run_id)
        assert run.status_code == "FOR_PAYMENT"
        assert run.current_step_number == 6
        assert steps[5].notes == {"payslip_count": 2}
        payslips = await payslips_by_employee(session_factory, run_id)
        assert all(p.generated_at is not None for p in payslips.values())

    async def test_close_is_idempotent(self, workflow, seeded, actor):
        run_id = await workflow.for_payment(actor, seeded.period_id)
        await workflow.step("close_run", run_id, actor)

        again = await workflow.step("close_run", run_id, actor)

        assert again.ok is True
        assert again.message == "Payroll run is already closed and locked."

    async def test_close_requires_payment_stage(self, workflow, seeded, actor):
        run_id = await workflow.computed(actor, seeded.period_id)

        with pytest.raises(InvalidTransitionError, match="not in a closable state"):
            await workflow.step("close_run", run_id, actor)

    async def test_generate_requires_completed_review(self, workflow, seeded, actor):
        run_id = await workflow.computed(actor, seeded.period_id)
        await workflow.step("proceed_to_review", run_id, actor)

        with pytest.raises(InvalidTransitionError, match="Review and adjustment step must be completed first"):
            await workflow.step("generate_payslips", run_id, actor)

    async def test_complete_review_moves_to_step_five(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.computed(actor, seeded.period_id)
        await workflow.step("proceed_to_review", run_id, actor)
        await workflow.step("complete_review", run_id, actor)

        run, steps = await fetch_run(session_factory, run_id)
        assert run.status_code == "FOR_REVIEW"
        assert run.current_step_number == 5
        assert steps[4].status == "COMPLETED"
        assert steps[5].status == "IN_PROGRESS"

    async def test_paid_run_cannot_be_recalculated(self, workflow, seeded, actor):
        run_id = await workflow.for_payment(actor, seeded.period_id)
        await workflow.step("close_run", run_id, actor)

        with pytest.raises(InvalidTransitionError):
            await workflow.step("calculate_run", run_id, actor)


class TestReopen:
    async def test_reopen_unlocks_period(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.for_payment(actor, seeded.period_id)
        await workflow.step("close_run", run_id, actor)

        result = await workflow.step("reopen_run", run_id, actor)

        assert result.message == "Payroll run reopened for review."
        run, steps = await fetch_run(session_factory, run_id)
        assert run.status_code == "FOR_REVIEW"
        assert run.current_step_number == 4
        assert run.paid_at is None
        assert steps[4].status == "IN_PROGRESS"
        assert steps[5].status == "PENDING"
        assert steps[6].status == "PENDING"

        async with session_factory() as session:
            period = await session.get(PayPeriod, seeded.period_id)
        assert period.status_code == "OPEN"
        assert period.locked_at is None

    async def test_reopened_run_can_be_recalculated(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.for_payment(actor, seeded.period_id)
        await workflow.step("close_run", run_id, actor)
        await workflow.step("reopen_run", run_id, actor)

        summary = await workflow.step("calculate_run", run_id, actor)

        assert summary.total_net == Decimal("21805.05")
        async with session_factory() as session:
            count = await session.execute(select(func.count(LoanPayment.id)))
        assert count.scalar_one() == 1

    async def test_only_paid_runs_reopen(self, workflow, seeded, actor):
        run_id = await workflow.computed(actor, seeded.period_id)

        with pytest.raises(InvalidTransitionError, match="Only approved/paid payroll runs can be reopened"):
            await workflow.step("reopen_run", run_id, actor)


class TestAuditTrail:
    async def test_every_step_is_audited(self, workflow, seeded, actor, session_factory):
        run_id = await workflow.for_payment(actor, seeded.period_id)
        await workflow.step("close_run", run_id, actor)

        async with session_factory() as session:
            result = await session.execute(
                select(AuditLog.reason).where(AuditLog.record_id == str(run_id)).distinct()
            )
            reasons = set(result.scalars().all())

        assert reasons == {
            "CREATE_PAYROLL_RUN",
            "VALIDATE_PAYROLL_RUN",
            "PROCEED_TO_CALCULATE_PAYROLL",
            "CALCULATE_PAYROLL_RUN",
            "PROCEED_TO_REVIEW_PAYROLL",
            "COMPLETE_PAYROLL_REVIEW",
            "GENERATE_PAYSLIPS",
            "CLOSE_PAYROLL_RUN",
        }
