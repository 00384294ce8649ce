"""Tests for create-time guards, permissions and concurrent transitions."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from payroll_run_engine.calculators.types import AppliedAmortization, RunScope, RunType
from payroll_run_engine.exceptions import (
    ActiveRunExistsError,
    ConcurrentTransitionError,
    NoEligibleEmployeesError,
    PayPeriodNotFoundError,
    PayPeriodNotOpenError,
    PermissionDeniedError,
    RunNotFoundError,
)
from payroll_run_engine.models import AuditLog, Loan, LoanAmortization, LoanPayment, PayPeriod, PayrollRun
from payroll_run_engine.services.authorization import Actor
from payroll_run_engine.services.loan_service import LoanService
from payroll_run_engine.services.payroll_run_service import PayrollRunService

from tests.conftest import CUTOFF_END
from tests.integration.conftest import RunWorkflow, fetch_run

pytestmark = pytest.mark.asyncio


class TestCreateGuards:
    async def test_one_active_run_per_period(self, workflow, service, seeded, actor):
        await workflow.create(actor, seeded.period_id)

        with pytest.raises(ActiveRunExistsError) as exc_info:
            await service.create_run(actor, seeded.period_id, run_type=RunType.MID_YEAR_BONUS)

        assert exc_info.value.run_number.endswith("-00001")
        assert exc_info.value.code == "ACTIVE_RUN_EXISTS"

    async def test_cancelled_run_frees_the_period(self, workflow, session, seeded, actor):
        run_id = await workflow.create(actor, seeded.period_id)
        await session.execute(update(PayrollRun).where(PayrollRun.id == run_id).values(status_code="CANCELLED"))
        await session.commit()

        result = await workflow.service.create_run(actor, seeded.period_id)

        assert result.run_number.endswith("-00002")

    async def test_period_must_be_open(self, service, session, seeded, actor):
        await session.execute(update(PayPeriod).where(PayPeriod.id == seeded.period_id).values(status_code="LOCKED"))
        await session.commit()

        with pytest.raises(PayPeriodNotOpenError, match="Selected pay period is not open"):
            await service.create_run(actor, seeded.period_id)

    async def test_unknown_period(self, service, seeded, actor):
        with pytest.raises(PayPeriodNotFoundError):
            await service.create_run(actor, uuid4())

    async def test_period_of_another_company(self, service, seeded):
        stranger = Actor(user_id=uuid4(), company_id=uuid4(), role="PAYROLL_ADMIN")

        with pytest.raises(PayPeriodNotFoundError):
            await service.create_run(stranger, seeded.period_id)

    async def test_scope_without_employees(self, service, seeded, actor):
        with pytest.raises(NoEligibleEmployeesError):
            await service.create_run(actor, seeded.period_id, scope=RunScope(employee_ids=(uuid4(),)))

    async def test_scope_narrows_the_run(self, workflow, seeded, actor):
        scope = RunScope(employee_ids=(seeded.employee_ids["E002"],))
        run_id = await workflow.create(actor, seeded.period_id, scope=scope)
        await workflow.step("validate_run", run_id, actor)

        summary = await workflow.step("calculate_run", run_id, actor)

        assert summary.processed_count == 1
        assert summary.total_net == Decimal("9300.00")


class TestPermissions:
    @pytest.mark.parametrize("role", ["EMPLOYEE", "VIEWER", "", "SUPERUSER"])
    async def test_roles_without_payroll_access(self, service, seeded, role):
        actor = Actor(user_id=uuid4(), company_id=seeded.company_id, role=role)

        with pytest.raises(PermissionDeniedError):
            await service.create_run(actor, seeded.period_id)

    @pytest.mark.parametrize("role", ["COMPANY_ADMIN", "HR_ADMIN", "PAYROLL_ADMIN"])
    async def test_admin_roles(self, service, seeded, role):
        actor = Actor(user_id=uuid4(), company_id=seeded.company_id, role=role)

        result = await service.create_run(actor, seeded.period_id)

        assert result.ok

    async def test_runs_are_company_scoped(self, workflow, service, seeded, actor):
        run_id = await workflow.create(actor, seeded.period_id)
        stranger = Actor(user_id=uuid4(), company_id=uuid4(), role="PAYROLL_ADMIN")

        with pytest.raises(RunNotFoundError):
            await service.get_run(run_id, stranger)


class TestConcurrentTransitions:
    """Two sessions on independent connections racing the same run."""

    async def test_only_one_close_wins(self, file_database, settings):
        factory, seed = file_database
        actor = Actor(user_id=uuid4(), company_id=seed.company_id, role="PAYROLL_ADMIN")

        async with factory() as setup:
            run_id = await RunWorkflow(setup, PayrollRunService(setup, settings=settings)).for_payment(
                actor, seed.period_id
            )

        async with factory() as first, factory() as second:
            first_service = PayrollRunService(first, settings=settings)
            second_service = PayrollRunService(second, settings=settings)
            # Both sessions see FOR_PAYMENT before either closes
            await first_service.get_run(run_id, actor)
            await second_service.get_run(run_id, actor)
            await first.commit()
            await second.commit()

            await first_service.close_run(run_id, actor)
            await first.commit()

            with pytest.raises(ConcurrentTransitionError, match="already closed by another request"):
                await second_service.close_run(run_id, actor)
            await second.rollback()

        run, steps = await fetch_run(factory, run_id)
        assert run.status_code == "PAID"
        assert steps[6].status == "COMPLETED"

        async with factory() as session:
            closes = await session.execute(
                select(func.count(AuditLog.id)).where(
                    AuditLog.record_id == str(run_id), AuditLog.reason == "CLOSE_PAYROLL_RUN"
                )
            )
        assert closes.scalar_one() == 1

    async def test_stale_amortization_is_not_applied_twice(self, workflow, session, seeded, actor):
        run_id = await workflow.create(actor, seeded.period_id)
        run = await session.get(PayrollRun, run_id)
        amortization = await session.get(LoanAmortization, seeded.amortization_id)
        assert amortization.is_paid is False
        # Another run marks it paid after this session read it
        await session.execute(
            update(LoanAmortization)
            .where(LoanAmortization.id == seeded.amortization_id)
            .values(is_paid=True)
            .execution_options(synchronize_session=False)
        )
        applied = AppliedAmortization(
            amortization_id=seeded.amortization_id,
            loan_id=seeded.loan_id,
            loan_number="LN-0001",
            amount=Decimal("1000"),
            principal_amount=Decimal("1000"),
            interest_amount=Decimal("0"),
        )

        with pytest.raises(ConcurrentTransitionError, match="already applied by another payroll run"):
            await LoanService(session).apply(run, CUTOFF_END, [applied])

        loan = await session.get(Loan, seeded.loan_id)
        assert loan.principal_balance == Decimal("6000")
        payments = await session.execute(select(func.count(LoanPayment.id)))
        assert payments.scalar_one() == 0
