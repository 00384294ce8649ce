"""Integration test fixtures: service workflow helpers and an HTTP client."""

from collections.abc import AsyncGenerator
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_run_engine.api.app import create_app
from payroll_run_engine.api.dependencies import get_db_session
from payroll_run_engine.models import PayrollProcessStep, PayrollRun, Payslip
from payroll_run_engine.services.adjustment_service import AdjustmentService
from payroll_run_engine.services.authorization import Actor
from payroll_run_engine.services.payroll_run_service import PayrollRunService


class RunWorkflow:
    """Drives a run through the pipeline, committing after every step.

    Each step commits the way a request boundary would, so a failed
    calculation's own rollback never discards earlier steps.
    """

    def __init__(self, session: AsyncSession, service: PayrollRunService):
        self.session = session
        self.service = service

    async def create(self, actor: Actor, period_id: UUID, **kwargs) -> UUID:
        result = await self.service.create_run(actor, period_id, **kwargs)
        await self.session.commit()
        return result.run_id

    async def step(self, name: str, run_id: UUID, actor: Actor):
        result = await getattr(self.service, name)(run_id, actor)
        await self.session.commit()
        return result

    async def computed(self, actor: Actor, period_id: UUID) -> UUID:
        run_id = await self.create(actor, period_id)
        await self.step("validate_run", run_id, actor)
        await self.step("proceed_to_calculate", run_id, actor)
        await self.step("calculate_run", run_id, actor)
        return run_id

    async def for_payment(self, actor: Actor, period_id: UUID) -> UUID:
        run_id = await self.computed(actor, period_id)
        await self.step("proceed_to_review", run_id, actor)
        await self.step("complete_review", run_id, actor)
        await self.step("generate_payslips", run_id, actor)
        return run_id


@pytest.fixture
def service(session, settings) -> PayrollRunService:
    return PayrollRunService(session, settings=settings)


@pytest.fixture
def adjustments(session) -> AdjustmentService:
    return AdjustmentService(session)


@pytest.fixture
def workflow(session, service) -> RunWorkflow:
    return RunWorkflow(session, service)


async def fetch_run(session_factory, run_id: UUID) -> tuple[PayrollRun, dict[int, PayrollProcessStep]]:
    """Reload a run and its steps through a fresh session."""
    async with session_factory() as session:
        run = await session.get(PayrollRun, run_id)
        result = await session.execute(
            select(PayrollProcessStep).where(PayrollProcessStep.payroll_run_id == run_id)
        )
        return run, {step.step_number: step for step in result.scalars().all()}


async def payslips_by_employee(session_factory, run_id: UUID) -> dict[UUID, Payslip]:
    """Reload a run's payslips with their lines, keyed by employee id."""
    async with session_factory() as session:
        result = await session.execute(
            select(Payslip)
            .options(selectinload(Payslip.earnings), selectinload(Payslip.deductions))
            .where(Payslip.payroll_run_id == run_id)
        )
        return {p.employee_id: p for p in result.scalars().all()}


@pytest.fixture
async def client(session_factory, settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with request sessions bound to the test database."""
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def headers(actor: Actor) -> dict[str, str]:
    return {
        "X-Company-ID": str(actor.company_id),
        "X-User-ID": str(actor.user_id),
        "X-User-Role": "payroll_admin",
    }
