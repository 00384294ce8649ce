"""Pytest fixtures for payroll run engine tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_run_engine.config import Settings
from payroll_run_engine.database import make_session_factory
from payroll_run_engine.models import (
    Base,
    Company,
    DailyTimeRecord,
    Employee,
    EmployeeSalary,
    EmploymentType,
    Loan,
    LoanAmortization,
    LoanType,
    PagIbigContributionTable,
    PayPeriod,
    PayPeriodPattern,
    PhilHealthContributionTable,
    SSSContributionTable,
    TaxTable,
    WorkSchedule,
)
from payroll_run_engine.services.authorization import Actor

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SEMI_MONTHLY_SCHEDULE = {
    "sss": "SECOND_HALF",
    "philHealth": "FIRST_HALF",
    "pagIbig": "FIRST_HALF",
    "withholdingTax": "EVERY_PERIOD",
}

CUTOFF_START = date(2026, 1, 1)
CUTOFF_END = date(2026, 1, 15)
TABLES_EFFECTIVE_FROM = date(2025, 1, 1)


@dataclass
class SeedData:
    """Ids of the rows created by ``seed_payroll``."""

    company_id: UUID
    pattern_id: UUID
    period_id: UUID
    work_schedule_id: UUID
    employee_ids: dict[str, UUID] = field(default_factory=dict)
    loan_id: UUID | None = None
    amortization_id: UUID | None = None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        engine_version="TEST-CALC-V1",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        default_night_diff_rate=Decimal("0.10"),
        bonus_exclusion_ceiling=Decimal("90000"),
        substituted_filing_rate=Decimal("0.08"),
    )


async def create_schema(url: str = TEST_DATABASE_URL):
    """Engine with every table created."""
    if url == TEST_DATABASE_URL:
        engine = create_async_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = await create_schema()
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


def _weekdays(start: date, end: date) -> list[date]:
    days = []
    current = start
    while current <= end:
        if current.weekday() < 5:
            days.append(current)
        current += timedelta(days=1)
    return days


async def seed_payroll(session: AsyncSession) -> SeedData:
    """Seed one company with two monthly-rate employees on a semi-monthly pattern.

    - E001: 30,000/month, one 1,000 loan amortization due on the cutoff end
    - E002: 20,000/month, no loans
    - approved PRESENT attendance on every weekday of 2026-01-01..15
    - SSS 1,350/2,850 flat, PhilHealth 5% split evenly, Pag-IBIG 200/200 fixed
    - semi-monthly tax table only (no annual table)
    """
    company = Company(code="ACME", name="Acme Manufacturing Inc.")
    session.add(company)
    await session.flush()

    schedule = WorkSchedule(company_id=company.id, name="Mon-Fri", rest_days=["SATURDAY", "SUNDAY"])
    regular = EmploymentType(company_id=company.id, code="REGULAR", name="Regular", has_13th_month=True)
    pattern = PayPeriodPattern(
        company_id=company.id,
        code="SM",
        name="Semi-monthly",
        pay_frequency_code="SEMI_MONTHLY",
        periods_per_year=24,
        statutory_deduction_schedule=dict(SEMI_MONTHLY_SCHEDULE),
    )
    session.add_all([schedule, regular, pattern])
    await session.flush()

    period = PayPeriod(
        pattern_id=pattern.id,
        year=2026,
        period_number=1,
        period_half="FIRST",
        cutoff_start_date=CUTOFF_START,
        cutoff_end_date=CUTOFF_END,
        working_days=Decimal("11"),
        status_code="OPEN",
    )
    session.add(period)
    await session.flush()

    seed = SeedData(
        company_id=company.id,
        pattern_id=pattern.id,
        period_id=period.id,
        work_schedule_id=schedule.id,
    )

    for number, first_name, base_salary in (
        ("E001", "Juan", Decimal("30000")),
        ("E002", "Maria", Decimal("20000")),
    ):
        employee = Employee(
            company_id=company.id,
            employee_number=number,
            first_name=first_name,
            last_name="Dela Cruz",
            pay_period_pattern_id=pattern.id,
            work_schedule_id=schedule.id,
            employment_type_id=regular.id,
            hire_date=date(2020, 1, 6),
        )
        session.add(employee)
        await session.flush()
        seed.employee_ids[number] = employee.id

        session.add(
            EmployeeSalary(
                employee_id=employee.id,
                base_salary=base_salary,
                monthly_divisor=365,
                hours_per_day=Decimal("8"),
                salary_rate_type_code="MONTHLY",
            )
        )
        for day in _weekdays(CUTOFF_START, CUTOFF_END):
            session.add(
                DailyTimeRecord(
                    employee_id=employee.id,
                    attendance_date=day,
                    attendance_status="PRESENT",
                    approval_status_code="APPROVED",
                    actual_time_in=datetime.combine(day, time(0, 0), tzinfo=timezone.utc),
                    actual_time_out=datetime.combine(day, time(9, 0), tzinfo=timezone.utc),
                    hours_worked=Decimal("8"),
                )
            )

    session.add_all(
        [
            SSSContributionTable(
                salary_bracket_min=Decimal("0"),
                salary_bracket_max=Decimal("999999"),
                monthly_salary_credit=Decimal("30000"),
                employee_share=Decimal("1350"),
                employer_share=Decimal("2850"),
                effective_from=TABLES_EFFECTIVE_FROM,
            ),
            PhilHealthContributionTable(
                premium_rate=Decimal("0.05"),
                monthly_floor=Decimal("10000"),
                monthly_ceiling=Decimal("100000"),
                employee_share_percent=Decimal("0.5"),
                employer_share_percent=Decimal("0.5"),
                effective_from=TABLES_EFFECTIVE_FROM,
            ),
            PagIbigContributionTable(
                salary_bracket_min=Decimal("0"),
                salary_bracket_max=Decimal("999999"),
                employee_share=Decimal("200"),
                employer_share=Decimal("200"),
                effective_from=TABLES_EFFECTIVE_FROM,
            ),
        ]
    )
    for over, not_over, base_tax, rate, excess in (
        ("0", "10417", "0", "0", "0"),
        ("10417", "16666", "0", "0.15", "10417"),
        ("16666", "33332", "937.50", "0.20", "16666"),
    ):
        session.add(
            TaxTable(
                tax_table_type_code="SEMI_MONTHLY",
                effective_year=2026,
                bracket_over=Decimal(over),
                bracket_not_over=Decimal(not_over),
                base_tax=Decimal(base_tax),
                tax_rate_percent=Decimal(rate),
                excess_over=Decimal(excess),
                effective_from=TABLES_EFFECTIVE_FROM,
            )
        )

    loan_type = LoanType(company_id=company.id, code="SALARY", name="Salary Loan", deduction_priority=1)
    session.add(loan_type)
    await session.flush()

    loan = Loan(
        employee_id=seed.employee_ids["E001"],
        loan_type_id=loan_type.id,
        loan_number="LN-0001",
        principal_amount=Decimal("6000"),
        principal_balance=Decimal("6000"),
        interest_balance=Decimal("0"),
        total_balance=Decimal("6000"),
        status_code="ACTIVE",
    )
    session.add(loan)
    await session.flush()

    amortization = LoanAmortization(
        loan_id=loan.id,
        installment_number=1,
        due_date=CUTOFF_END,
        principal_amount=Decimal("1000"),
        interest_amount=Decimal("0"),
        total_payment=Decimal("1000"),
    )
    session.add(amortization)
    await session.flush()

    seed.loan_id = loan.id
    seed.amortization_id = amortization.id
    return seed


@pytest.fixture
async def seeded(session: AsyncSession) -> SeedData:
    """Seeded and committed, so rollbacks inside the services keep the base data."""
    seed = await seed_payroll(session)
    await session.commit()
    return seed


@pytest.fixture
def actor(seeded: SeedData) -> Actor:
    return Actor(user_id=uuid4(), company_id=seeded.company_id, role="PAYROLL_ADMIN")


@pytest.fixture
async def file_database(tmp_path):
    """File-backed database for tests that need independent connections.

    Yields (session_factory, seed_data).
    """
    engine = await create_schema(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}")
    factory = make_session_factory(engine)
    async with factory() as session:
        seed = await seed_payroll(session)
        await session.commit()
    yield factory, seed
    await engine.dispose()
