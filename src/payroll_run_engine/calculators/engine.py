"""Payroll calculation engine - main orchestrator."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_run_engine.calculators.attendance import AttendanceAggregator, AttendanceInputs
from payroll_run_engine.calculators.deductions import (
    DeductionAllocator,
    DeductionResult,
    attendance_deductions,
)
from payroll_run_engine.calculators.earnings import (
    EarningsComposer,
    EarningsResult,
    compute_rates,
    mid_year_bonus_pay,
    regular_basic_pay,
    thirteenth_month_pay,
)
from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.numeric import date_range, round_currency, round_quantity, to_decimal
from payroll_run_engine.calculators.policies import (
    is_second_half_period,
    parse_night_diff_rate,
    parse_statutory_schedule,
    should_apply_by_timing,
)
from payroll_run_engine.calculators.tax_calculator import StatutoryTables, TaxCalculator
from payroll_run_engine.calculators.types import (
    ZERO,
    AdjustmentCarryOver,
    AttendanceRule,
    AttendanceSnapshot,
    CalculationTrace,
    DeductionLine,
    DtrEntry,
    DueAmortization,
    EarningLine,
    EmployeeRates,
    EmployeeSummary,
    EmployeeTrace,
    EmployeeYtd,
    HolidayInfo,
    LeaveInterval,
    RecurringDeductionInput,
    RecurringEarningInput,
    ReferenceType,
    RunScope,
    RunType,
    StatutoryContributions,
    StatutoryDiagnostics,
    StatutorySchedule,
    ThirteenthMonthFormula,
)
from payroll_run_engine.config import REPORTING_TIMEZONE, Settings, get_settings
from payroll_run_engine.exceptions import NoEligibleEmployeesError
from payroll_run_engine.models import (
    AttendanceDeductionRule,
    Company,
    DailyTimeRecord,
    DeductionType,
    EarningType,
    Employee,
    EmployeeEarning,
    EmployeeYTDContribution,
    Holiday,
    LeaveRequest,
    Loan,
    LoanAmortization,
    LoanType,
    OvertimeRate,
    OvertimeRequest,
    PayPeriod,
    PayPeriodPattern,
    PayrollRun,
    Payslip,
    PayslipDeduction,
    PayslipEarning,
    RecurringDeduction,
    SystemConfig,
)

logger = logging.getLogger(__name__)

# Regular runs whose basic pay counts toward the 13th month.
THIRTEENTH_MONTH_SOURCE_STATUSES = ("COMPUTED", "FOR_REVIEW", "APPROVED", "FOR_PAYMENT", "PAID")
BONUS_RUN_TYPES = (RunType.THIRTEENTH_MONTH.value, RunType.MID_YEAR_BONUS.value)


def eligible_employee_query(
    company_id: UUID,
    pattern_id: UUID,
    scope: RunScope,
    run_type: RunType | str = RunType.REGULAR,
    year: int | None = None,
):
    """Non-deleted employees on the pattern, narrowed by the run scope.

    Only active employees are eligible, except that 13th-month runs also
    take employees separated during ``year``.
    """
    query = select(Employee).where(
        Employee.company_id == company_id,
        Employee.deleted_at.is_(None),
        Employee.pay_period_pattern_id == pattern_id,
    )
    if RunType(run_type) == RunType.THIRTEENTH_MONTH and year is not None:
        query = query.where(
            or_(
                Employee.is_active.is_(True),
                Employee.separation_date.between(date(year, 1, 1), date(year, 12, 31)),
            )
        )
    else:
        query = query.where(Employee.is_active.is_(True))

    if scope.department_ids:
        query = query.where(Employee.department_id.in_(scope.department_ids))
    if scope.branch_ids:
        query = query.where(Employee.branch_id.in_(scope.branch_ids))
    if scope.employee_ids:
        query = query.where(Employee.id.in_(scope.employee_ids))
    return query


@dataclass
class RunContext:
    """Run-level inputs shared by every employee of one calculation."""

    run_id: UUID
    run_number: str
    run_type: RunType
    cutoff_start: date
    cutoff_end: date
    year: int
    period_half: str | None
    period_working_days: Decimal | None
    pay_frequency: str
    periods_per_year: int
    schedule: StatutorySchedule
    tables: StatutoryTables
    night_diff_rate: Decimal
    thirteenth_month_formula: ThirteenthMonthFormula = ThirteenthMonthFormula.BASIC_YTD_OR_PRORATED
    holidays_by_date: dict[date, HolidayInfo] = field(default_factory=dict)
    overtime_rates: dict[str, Decimal] = field(default_factory=dict)
    attendance_rules: dict[str, AttendanceRule] = field(default_factory=dict)
    diagnostics: StatutoryDiagnostics = field(default_factory=StatutoryDiagnostics)

    @property
    def dates_in_period(self) -> list[date]:
        return date_range(self.cutoff_start, self.cutoff_end)

    @property
    def second_half(self) -> bool:
        return is_second_half_period(self.pay_frequency, self.period_half)

    @property
    def year_start(self) -> date:
        return date(self.year, 1, 1)

    def formula_policy(self) -> dict[str, Any]:
        return {
            "locale": "PH",
            "timezone": REPORTING_TIMEZONE.tzname(None),
            "run_type": self.run_type.value,
            "thirteenth_month": {
                "formula": self.thirteenth_month_formula.value,
                "fallback": "base_salary * days_employed_this_year / 365",
            },
            "mid_year_bonus": "base_salary / 2",
            "night_diff_rate": self.night_diff_rate,
            "statutory_schedule": self.schedule,
        }


@dataclass
class EmployeeInputs:
    """Per-employee rows, already reduced to calculator inputs."""

    employee: Employee
    dtrs: list[DtrEntry] = field(default_factory=list)
    leaves: list[LeaveInterval] = field(default_factory=list)
    overtime_by_date: dict[date, Decimal] = field(default_factory=dict)
    recurring_earnings: list[RecurringEarningInput] = field(default_factory=list)
    recurring_deductions: list[RecurringDeductionInput] = field(default_factory=list)
    amortizations: list[DueAmortization] = field(default_factory=list)
    adjustments: AdjustmentCarryOver = field(default_factory=AdjustmentCarryOver)
    ytd: EmployeeYtd = field(default_factory=EmployeeYtd)


@dataclass
class EmployeeCalculation:
    """Result of calculating pay for one employee."""

    employee_id: UUID
    employee_number: str
    employee_name: str
    rates: EmployeeRates
    attendance: AttendanceSnapshot
    earnings: EarningsResult
    contributions: StatutoryContributions
    deductions: DeductionResult
    taxable_income: Decimal
    net_pay: Decimal
    working_days: Decimal
    ytd: EmployeeYtd
    is_bonus_run: bool

    @property
    def gross_pay(self) -> Decimal:
        return self.earnings.gross_pay

    @property
    def total_deductions(self) -> Decimal:
        return self.deductions.total_deductions

    @property
    def earning_lines(self) -> list[EarningLine]:
        return self.earnings.lines

    @property
    def deduction_lines(self) -> list[DeductionLine]:
        return self.deductions.lines

    @property
    def lines_hash(self) -> str:
        return LineItemBuilder.compute_lines_hash(self.earning_lines, self.deduction_lines)

    def summary(self) -> EmployeeSummary:
        return EmployeeSummary(
            employee_id=str(self.employee_id),
            employee_number=self.employee_number,
            employee_name=self.employee_name,
            gross_pay=self.gross_pay,
            total_deductions=self.total_deductions,
            net_pay=self.net_pay,
        )

    def trace(self) -> EmployeeTrace:
        earnings = {
            "basic_pay": self.earnings.basic_pay,
            "overtime_pay": self.earnings.overtime_pay,
            "night_diff_pay": self.earnings.night_diff_pay,
            "holiday_pay": self.earnings.holiday_pay,
            "recurring_earnings": self.earnings.recurring_total,
            "adjustment_earnings": self.earnings.adjustment_total,
            "gross_pay": self.gross_pay,
        }
        if self.earnings.ytd_regular_basic is not None:
            earnings["ytd_regular_basic_for_13th"] = self.earnings.ytd_regular_basic

        return EmployeeTrace(
            employee_id=str(self.employee_id),
            employee_number=self.employee_number,
            employee_name=self.employee_name,
            attendance={
                "working_days": self.attendance.total_working_days,
                "payable_days": self.attendance.total_payable_days,
                "unpaid_absences": self.attendance.unpaid_absences,
                "tardiness_mins": self.attendance.tardiness_mins,
                "undertime_mins": self.attendance.undertime_mins,
                "overtime_hours": self.attendance.overtime_hours,
                "night_diff_hours": self.attendance.night_diff_hours,
            },
            rates={
                "salary_rate_type": self.rates.salary_rate_type,
                "base_salary": self.rates.base_salary,
                "daily_rate": round_quantity(self.rates.daily_rate),
                "hourly_rate": round_quantity(self.rates.hourly_rate),
            },
            earnings=earnings,
            deductions={
                "tardiness": self.deductions.tardiness,
                "undertime": self.deductions.undertime,
                "sss": self.contributions.sss_employee,
                "phil_health": self.contributions.philhealth_employee,
                "pag_ibig": self.contributions.pagibig_employee,
                "pre_tax_recurring": self.deductions.pre_tax_recurring,
                "withholding_tax": self.deductions.withholding_tax,
                "recurring": self.deductions.recurring_total,
                "adjustments": self.deductions.adjustment_total,
                "loans": self.deductions.loans.total,
                "total_deductions": self.total_deductions,
                "net_pay": self.net_pay,
            },
        )


@dataclass
class RunCalculation:
    """Result of calculating an entire payroll run."""

    run_id: UUID
    results: list[EmployeeCalculation]
    trace: CalculationTrace
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    total_employer_contributions: Decimal = ZERO

    @property
    def total_employer_cost(self) -> Decimal:
        return round_currency(self.total_gross + self.total_employer_contributions)

    @property
    def processed_count(self) -> int:
        return self.trace.processed_employee_count

    @property
    def skipped_count(self) -> int:
        return self.trace.skipped_employee_count


class PayrollEngine:
    """Main payroll calculation engine.

    Calculation pipeline (stable order per employee):
    1) Derive daily/hourly/period rates from the salary record
    2) Fold attendance into a snapshot (skipped for bonus runs)
    3) Compose earnings: basic or bonus, recurring, adjustments, OT, ND, holiday
    4) Attendance penalties (tardiness/undertime)
    5) SSS, PhilHealth, Pag-IBIG, each gated by its timing policy
    6) Recurring deductions; pre-tax ones reduce the taxable income
    7) Withholding tax
    8) Manual adjustment deductions
    9) Loans, only while they fit in the remaining net
    10) Net = max(gross - deductions, 0)

    Every table and policy is read fresh for each calculation. The engine
    does not persist anything; see ``PayslipMaterializer``.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()
        self.tax_calculator = TaxCalculator(session, self.settings)
        self.aggregator = AttendanceAggregator()

    async def calculate_run(
        self,
        run: PayrollRun,
        adjustments: dict[UUID, AdjustmentCarryOver] | None = None,
    ) -> RunCalculation:
        """Calculate every eligible employee of the run.

        Raises NoEligibleEmployeesError when the scope matches nobody or when
        every matched employee was skipped.
        """
        ctx = await self.build_context(run)
        employees = await self.load_employees(run, ctx)
        if not employees:
            raise NoEligibleEmployeesError("No eligible employees found for payroll calculation.")

        inputs = await self.load_employee_inputs(run, ctx, employees, adjustments or {})
        return self.calculate(ctx, inputs)

    def calculate(self, ctx: RunContext, inputs: list[EmployeeInputs]) -> RunCalculation:
        """Pure part of the pipeline; no database access."""
        ctx.diagnostics.applicable_by_timing = {
            "sss": should_apply_by_timing(ctx.schedule.sss, ctx.pay_frequency, ctx.period_half),
            "phil_health": should_apply_by_timing(ctx.schedule.phil_health, ctx.pay_frequency, ctx.period_half),
            "pag_ibig": should_apply_by_timing(ctx.schedule.pag_ibig, ctx.pay_frequency, ctx.period_half),
            "withholding_tax": should_apply_by_timing(
                ctx.schedule.withholding_tax, ctx.pay_frequency, ctx.period_half
            ),
        }
        ctx.diagnostics.active_table_counts = ctx.tables.active_table_counts()

        trace = CalculationTrace(
            calculation_version=self.settings.engine_version,
            formula_policy=ctx.formula_policy(),
            statutory_diagnostics=ctx.diagnostics,
        )
        results: list[EmployeeCalculation] = []

        for employee_inputs in inputs:
            result = self.calculate_employee(ctx, employee_inputs)
            if result is None:
                trace.skipped_employee_count += 1
                continue
            results.append(result)
            trace.processed_employee_count += 1
            trace.employee_summaries.append(result.summary())
            trace.employee_traces.append(result.trace())

        if not results:
            raise NoEligibleEmployeesError(
                "No employees were processed. Ensure active salary records exist for all selected employees."
            )

        return RunCalculation(
            run_id=ctx.run_id,
            results=results,
            trace=trace,
            total_gross=round_currency(sum((r.gross_pay for r in results), ZERO)),
            total_deductions=round_currency(sum((r.total_deductions for r in results), ZERO)),
            total_net=round_currency(sum((r.net_pay for r in results), ZERO)),
            total_employer_contributions=round_currency(
                sum((r.contributions.employer_total for r in results), ZERO)
            ),
        )

    def calculate_employee(self, ctx: RunContext, inputs: EmployeeInputs) -> EmployeeCalculation | None:
        """Calculate one employee; None when the employee is skipped."""
        employee = inputs.employee
        salary = employee.salary
        if salary is None or not salary.is_active:
            logger.warning("Skipping employee %s: no active salary record", employee.employee_number)
            return None

        run_type = ctx.run_type
        is_bonus = run_type.is_bonus
        if (
            run_type == RunType.THIRTEENTH_MONTH
            and employee.employment_type is not None
            and not employee.employment_type.has_13th_month
        ):
            return None

        rates = compute_rates(
            salary.base_salary,
            salary.daily_rate,
            salary.hourly_rate,
            salary.monthly_divisor,
            salary.hours_per_day,
            ctx.periods_per_year,
            salary.salary_rate_type_code,
        )

        if is_bonus:
            attendance = AttendanceSnapshot.empty()
        else:
            attendance = self.aggregator.aggregate(
                AttendanceInputs(
                    dates_in_period=ctx.dates_in_period,
                    daily_rate=rates.daily_rate,
                    hourly_rate=rates.hourly_rate,
                    rest_days=employee.work_schedule.rest_days if employee.work_schedule else None,
                    holidays_by_date=ctx.holidays_by_date,
                    dtrs=inputs.dtrs,
                    approved_leaves=inputs.leaves,
                    approved_overtime_by_date=inputs.overtime_by_date,
                    overtime_rates=ctx.overtime_rates,
                    is_overtime_eligible=employee.is_overtime_eligible,
                    is_night_diff_eligible=employee.is_night_diff_eligible,
                )
            )

        # Basic pay or the bonus amount
        ytd_regular_basic = None
        if run_type == RunType.THIRTEENTH_MONTH:
            ytd_regular_basic = inputs.ytd.regular_basic
            basic_pay = thirteenth_month_pay(
                rates,
                inputs.ytd,
                ctx.thirteenth_month_formula,
                employee.hire_date,
                employee.separation_date,
                ctx.year_start,
                ctx.cutoff_end,
            )
        elif run_type == RunType.MID_YEAR_BONUS:
            basic_pay = mid_year_bonus_pay(rates)
        else:
            basic_pay = regular_basic_pay(rates, attendance)

        earnings = EarningsComposer(run_type, ctx.night_diff_rate, ctx.second_half).compose(
            rates,
            attendance,
            basic_pay,
            inputs.recurring_earnings,
            inputs.adjustments,
            ytd_regular_basic=ytd_regular_basic,
        )
        gross = earnings.gross_pay

        if is_bonus:
            tardiness = undertime = ZERO
        else:
            tardiness, undertime = attendance_deductions(attendance, rates, ctx.attendance_rules)

        contributions = self.tax_calculator.calculate_contributions(
            rates.base_salary,
            ctx.tables,
            ctx.schedule,
            ctx.pay_frequency,
            ctx.period_half,
            ctx.diagnostics,
            is_bonus_run=is_bonus,
        )

        allocator = DeductionAllocator(ctx.pay_frequency, ctx.period_half, ctx.second_half, is_bonus)
        net_base = allocator.net_base_for_recurring(gross, tardiness, undertime, contributions)
        recurring_lines = allocator.recurring_lines(
            inputs.recurring_deductions, basic_pay, gross, net_base
        )
        pre_tax_recurring = round_currency(
            sum((line.amount for line in recurring_lines if line.is_pre_tax), ZERO)
        )
        taxable_income = self.tax_calculator.taxable_income(gross, contributions, pre_tax_recurring)

        withholding_tax = self.tax_calculator.calculate_withholding_tax(
            gross_pay=gross,
            taxable_income=taxable_income,
            contributions=contributions,
            pre_tax_recurring=pre_tax_recurring,
            ytd=inputs.ytd,
            tables=ctx.tables,
            is_substituted_filing=employee.is_substituted_filing,
            applies=not is_bonus
            and should_apply_by_timing(ctx.schedule.withholding_tax, ctx.pay_frequency, ctx.period_half),
            diagnostics=ctx.diagnostics,
        )

        deductions = allocator.assemble(
            gross,
            tardiness,
            undertime,
            contributions,
            withholding_tax,
            recurring_lines,
            inputs.adjustments,
            inputs.amortizations,
        )
        net_pay = LineItemBuilder.calculate_net(gross, deductions.total_deductions)

        if is_bonus:
            working_days = ZERO
        elif ctx.period_working_days is not None:
            working_days = ctx.period_working_days
        else:
            working_days = Decimal(attendance.total_working_days)

        return EmployeeCalculation(
            employee_id=employee.id,
            employee_number=employee.employee_number,
            employee_name=employee.display_name,
            rates=rates,
            attendance=attendance,
            earnings=earnings,
            contributions=contributions,
            deductions=deductions,
            taxable_income=taxable_income,
            net_pay=net_pay,
            working_days=round_quantity(working_days),
            ytd=inputs.ytd,
            is_bonus_run=is_bonus,
        )

    # ===== Loaders =====

    async def build_context(self, run: PayrollRun) -> RunContext:
        """Read the period, pattern and every run-level policy table."""
        period = await self.session.get(PayPeriod, run.pay_period_id)
        pattern = await self.session.get(PayPeriodPattern, period.pattern_id)
        company = await self.session.get(Company, run.company_id)

        tables = await self.tax_calculator.load_tables(
            period.cutoff_start_date,
            period.cutoff_end_date,
            period.year,
            pattern.pay_frequency_code,
        )

        try:
            formula = ThirteenthMonthFormula(company.thirteenth_month_formula)
        except ValueError:
            formula = ThirteenthMonthFormula.BASIC_YTD_OR_PRORATED

        return RunContext(
            run_id=run.id,
            run_number=run.run_number,
            run_type=RunType(run.run_type_code),
            cutoff_start=period.cutoff_start_date,
            cutoff_end=period.cutoff_end_date,
            year=period.year,
            period_half=period.period_half,
            period_working_days=period.working_days,
            pay_frequency=pattern.pay_frequency_code,
            periods_per_year=pattern.periods_per_year,
            schedule=parse_statutory_schedule(pattern.statutory_deduction_schedule),
            tables=tables,
            night_diff_rate=await self._load_night_diff_rate(),
            thirteenth_month_formula=formula,
            holidays_by_date=await self._load_holidays(run.company_id, period),
            overtime_rates=await self._load_overtime_rates(period),
            attendance_rules=await self._load_attendance_rules(period),
        )

    async def load_employees(self, run: PayrollRun, ctx: RunContext) -> list[Employee]:
        """Employees in scope on the period's pattern.

        13th-month runs also include employees separated during the year.
        """
        period = await self.session.get(PayPeriod, run.pay_period_id)
        scope = RunScope.from_dict(run.scope)

        query = (
            eligible_employee_query(run.company_id, period.pattern_id, scope, ctx.run_type, ctx.year)
            .options(
                selectinload(Employee.salary),
                selectinload(Employee.work_schedule),
                selectinload(Employee.employment_type),
                selectinload(Employee.earnings).selectinload(EmployeeEarning.earning_type),
                selectinload(Employee.recurring_deductions).selectinload(RecurringDeduction.deduction_type),
            )
            .order_by(Employee.employee_number)
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def load_employee_inputs(
        self,
        run: PayrollRun,
        ctx: RunContext,
        employees: list[Employee],
        adjustments: dict[UUID, AdjustmentCarryOver],
    ) -> list[EmployeeInputs]:
        ids = [e.id for e in employees]
        dtrs = await self._load_dtrs(ids, ctx)
        leaves = await self._load_leaves(ids, ctx)
        overtime = await self._load_overtime(ids, ctx)
        amortizations = await self._load_due_amortizations(ids, ctx)
        ytd = await self._load_ytd(run, ids, ctx)

        inputs = []
        for employee in employees:
            inputs.append(
                EmployeeInputs(
                    employee=employee,
                    dtrs=dtrs.get(employee.id, []),
                    leaves=leaves.get(employee.id, []),
                    overtime_by_date=overtime.get(employee.id, {}),
                    recurring_earnings=self._recurring_earnings(employee, ctx),
                    recurring_deductions=self._recurring_deductions(employee, ctx),
                    amortizations=amortizations.get(employee.id, []),
                    adjustments=adjustments.get(employee.id, AdjustmentCarryOver()),
                    ytd=ytd.get(employee.id, EmployeeYtd()),
                )
            )
        return inputs

    async def load_adjustment_carry_over(self, run_id: UUID) -> dict[UUID, AdjustmentCarryOver]:
        """Manual adjustment lines on the run's current payslips, keyed by employee.

        Must be read before the payslips are deleted for regeneration.
        """
        earning_rows = await self.session.execute(
            select(PayslipEarning, Payslip.employee_id)
            .join(Payslip, PayslipEarning.payslip_id == Payslip.id)
            .join(EarningType, PayslipEarning.earning_type_id == EarningType.id)
            .where(Payslip.payroll_run_id == run_id, EarningType.code == "ADJUSTMENT")
            .order_by(Payslip.employee_id, PayslipEarning.line_number)
        )
        deduction_rows = await self.session.execute(
            select(PayslipDeduction, Payslip.employee_id)
            .join(Payslip, PayslipDeduction.payslip_id == Payslip.id)
            .outerjoin(DeductionType, PayslipDeduction.deduction_type_id == DeductionType.id)
            .where(
                Payslip.payroll_run_id == run_id,
                or_(
                    PayslipDeduction.reference_type == ReferenceType.ADJUSTMENT.value,
                    DeductionType.code == "ADJUSTMENT",
                ),
            )
            .order_by(Payslip.employee_id, PayslipDeduction.line_number)
        )

        earnings: dict[UUID, list[EarningLine]] = defaultdict(list)
        for line, employee_id in earning_rows.all():
            earnings[employee_id].append(
                EarningLine(
                    type_code="ADJUSTMENT",
                    description=line.description or "Manual Adjustment",
                    amount=to_decimal(line.amount),
                    is_taxable=line.is_taxable,
                )
            )

        deductions: dict[UUID, list[DeductionLine]] = defaultdict(list)
        for line, employee_id in deduction_rows.all():
            deductions[employee_id].append(
                DeductionLine(
                    type_code="ADJUSTMENT",
                    description=line.description or "Manual Adjustment",
                    amount=to_decimal(line.amount),
                    reference_type=ReferenceType(line.reference_type or ReferenceType.ADJUSTMENT.value),
                )
            )

        return {
            employee_id: AdjustmentCarryOver(
                earnings=tuple(earnings.get(employee_id, ())),
                deductions=tuple(deductions.get(employee_id, ())),
            )
            for employee_id in set(earnings) | set(deductions)
        }

    async def _load_night_diff_rate(self) -> Decimal:
        config = await self.session.get(SystemConfig, "NIGHT_DIFF_RATE")
        return parse_night_diff_rate(
            config.value if config else None, self.settings.default_night_diff_rate
        )

    async def _load_holidays(self, company_id: UUID, period: PayPeriod) -> dict[date, HolidayInfo]:
        result = await self.session.execute(
            select(Holiday).where(
                Holiday.holiday_date.between(period.cutoff_start_date, period.cutoff_end_date),
                Holiday.is_active.is_(True),
                or_(Holiday.company_id.is_(None), Holiday.company_id == company_id),
            )
        )
        return {
            h.holiday_date: HolidayInfo(holiday_type=h.holiday_type_code, pay_multiplier=to_decimal(h.pay_multiplier))
            for h in result.scalars().all()
        }

    async def _load_overtime_rates(self, period: PayPeriod) -> dict[str, Decimal]:
        """Newest active multiplier per overtime type."""
        result = await self.session.execute(
            select(OvertimeRate)
            .where(
                OvertimeRate.is_active.is_(True),
                OvertimeRate.effective_from <= period.cutoff_end_date,
                or_(OvertimeRate.effective_to.is_(None), OvertimeRate.effective_to >= period.cutoff_start_date),
            )
            .order_by(OvertimeRate.effective_from.desc())
        )
        rates: dict[str, Decimal] = {}
        for rate in result.scalars().all():
            rates.setdefault(rate.overtime_type_code, to_decimal(rate.rate_multiplier))
        return rates

    async def _load_attendance_rules(self, period: PayPeriod) -> dict[str, AttendanceRule]:
        """Newest active rule per type (TARDINESS, UNDERTIME)."""
        result = await self.session.execute(
            select(AttendanceDeductionRule)
            .where(
                AttendanceDeductionRule.is_active.is_(True),
                AttendanceDeductionRule.effective_from <= period.cutoff_end_date,
                or_(
                    AttendanceDeductionRule.effective_to.is_(None),
                    AttendanceDeductionRule.effective_to >= period.cutoff_start_date,
                ),
            )
            .order_by(AttendanceDeductionRule.effective_from.desc())
        )
        rules: dict[str, AttendanceRule] = {}
        for rule in result.scalars().all():
            rules.setdefault(
                rule.rule_type,
                AttendanceRule(calculation_basis=rule.calculation_basis, threshold_mins=rule.threshold_mins),
            )
        return rules

    async def _load_dtrs(self, ids: list[UUID], ctx: RunContext) -> dict[UUID, list[DtrEntry]]:
        """Approved attendance rows; validation rejects runs with unapproved rows."""
        result = await self.session.execute(
            select(DailyTimeRecord).where(
                DailyTimeRecord.employee_id.in_(ids),
                DailyTimeRecord.attendance_date.between(ctx.cutoff_start, ctx.cutoff_end),
                DailyTimeRecord.approval_status_code == "APPROVED",
            )
        )
        by_employee: dict[UUID, list[DtrEntry]] = defaultdict(list)
        for row in result.scalars().all():
            by_employee[row.employee_id].append(
                DtrEntry(
                    attendance_date=row.attendance_date,
                    attendance_status=row.attendance_status,
                    hours_worked=to_decimal(row.hours_worked),
                    overtime_hours=to_decimal(row.overtime_hours),
                    night_diff_hours=to_decimal(row.night_diff_hours),
                    tardiness_mins=row.tardiness_mins or 0,
                    undertime_mins=row.undertime_mins or 0,
                    remarks=row.remarks,
                )
            )
        return by_employee

    async def _load_leaves(self, ids: list[UUID], ctx: RunContext) -> dict[UUID, list[LeaveInterval]]:
        result = await self.session.execute(
            select(LeaveRequest)
            .options(selectinload(LeaveRequest.leave_type))
            .where(
                LeaveRequest.employee_id.in_(ids),
                LeaveRequest.status_code == "APPROVED",
                LeaveRequest.start_date <= ctx.cutoff_end,
                LeaveRequest.end_date >= ctx.cutoff_start,
            )
        )
        by_employee: dict[UUID, list[LeaveInterval]] = defaultdict(list)
        for leave in result.scalars().all():
            by_employee[leave.employee_id].append(
                LeaveInterval(
                    start_date=leave.start_date,
                    end_date=leave.end_date,
                    is_half_day=leave.is_half_day,
                    is_paid=leave.leave_type.is_paid if leave.leave_type else False,
                )
            )
        return by_employee

    async def _load_overtime(self, ids: list[UUID], ctx: RunContext) -> dict[UUID, dict[date, Decimal]]:
        result = await self.session.execute(
            select(OvertimeRequest).where(
                OvertimeRequest.employee_id.in_(ids),
                OvertimeRequest.status_code == "APPROVED",
                OvertimeRequest.overtime_date.between(ctx.cutoff_start, ctx.cutoff_end),
            )
        )
        by_employee: dict[UUID, dict[date, Decimal]] = defaultdict(dict)
        for request in result.scalars().all():
            per_date = by_employee[request.employee_id]
            current = per_date.get(request.overtime_date, ZERO)
            per_date[request.overtime_date] = round_quantity(current + to_decimal(request.hours))
        return by_employee

    async def _load_due_amortizations(
        self, ids: list[UUID], ctx: RunContext
    ) -> dict[UUID, list[DueAmortization]]:
        """Unpaid installments due by the cutoff end, priority then due date."""
        result = await self.session.execute(
            select(LoanAmortization, Loan.employee_id, Loan.loan_number, LoanType.deduction_priority)
            .join(Loan, LoanAmortization.loan_id == Loan.id)
            .join(LoanType, Loan.loan_type_id == LoanType.id)
            .where(
                Loan.employee_id.in_(ids),
                Loan.status_code == "ACTIVE",
                LoanAmortization.due_date <= ctx.cutoff_end,
                LoanAmortization.is_paid.is_(False),
            )
            .order_by(LoanType.deduction_priority, LoanAmortization.due_date)
        )
        by_employee: dict[UUID, list[DueAmortization]] = defaultdict(list)
        for amortization, employee_id, loan_number, priority in result.all():
            by_employee[employee_id].append(
                DueAmortization(
                    amortization_id=amortization.id,
                    loan_id=amortization.loan_id,
                    loan_number=loan_number,
                    due_date=amortization.due_date,
                    deduction_priority=priority,
                    total_payment=to_decimal(amortization.total_payment),
                    principal_amount=to_decimal(amortization.principal_amount),
                    interest_amount=to_decimal(amortization.interest_amount),
                )
            )
        return by_employee

    async def _load_ytd(self, run: PayrollRun, ids: list[UUID], ctx: RunContext) -> dict[UUID, EmployeeYtd]:
        """Year-to-date sums.

        "Paid" figures come from PAID runs of the same year whose cutoff ended
        before this period started. The 13th-month base also counts regular
        runs still in review, up to this period's cutoff end.
        """

        def paid_before_period():
            return (
                PayrollRun.company_id == run.company_id,
                PayrollRun.status_code == "PAID",
                PayPeriod.year == ctx.year,
                PayPeriod.cutoff_end_date < ctx.cutoff_start,
            )

        def payslip_sums(*columns):
            return (
                select(Payslip.employee_id, *[func.sum(c) for c in columns])
                .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.id)
                .join(PayPeriod, PayrollRun.pay_period_id == PayPeriod.id)
                .where(Payslip.employee_id.in_(ids))
                .group_by(Payslip.employee_id)
            )

        paid = await self.session.execute(
            payslip_sums(Payslip.gross_pay, Payslip.net_pay, Payslip.withholding_tax).where(*paid_before_period())
        )
        bonus = await self.session.execute(
            payslip_sums(Payslip.gross_pay).where(
                *paid_before_period(), PayrollRun.run_type_code.in_(BONUS_RUN_TYPES)
            )
        )
        regular = await self.session.execute(
            payslip_sums(Payslip.basic_pay, Payslip.gross_pay).where(
                PayrollRun.company_id == run.company_id,
                PayrollRun.run_type_code == RunType.REGULAR.value,
                PayrollRun.status_code.in_(THIRTEENTH_MONTH_SOURCE_STATUSES),
                PayPeriod.year == ctx.year,
                PayPeriod.cutoff_end_date <= ctx.cutoff_end,
            )
        )
        pre_tax = await self.session.execute(
            select(Payslip.employee_id, func.sum(PayslipDeduction.amount))
            .join(Payslip, PayslipDeduction.payslip_id == Payslip.id)
            .join(DeductionType, PayslipDeduction.deduction_type_id == DeductionType.id)
            .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.id)
            .join(PayPeriod, PayrollRun.pay_period_id == PayPeriod.id)
            .where(
                Payslip.employee_id.in_(ids),
                *paid_before_period(),
                PayrollRun.run_type_code == RunType.REGULAR.value,
                PayslipDeduction.reference_type == ReferenceType.RECURRING.value,
                DeductionType.is_pre_tax.is_(True),
            )
            .group_by(Payslip.employee_id)
        )
        contributions = await self.session.execute(
            select(EmployeeYTDContribution).where(
                EmployeeYTDContribution.employee_id.in_(ids),
                EmployeeYTDContribution.year == ctx.year,
            )
        )

        values: dict[UUID, dict[str, Decimal]] = defaultdict(dict)
        for employee_id, gross, net, tax in paid.all():
            values[employee_id].update(
                gross_pay=to_decimal(gross), net_pay=to_decimal(net), withholding_tax=to_decimal(tax)
            )
        for employee_id, gross in bonus.all():
            values[employee_id]["bonus_gross"] = to_decimal(gross)
        for employee_id, basic, gross in regular.all():
            values[employee_id].update(regular_basic=to_decimal(basic), regular_gross=to_decimal(gross))
        for employee_id, amount in pre_tax.all():
            values[employee_id]["pre_tax_recurring"] = round_currency(to_decimal(amount))

        contribution_fields = {"SSS": "sss", "PHILHEALTH": "philhealth", "PAGIBIG": "pagibig"}
        for row in contributions.scalars().all():
            field_name = contribution_fields.get(row.contribution_type)
            if field_name:
                values[row.employee_id][field_name] = to_decimal(row.total_employee)

        return {employee_id: EmployeeYtd(**fields) for employee_id, fields in values.items()}

    @staticmethod
    def _recurring_earnings(employee: Employee, ctx: RunContext) -> list[RecurringEarningInput]:
        active = [
            e
            for e in employee.earnings
            if e.is_active
            and e.effective_from <= ctx.cutoff_end
            and (e.effective_to is None or e.effective_to >= ctx.cutoff_start)
        ]
        return [
            RecurringEarningInput(
                earning_type_id=e.earning_type_id,
                name=e.earning_type.name,
                amount=to_decimal(e.amount),
                frequency=e.frequency,
                proration_rule=e.proration_rule,
                is_taxable=(
                    e.is_taxable_override if e.is_taxable_override is not None else e.earning_type.is_taxable
                ),
            )
            for e in sorted(active, key=lambda e: (e.effective_from, str(e.id)))
        ]

    @staticmethod
    def _recurring_deductions(employee: Employee, ctx: RunContext) -> list[RecurringDeductionInput]:
        active = [
            d
            for d in employee.recurring_deductions
            if d.status_code == "ACTIVE"
            and d.effective_from <= ctx.cutoff_end
            and (d.effective_to is None or d.effective_to >= ctx.cutoff_start)
        ]
        return [
            RecurringDeductionInput(
                recurring_id=d.id,
                deduction_type_id=d.deduction_type_id,
                description=d.description or d.deduction_type.name,
                amount=to_decimal(d.amount),
                is_percentage=d.is_percentage,
                percentage_rate=to_decimal(d.percentage_rate) if d.percentage_rate is not None else None,
                frequency=d.frequency,
                pay_period_applicability=d.deduction_type.pay_period_applicability,
                percentage_base=d.deduction_type.percentage_base,
                max_deduction_limit=(
                    to_decimal(d.deduction_type.max_deduction_limit)
                    if d.deduction_type.max_deduction_limit is not None
                    else None
                ),
                is_pre_tax=d.deduction_type.is_pre_tax,
            )
            for d in sorted(active, key=lambda d: (d.effective_from, str(d.id)))
        ]
