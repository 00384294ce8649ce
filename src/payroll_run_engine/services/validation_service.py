"""Pre-calculation data checks for a payroll run (Validate step)."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_run_engine.calculators.engine import eligible_employee_query
from payroll_run_engine.calculators.numeric import date_range, day_name, round_currency, to_decimal
from payroll_run_engine.calculators.policies import (
    parse_rest_days,
    parse_statutory_schedule,
    should_apply_by_timing,
)
from payroll_run_engine.calculators.tax_calculator import TaxCalculator
from payroll_run_engine.calculators.types import ZERO, AttendanceStatus, RunScope, RunType, to_jsonable
from payroll_run_engine.config import Settings, get_settings
from payroll_run_engine.models import (
    DailyTimeRecord,
    Employee,
    Holiday,
    LeaveRequest,
    OvertimeRequest,
    PayPeriod,
    PayPeriodPattern,
    PayrollRun,
)
from payroll_run_engine.services.state_machine import ACTIVE_STATUSES, RunStatus, StepName

logger = logging.getLogger(__name__)

UNRESOLVED_LEAVE_STATUSES = ("DRAFT", "PENDING", "SUPERVISOR_APPROVED", "FOR_CANCELLATION")
PENDING_OVERTIME_STATUSES = ("PENDING", "SUPERVISOR_APPROVED")

CONTRIBUTION_LABELS = {
    "sss": "SSS",
    "phil_health": "PhilHealth",
    "pag_ibig": "Pag-IBIG",
    "withholding_tax": "withholding tax",
}


@dataclass
class EmployeeDtrSummary:
    employee_id: str
    employee_number: str
    employee_name: str
    total_days_in_period: int
    missing_days: int = 0
    incomplete_days: int = 0
    absent_days: int = 0
    present_days: int = 0
    overtime_hours: Decimal = ZERO
    tardiness_mins: int = 0
    undertime_mins: int = 0


@dataclass
class ValidationReport:
    """Result of validating a run; stored whole as the step 2 notes."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    employee_count: int = 0
    diagnostics: dict[str, Any] = field(default_factory=dict)
    dtr_summary: dict[str, Any] = field(default_factory=dict)
    pre_payroll_report: dict[str, int] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(asdict(self))


async def count_eligible_employees(
    session: AsyncSession,
    company_id: UUID,
    pattern_id: UUID,
    scope: RunScope,
    run_type: RunType | str = RunType.REGULAR,
    year: int | None = None,
) -> int:
    subquery = eligible_employee_query(company_id, pattern_id, scope, run_type, year).subquery()
    result = await session.execute(select(func.count()).select_from(subquery))
    return result.scalar_one()


class ValidationService:
    """Checks data completeness before calculation.

    Errors block progression to Calculate; warnings are informational.
    Nothing here mutates the database.
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def validate(self, run: PayrollRun) -> ValidationReport:
        period = await self.session.get(PayPeriod, run.pay_period_id)
        pattern = await self.session.get(PayPeriodPattern, period.pattern_id)
        report = ValidationReport()

        if period.status_code != "OPEN":
            report.errors.append("Pay period is locked or not open.")

        concurrent = await self.session.execute(
            select(PayrollRun.run_number, PayrollRun.status_code)
            .where(
                PayrollRun.pay_period_id == run.pay_period_id,
                PayrollRun.company_id == run.company_id,
                PayrollRun.id != run.id,
                PayrollRun.status_code.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(PayrollRun.created_at)
        )
        other = concurrent.first()
        if other is not None:
            report.errors.append(
                f"Concurrent payroll run detected for this period: {other.run_number} ({other.status_code})."
            )

        first_step = next(
            (s for s in run.process_steps if s.step_number == StepName.CREATE_RUN.number), None
        )
        if first_step is None or not first_step.is_completed:
            report.errors.append("Previous payroll steps are incomplete.")

        if run.status_code not in (RunStatus.DRAFT.value, RunStatus.VALIDATING.value):
            report.warnings.append(
                f"Run status is currently {run.status_code}. Re-validation may overwrite prior notes."
            )

        scope = RunScope.from_dict(run.scope)
        result = await self.session.execute(
            eligible_employee_query(run.company_id, period.pattern_id, scope, run.run_type_code, period.year)
            .options(selectinload(Employee.salary), selectinload(Employee.work_schedule))
            .order_by(Employee.employee_number)
        )
        employees = list(result.scalars().all())
        report.employee_count = len(employees)

        if not employees:
            report.errors.append("No eligible employees found for this payroll scope.")

        for employee in employees:
            if employee.salary is None or not employee.salary.is_active:
                report.errors.append(f"Employee {employee.employee_number} has no active salary record.")
            if employee.work_schedule is None:
                report.warnings.append(f"Employee {employee.employee_number} has no assigned work schedule.")
            if employee.pay_period_pattern_id != period.pattern_id:
                report.warnings.append(
                    f"Employee {employee.employee_number} pay period pattern does not match the run pattern."
                )

        await self._check_attendance(report, run, period, employees)
        await self._check_statutory_coverage(report, period, pattern)

        logger.info(
            "Validated run %s: %d error(s), %d warning(s), %d employee(s)",
            run.run_number,
            len(report.errors),
            len(report.warnings),
            report.employee_count,
        )
        return report

    async def _check_attendance(
        self,
        report: ValidationReport,
        run: PayrollRun,
        period: PayPeriod,
        employees: list[Employee],
    ) -> None:
        ids = [e.id for e in employees]
        start, end = period.cutoff_start_date, period.cutoff_end_date

        holidays = await self.session.execute(
            select(Holiday.holiday_date).where(
                Holiday.holiday_date.between(start, end),
                Holiday.is_active.is_(True),
                or_(Holiday.company_id.is_(None), Holiday.company_id == run.company_id),
            )
        )
        holiday_dates = set(holidays.scalars().all())

        approved_leaves = await self.session.execute(
            select(LeaveRequest.employee_id, LeaveRequest.start_date, LeaveRequest.end_date).where(
                LeaveRequest.employee_id.in_(ids),
                LeaveRequest.status_code == "APPROVED",
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        leaves_by_employee: dict[UUID, list[tuple[date, date]]] = defaultdict(list)
        for employee_id, leave_start, leave_end in approved_leaves.all():
            leaves_by_employee[employee_id].append((leave_start, leave_end))

        unresolved = await self.session.execute(
            select(func.count(LeaveRequest.id)).where(
                LeaveRequest.employee_id.in_(ids),
                LeaveRequest.status_code.in_(UNRESOLVED_LEAVE_STATUSES),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
        )
        unresolved_leave_count = unresolved.scalar_one()

        overtime_rows = await self.session.execute(
            select(OvertimeRequest).where(
                OvertimeRequest.employee_id.in_(ids),
                OvertimeRequest.overtime_date.between(start, end),
            )
        )
        approved_overtime: dict[tuple[UUID, date], Decimal] = defaultdict(lambda: ZERO)
        pending_overtime_count = 0
        for request in overtime_rows.scalars().all():
            if request.status_code == "APPROVED":
                key = (request.employee_id, request.overtime_date)
                approved_overtime[key] = round_currency(approved_overtime[key] + to_decimal(request.hours))
            if request.status_code in PENDING_OVERTIME_STATUSES:
                pending_overtime_count += 1

        dtr_rows = await self.session.execute(
            select(DailyTimeRecord).where(
                DailyTimeRecord.employee_id.in_(ids),
                DailyTimeRecord.attendance_date.between(start, end),
                DailyTimeRecord.approval_status_code == "APPROVED",
            )
        )
        dtrs_by_employee: dict[UUID, dict[date, DailyTimeRecord]] = defaultdict(dict)
        for row in dtr_rows.scalars().all():
            dtrs_by_employee[row.employee_id][row.attendance_date] = row

        non_approved = await self.session.execute(
            select(func.count(DailyTimeRecord.id)).where(
                DailyTimeRecord.employee_id.in_(ids),
                DailyTimeRecord.attendance_date.between(start, end),
                DailyTimeRecord.approval_status_code != "APPROVED",
            )
        )
        non_approved_count = non_approved.scalar_one()
        if non_approved_count > 0:
            noun = "entry is" if non_approved_count == 1 else "entries are"
            report.errors.append(
                f"{non_approved_count} DTR {noun} pending/rejected. "
                "Approve all DTR records before payroll validation."
            )

        dates = date_range(start, end)
        summaries: list[EmployeeDtrSummary] = []
        overtime_without_approval = 0

        for employee in employees:
            dtr_by_date = dtrs_by_employee.get(employee.id, {})
            leaves = leaves_by_employee.get(employee.id, [])
            rest_days = parse_rest_days(employee.work_schedule.rest_days if employee.work_schedule else None)
            summary = EmployeeDtrSummary(
                employee_id=str(employee.id),
                employee_number=employee.employee_number,
                employee_name=employee.display_name,
                total_days_in_period=len(dates),
            )

            for day in dates:
                dtr = dtr_by_date.get(day)
                on_leave = any(leave_start <= day <= leave_end for leave_start, leave_end in leaves)
                if dtr is None:
                    if day not in holiday_dates and day_name(day) not in rest_days and not on_leave:
                        summary.missing_days += 1
                    continue

                if (dtr.actual_time_in is None) != (dtr.actual_time_out is None):
                    summary.incomplete_days += 1
                if dtr.attendance_status == AttendanceStatus.ABSENT:
                    summary.absent_days += 1
                if dtr.attendance_status in (AttendanceStatus.PRESENT, AttendanceStatus.HOLIDAY):
                    summary.present_days += 1

                summary.overtime_hours += approved_overtime.get((employee.id, day), ZERO)
                summary.tardiness_mins += dtr.tardiness_mins or 0
                summary.undertime_mins += dtr.undertime_mins or 0

                if to_decimal(dtr.overtime_hours) > 0 and (employee.id, day) not in approved_overtime:
                    overtime_without_approval += 1

            summary.overtime_hours = round_currency(summary.overtime_hours)
            summaries.append(summary)

            if summary.missing_days > 0:
                report.warnings.append(
                    f"Employee {employee.employee_number} has {summary.missing_days} missing DTR day(s)."
                )
            if summary.incomplete_days > 0:
                report.warnings.append(
                    f"Employee {employee.employee_number} has {summary.incomplete_days} incomplete DTR day(s)."
                )

        if unresolved_leave_count > 0:
            report.warnings.append(
                f"{unresolved_leave_count} unresolved leave request(s) overlap the payroll period."
            )
        if pending_overtime_count > 0:
            report.warnings.append(
                f"{pending_overtime_count} pending overtime request(s) overlap the payroll period."
            )
        if overtime_without_approval > 0:
            noun = "entry" if overtime_without_approval == 1 else "entries"
            report.warnings.append(
                f"{overtime_without_approval} DTR overtime {noun} have no approved overtime request."
            )

        report.dtr_summary = {
            "employees_with_missing_dtr": sum(1 for s in summaries if s.missing_days > 0),
            "employees_with_incomplete_dtr": sum(1 for s in summaries if s.incomplete_days > 0),
            "total_missing_days": sum(s.missing_days for s in summaries),
            "total_incomplete_days": sum(s.incomplete_days for s in summaries),
            "total_absent_days": sum(s.absent_days for s in summaries),
            "total_present_days": sum(s.present_days for s in summaries),
            "total_overtime_hours": round_currency(sum((s.overtime_hours for s in summaries), ZERO)),
            "details": [asdict(s) for s in summaries],
        }
        report.pre_payroll_report = {
            "missing_work_schedule_count": sum(1 for e in employees if e.work_schedule is None),
            "unresolved_leave_count": unresolved_leave_count,
            "overtime_without_approval_count": overtime_without_approval,
            "pending_overtime_request_count": pending_overtime_count,
        }

    async def _check_statutory_coverage(
        self, report: ValidationReport, period: PayPeriod, pattern: PayPeriodPattern
    ) -> None:
        schedule = parse_statutory_schedule(pattern.statutory_deduction_schedule)
        tables = await TaxCalculator(self.session, self.settings).load_tables(
            period.cutoff_start_date,
            period.cutoff_end_date,
            period.year,
            pattern.pay_frequency_code,
        )
        counts = tables.active_table_counts()
        timings = {
            "sss": schedule.sss,
            "phil_health": schedule.phil_health,
            "pag_ibig": schedule.pag_ibig,
            "withholding_tax": schedule.withholding_tax,
        }
        applicable = {
            name: should_apply_by_timing(timing, pattern.pay_frequency_code, period.period_half)
            for name, timing in timings.items()
        }

        for name, applies in applicable.items():
            if applies and counts[name] == 0:
                report.warnings.append(
                    f"No active {CONTRIBUTION_LABELS[name]} table matched the cutoff; "
                    "the contribution will be treated as zero."
                )

        report.diagnostics = {
            "schedule": {name: timing.value for name, timing in timings.items()},
            "applicable_by_timing": applicable,
            "active_table_counts": counts,
        }
