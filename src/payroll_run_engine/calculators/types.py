"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ZERO = Decimal("0")


class RunType(str, Enum):
    """Payroll run types."""

    REGULAR = "REGULAR"
    THIRTEENTH_MONTH = "THIRTEENTH_MONTH"
    MID_YEAR_BONUS = "MID_YEAR_BONUS"

    @property
    def is_bonus(self) -> bool:
        return self in (RunType.THIRTEENTH_MONTH, RunType.MID_YEAR_BONUS)


class PayFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    SEMI_MONTHLY = "SEMI_MONTHLY"
    BI_WEEKLY = "BI_WEEKLY"
    WEEKLY = "WEEKLY"


class PeriodHalf(str, Enum):
    FIRST = "FIRST"
    SECOND = "SECOND"


class StatutoryTiming(str, Enum):
    """When a statutory contribution is deducted within a month."""

    FIRST_HALF = "FIRST_HALF"
    SECOND_HALF = "SECOND_HALF"
    EVERY_PERIOD = "EVERY_PERIOD"
    DISABLED = "DISABLED"


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    ON_LEAVE = "ON_LEAVE"
    REST_DAY = "REST_DAY"
    HOLIDAY = "HOLIDAY"


class HolidayType(str, Enum):
    REGULAR = "REGULAR"
    SPECIAL_NON_WORKING = "SPECIAL_NON_WORKING"
    SPECIAL_WORKING = "SPECIAL_WORKING"


class OvertimeType(str, Enum):
    REGULAR_OT = "REGULAR_OT"
    REST_DAY_OT = "REST_DAY_OT"
    REGULAR_HOLIDAY_OT = "REGULAR_HOLIDAY_OT"
    SPECIAL_HOLIDAY_OT = "SPECIAL_HOLIDAY_OT"
    REST_DAY_HOLIDAY_OT = "REST_DAY_HOLIDAY_OT"


class AttendanceDeductionBasis(str, Enum):
    PER_MINUTE = "PER_MINUTE"
    PER_15_MINS = "PER_15_MINS"
    PER_30_MINS = "PER_30_MINS"
    PER_HOUR = "PER_HOUR"
    DAILY_RATE = "DAILY_RATE"


class ReferenceType(str, Enum):
    """Source of a payslip deduction line."""

    ATTENDANCE = "ATTENDANCE"
    GOVERNMENT = "GOVERNMENT"
    TAX = "TAX"
    RECURRING = "RECURRING"
    ADJUSTMENT = "ADJUSTMENT"
    LOAN = "LOAN"


class ThirteenthMonthFormula(str, Enum):
    BASIC_YTD_OR_PRORATED = "BASIC_YTD_OR_PRORATED"
    GROSS_EARNED_TO_DATE = "GROSS_EARNED_TO_DATE"


# ===== Run-level value objects =====


@dataclass(frozen=True)
class RunScope:
    """Optional employee filters for a run; empty tuples mean no filter."""

    department_ids: tuple[UUID, ...] = ()
    branch_ids: tuple[UUID, ...] = ()
    employee_ids: tuple[UUID, ...] = ()

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "department_ids": [str(v) for v in self.department_ids],
            "branch_ids": [str(v) for v in self.branch_ids],
            "employee_ids": [str(v) for v in self.employee_ids],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RunScope:
        """Parse a stored scope, tolerating missing or malformed keys."""
        if not isinstance(data, dict):
            return cls()

        def _ids(key: str) -> tuple[UUID, ...]:
            values = data.get(key) or []
            if not isinstance(values, list):
                return ()
            return tuple(UUID(str(v)) for v in values)

        return cls(
            department_ids=_ids("department_ids"),
            branch_ids=_ids("branch_ids"),
            employee_ids=_ids("employee_ids"),
        )


@dataclass(frozen=True)
class StatutorySchedule:
    """Per-company timing policy for each statutory contribution."""

    sss: StatutoryTiming = StatutoryTiming.SECOND_HALF
    phil_health: StatutoryTiming = StatutoryTiming.FIRST_HALF
    pag_ibig: StatutoryTiming = StatutoryTiming.FIRST_HALF
    withholding_tax: StatutoryTiming = StatutoryTiming.EVERY_PERIOD


@dataclass
class StatutoryDiagnostics:
    """Applied / skipped / no-match counters per contribution."""

    sss_applied: int = 0
    phil_health_applied: int = 0
    pag_ibig_applied: int = 0
    withholding_tax_applied: int = 0
    sss_skipped_by_timing: int = 0
    phil_health_skipped_by_timing: int = 0
    pag_ibig_skipped_by_timing: int = 0
    withholding_tax_skipped_by_timing: int = 0
    sss_no_bracket_match: int = 0
    pag_ibig_no_bracket_match: int = 0
    phil_health_no_active_config: int = 0
    withholding_tax_no_bracket_match: int = 0
    applicable_by_timing: dict[str, bool] = field(default_factory=dict)
    active_table_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ===== Attendance inputs/outputs =====


@dataclass(frozen=True)
class HolidayInfo:
    holiday_type: str
    pay_multiplier: Decimal


@dataclass(frozen=True)
class DtrEntry:
    """One day of attendance, reduced to what the aggregator needs."""

    attendance_date: date
    attendance_status: str
    hours_worked: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    night_diff_hours: Decimal = ZERO
    tardiness_mins: int = 0
    undertime_mins: int = 0
    remarks: str | None = None


@dataclass(frozen=True)
class LeaveInterval:
    start_date: date
    end_date: date
    is_half_day: bool
    is_paid: bool

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class AttendanceRule:
    calculation_basis: str
    threshold_mins: int = 0


@dataclass(frozen=True)
class AttendanceSnapshot:
    """Per-employee, per-period attendance fold."""

    total_working_days: int = 0
    total_payable_days: Decimal = ZERO
    unpaid_absences: Decimal = ZERO
    tardiness_mins: int = 0
    undertime_mins: int = 0
    overtime_hours: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    night_diff_hours: Decimal = ZERO
    holiday_premium_pay: Decimal = ZERO
    hours_worked: Decimal = ZERO

    @classmethod
    def empty(cls) -> AttendanceSnapshot:
        return cls()


# ===== Earnings/deductions =====


@dataclass(frozen=True)
class EmployeeRates:
    base_salary: Decimal
    daily_rate: Decimal
    hourly_rate: Decimal
    hours_per_day: Decimal
    period_base_salary: Decimal
    salary_rate_type: str


@dataclass
class EarningLine:
    """Candidate earning line; type_code resolves to an EarningType at persistence."""

    type_code: str
    description: str
    amount: Decimal
    is_taxable: bool = True
    earning_type_id: UUID | None = None
    hours: Decimal | None = None
    days: Decimal | None = None
    rate: Decimal | None = None


@dataclass
class DeductionLine:
    """Candidate deduction line; type_code resolves to a DeductionType at persistence."""

    type_code: str
    description: str
    amount: Decimal
    reference_type: ReferenceType | None = None
    reference_id: UUID | None = None
    employer_share: Decimal | None = None
    is_pre_tax: bool = False
    deduction_type_id: UUID | None = None


@dataclass(frozen=True)
class RecurringEarningInput:
    earning_type_id: UUID
    name: str
    amount: Decimal
    frequency: str
    proration_rule: str | None
    is_taxable: bool


@dataclass(frozen=True)
class RecurringDeductionInput:
    recurring_id: UUID
    deduction_type_id: UUID
    description: str
    amount: Decimal
    is_percentage: bool
    percentage_rate: Decimal | None
    frequency: str
    pay_period_applicability: str | None
    percentage_base: str | None
    max_deduction_limit: Decimal | None
    is_pre_tax: bool


@dataclass(frozen=True)
class AdjustmentCarryOver:
    """Manual adjustment lines from a previous pass of the same run."""

    earnings: tuple[EarningLine, ...] = ()
    deductions: tuple[DeductionLine, ...] = ()


@dataclass(frozen=True)
class DueAmortization:
    amortization_id: UUID
    loan_id: UUID
    loan_number: str
    due_date: date
    deduction_priority: int
    total_payment: Decimal
    principal_amount: Decimal
    interest_amount: Decimal


@dataclass(frozen=True)
class AppliedAmortization:
    amortization_id: UUID
    loan_id: UUID
    loan_number: str
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal


@dataclass(frozen=True)
class StatutoryContributions:
    sss_employee: Decimal = ZERO
    sss_employer: Decimal = ZERO
    philhealth_employee: Decimal = ZERO
    philhealth_employer: Decimal = ZERO
    pagibig_employee: Decimal = ZERO
    pagibig_employer: Decimal = ZERO

    @property
    def employee_total(self) -> Decimal:
        return self.sss_employee + self.philhealth_employee + self.pagibig_employee

    @property
    def employer_total(self) -> Decimal:
        return self.sss_employer + self.philhealth_employer + self.pagibig_employer


@dataclass(frozen=True)
class EmployeeYtd:
    """Year-to-date figures from prior paid runs of the same year."""

    gross_pay: Decimal = ZERO
    net_pay: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    sss: Decimal = ZERO
    philhealth: Decimal = ZERO
    pagibig: Decimal = ZERO
    bonus_gross: Decimal = ZERO
    pre_tax_recurring: Decimal = ZERO
    regular_basic: Decimal = ZERO
    regular_gross: Decimal = ZERO


# ===== Calculation trace =====


@dataclass
class EmployeeSummary:
    employee_id: str
    employee_number: str
    employee_name: str
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal


@dataclass
class EmployeeTrace:
    employee_id: str
    employee_number: str
    employee_name: str
    attendance: dict[str, Any]
    rates: dict[str, Any]
    earnings: dict[str, Any]
    deductions: dict[str, Any]


@dataclass
class CalculationTrace:
    """Structured step-3 notes; serialized only when stored."""

    calculation_version: str
    formula_policy: dict[str, Any]
    processed_employee_count: int = 0
    skipped_employee_count: int = 0
    statutory_diagnostics: StatutoryDiagnostics = field(default_factory=StatutoryDiagnostics)
    employee_summaries: list[EmployeeSummary] = field(default_factory=list)
    employee_traces: list[EmployeeTrace] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(asdict(self))


def to_jsonable(value: Any) -> Any:
    """Convert Decimals, UUIDs, dates and enums into JSON-safe values."""
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
