"""ORM models."""

from payroll_run_engine.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from payroll_run_engine.models.company import (
    Company,
    Holiday,
    PayPeriod,
    PayPeriodPattern,
    SystemConfig,
)
from payroll_run_engine.models.employee import (
    DailyTimeRecord,
    DeductionType,
    EarningType,
    Employee,
    EmployeeEarning,
    EmployeeSalary,
    EmployeeYTDContribution,
    EmploymentType,
    LeaveRequest,
    LeaveType,
    OvertimeRequest,
    RecurringDeduction,
    WorkSchedule,
)
from payroll_run_engine.models.loans import Loan, LoanAmortization, LoanPayment, LoanType
from payroll_run_engine.models.payroll import (
    AuditLog,
    PayrollProcessStep,
    PayrollRun,
    Payslip,
    PayslipDeduction,
    PayslipEarning,
)
from payroll_run_engine.models.statutory import (
    AttendanceDeductionRule,
    OvertimeRate,
    PagIbigContributionTable,
    PhilHealthContributionTable,
    SSSContributionTable,
    TaxTable,
)

__all__ = [
    "AttendanceDeductionRule",
    "AuditLog",
    "Base",
    "Company",
    "DailyTimeRecord",
    "DeductionType",
    "EarningType",
    "Employee",
    "EmployeeEarning",
    "EmployeeSalary",
    "EmployeeYTDContribution",
    "EmploymentType",
    "Holiday",
    "LeaveRequest",
    "LeaveType",
    "Loan",
    "LoanAmortization",
    "LoanPayment",
    "LoanType",
    "OvertimeRate",
    "OvertimeRequest",
    "PagIbigContributionTable",
    "PayPeriod",
    "PayPeriodPattern",
    "PayrollProcessStep",
    "PayrollRun",
    "Payslip",
    "PayslipDeduction",
    "PayslipEarning",
    "PhilHealthContributionTable",
    "SSSContributionTable",
    "SystemConfig",
    "TaxTable",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "WorkSchedule",
]
