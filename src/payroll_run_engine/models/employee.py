"""Employee, compensation and time-keeping models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_run_engine.models.base import (
    MONEY,
    QUANTITY,
    Base,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


class EmploymentType(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "employment_type"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    has_13th_month: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class WorkSchedule(Base, UUIDPrimaryKeyMixin):
    """Work schedule; rest_days is a list of weekday names."""

    __tablename__ = "work_schedule"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    rest_days: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)


class Employee(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Employee master record."""

    __tablename__ = "employee"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=False)
    employee_number: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    pay_period_pattern_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("pay_period_pattern.id", ondelete="SET NULL"), nullable=True
    )
    department_id: Mapped[UUID | None] = mapped_column(nullable=True)
    branch_id: Mapped[UUID | None] = mapped_column(nullable=True)
    work_schedule_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("work_schedule.id", ondelete="SET NULL"), nullable=True
    )
    employment_type_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("employment_type.id", ondelete="SET NULL"), nullable=True
    )
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    separation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_overtime_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_night_diff_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_substituted_filing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("company_id", "employee_number", name="employee_company_number_unique"),
    )

    salary: Mapped[EmployeeSalary | None] = relationship(back_populates="employee", uselist=False)
    work_schedule: Mapped[WorkSchedule | None] = relationship()
    employment_type: Mapped[EmploymentType | None] = relationship()
    earnings: Mapped[list[EmployeeEarning]] = relationship(back_populates="employee")
    recurring_deductions: Mapped[list[RecurringDeduction]] = relationship(back_populates="employee")

    @property
    def display_name(self) -> str:
        return f"{self.last_name}, {self.first_name}"


class EmployeeSalary(Base, UUIDPrimaryKeyMixin):
    """Current salary record; dailyRate/hourlyRate override the derived rates."""

    __tablename__ = "employee_salary"

    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    daily_rate: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    monthly_divisor: Mapped[int | None] = mapped_column(Integer, nullable=True, default=365)
    hours_per_day: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True, default=Decimal("8"))
    salary_rate_type_code: Mapped[str] = mapped_column(String, nullable=False, default="MONTHLY")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "salary_rate_type_code IN ('MONTHLY', 'DAILY', 'HOURLY')",
            name="employee_salary_rate_type_check",
        ),
    )

    employee: Mapped[Employee] = relationship(back_populates="salary")


class DailyTimeRecord(Base, UUIDPrimaryKeyMixin):
    """One attendance row per employee per date."""

    __tablename__ = "daily_time_record"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False)
    attendance_status: Mapped[str] = mapped_column(String, nullable=False)
    approval_status_code: Mapped[str] = mapped_column(String, nullable=False, default="APPROVED")
    actual_time_in: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_time_out: Mapped[datetime | None] = mapped_column(nullable=True)
    hours_worked: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    overtime_hours: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    night_diff_hours: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    tardiness_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    undertime_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="dtr_employee_date_unique"),
        CheckConstraint(
            "attendance_status IN ('PRESENT', 'ABSENT', 'ON_LEAVE', 'REST_DAY', 'HOLIDAY')",
            name="dtr_attendance_status_check",
        ),
    )


class LeaveType(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "leave_type"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class LeaveRequest(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "leave_request"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    leave_type_id: Mapped[UUID] = mapped_column(ForeignKey("leave_type.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")

    leave_type: Mapped[LeaveType] = relationship()


class OvertimeRequest(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "overtime_request"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    overtime_date: Mapped[date] = mapped_column(Date, nullable=False)
    hours: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")


class EarningType(Base, UUIDPrimaryKeyMixin):
    """Earning type; company_id NULL means shared across companies."""

    __tablename__ = "earning_type"

    company_id: Mapped[UUID | None] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=True)
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_included_in_gross: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class DeductionType(Base, UUIDPrimaryKeyMixin):
    """Deduction type; company_id NULL means shared across companies."""

    __tablename__ = "deduction_type"

    company_id: Mapped[UUID | None] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=True)
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pay_period_applicability: Mapped[str | None] = mapped_column(String, nullable=True)
    percentage_base: Mapped[str | None] = mapped_column(String, nullable=True)
    max_deduction_limit: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)


class EmployeeEarning(Base, UUIDPrimaryKeyMixin):
    """Recurring earning assigned to an employee."""

    __tablename__ = "employee_earning"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    earning_type_id: Mapped[UUID] = mapped_column(ForeignKey("earning_type.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="PER_PAYROLL")
    proration_rule: Mapped[str | None] = mapped_column(String, nullable=True)
    is_taxable_override: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="earnings")
    earning_type: Mapped[EarningType] = relationship()


class RecurringDeduction(Base, UUIDPrimaryKeyMixin):
    """Recurring deduction assigned to an employee."""

    __tablename__ = "recurring_deduction"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    deduction_type_id: Mapped[UUID] = mapped_column(ForeignKey("deduction_type.id"), nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    is_percentage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    percentage_rate: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    frequency: Mapped[str] = mapped_column(String, nullable=False, default="PER_PAYROLL")
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="recurring_deductions")
    deduction_type: Mapped[DeductionType] = relationship()


class EmployeeYTDContribution(Base, UUIDPrimaryKeyMixin):
    """Year-to-date statutory contributions carried in from outside the engine."""

    __tablename__ = "employee_ytd_contribution"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    contribution_type: Mapped[str] = mapped_column(String, nullable=False)
    total_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("employee_id", "year", "contribution_type", name="ytd_contribution_unique"),
    )
