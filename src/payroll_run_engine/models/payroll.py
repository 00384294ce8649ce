"""Payroll run, process step, payslip and audit models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
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
    utcnow,
)

if TYPE_CHECKING:
    from payroll_run_engine.models.company import PayPeriod
    from payroll_run_engine.models.employee import Employee


ZERO = Decimal("0")


class PayrollRun(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One execution of the payroll pipeline for a pay period."""

    __tablename__ = "payroll_run"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=False)
    pay_period_id: Mapped[UUID] = mapped_column(ForeignKey("pay_period.id"), nullable=False)
    run_number: Mapped[str] = mapped_column(String, nullable=False)
    run_type_code: Mapped[str] = mapped_column(String, nullable=False, default="REGULAR")
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    current_step_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_step_name: Mapped[str] = mapped_column(String, nullable=False, default="CREATE_RUN")
    # Serialized RunScope
    scope: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_employer_contributions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_employer_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("company_id", "run_number", name="payroll_run_company_number_unique"),
        CheckConstraint(
            "status_code IN ('DRAFT', 'VALIDATING', 'PROCESSING', 'COMPUTED', 'FOR_REVIEW', "
            "'APPROVED', 'FOR_PAYMENT', 'PAID', 'CANCELLED')",
            name="payroll_run_status_check",
        ),
        CheckConstraint(
            "current_step_number BETWEEN 1 AND 6", name="payroll_run_current_step_check"
        ),
    )

    pay_period: Mapped[PayPeriod] = relationship(back_populates="payroll_runs")
    process_steps: Mapped[list[PayrollProcessStep]] = relationship(
        back_populates="payroll_run",
        order_by="PayrollProcessStep.step_number",
    )
    payslips: Mapped[list[Payslip]] = relationship(back_populates="payroll_run")


class PayrollProcessStep(Base, UUIDPrimaryKeyMixin):
    """One of the six pipeline steps of a run; created once, only updated."""

    __tablename__ = "payroll_process_step"

    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.id", ondelete="CASCADE"), nullable=False
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[Any | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "step_number", name="process_step_run_number_unique"),
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'FAILED')",
            name="process_step_status_check",
        ),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="process_steps")


class Payslip(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Computed snapshot for one employee in one run."""

    __tablename__ = "payslip"

    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id"), nullable=False)
    payslip_number: Mapped[str] = mapped_column(String, nullable=False)

    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    daily_rate: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)
    hourly_rate: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)
    working_days: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)
    days_worked: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)
    days_absent: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)
    hours_worked: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    overtime_hours: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)
    tardiness_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    undertime_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    night_diff_hours: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=ZERO)

    basic_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_earnings: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    sss_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    sss_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    philhealth_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    philhealth_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    pagibig_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    pagibig_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    withholding_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    ytd_gross_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    ytd_taxable_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    ytd_tax_withheld: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    ytd_sss: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    ytd_philhealth: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    ytd_pagibig: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)
    ytd_net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=ZERO)

    generated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payslip_run_employee_unique"),
        UniqueConstraint("payroll_run_id", "payslip_number", name="payslip_run_number_unique"),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="payslips")
    employee: Mapped[Employee] = relationship()
    earnings: Mapped[list[PayslipEarning]] = relationship(
        back_populates="payslip",
        cascade="all, delete-orphan",
        order_by="PayslipEarning.line_number",
    )
    deductions: Mapped[list[PayslipDeduction]] = relationship(
        back_populates="payslip",
        cascade="all, delete-orphan",
        order_by="PayslipDeduction.line_number",
    )


class PayslipEarning(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "payslip_earning"

    payslip_id: Mapped[UUID] = mapped_column(ForeignKey("payslip.id", ondelete="CASCADE"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    earning_type_id: Mapped[UUID] = mapped_column(ForeignKey("earning_type.id"), nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    hours: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    days: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    payslip: Mapped[Payslip] = relationship(back_populates="earnings")


class PayslipDeduction(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "payslip_deduction"

    payslip_id: Mapped[UUID] = mapped_column(ForeignKey("payslip.id", ondelete="CASCADE"), nullable=False)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    deduction_type_id: Mapped[UUID] = mapped_column(ForeignKey("deduction_type.id"), nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    employer_share: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String, nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "reference_type IS NULL OR reference_type IN "
            "('ATTENDANCE', 'GOVERNMENT', 'TAX', 'RECURRING', 'ADJUSTMENT', 'LOAN')",
            name="payslip_deduction_reference_type_check",
        ),
    )

    payslip: Mapped[Payslip] = relationship(back_populates="deductions")


class AuditLog(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """One row per audited field change (or per action when no fields changed)."""

    __tablename__ = "audit_log"

    table_name: Mapped[str] = mapped_column(String, nullable=False)
    record_id: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)
    field_name: Mapped[str | None] = mapped_column(String, nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
