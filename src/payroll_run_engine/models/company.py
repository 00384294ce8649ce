"""Company, pay period and calendar models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_run_engine.models.base import QUANTITY, Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from payroll_run_engine.models.payroll import PayrollRun


class Company(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Tenant company."""

    __tablename__ = "company"

    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    thirteenth_month_formula: Mapped[str] = mapped_column(
        String, nullable=False, default="BASIC_YTD_OR_PRORATED"
    )

    __table_args__ = (
        CheckConstraint(
            "thirteenth_month_formula IN ('BASIC_YTD_OR_PRORATED', 'GROSS_EARNED_TO_DATE')",
            name="company_thirteenth_month_formula_check",
        ),
    )


class PayPeriodPattern(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Pay frequency definition owning a series of pay periods."""

    __tablename__ = "pay_period_pattern"

    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    pay_frequency_code: Mapped[str] = mapped_column(String, nullable=False)
    periods_per_year: Mapped[int] = mapped_column(Integer, nullable=False)
    # {"sss": "SECOND_HALF", "philHealth": ..., "pagIbig": ..., "withholdingTax": ...}
    statutory_deduction_schedule: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="pay_period_pattern_company_code_unique"),
        CheckConstraint(
            "pay_frequency_code IN ('MONTHLY', 'SEMI_MONTHLY', 'BI_WEEKLY', 'WEEKLY')",
            name="pay_period_pattern_frequency_check",
        ),
    )

    company: Mapped[Company] = relationship()
    periods: Mapped[list[PayPeriod]] = relationship(back_populates="pattern")


class PayPeriod(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Cutoff window; immutable once locked."""

    __tablename__ = "pay_period"

    pattern_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period_pattern.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    period_half: Mapped[str | None] = mapped_column(String, nullable=True)
    cutoff_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    cutoff_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    working_days: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="OPEN")
    # Bumped on every run creation so concurrent creators race on one row.
    run_guard_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("pattern_id", "year", "period_number", name="pay_period_pattern_number_unique"),
        CheckConstraint("status_code IN ('OPEN', 'LOCKED')", name="pay_period_status_check"),
        CheckConstraint(
            "period_half IS NULL OR period_half IN ('FIRST', 'SECOND')",
            name="pay_period_half_check",
        ),
        CheckConstraint("cutoff_end_date >= cutoff_start_date", name="pay_period_dates_check"),
    )

    pattern: Mapped[PayPeriodPattern] = relationship(back_populates="periods")
    payroll_runs: Mapped[list[PayrollRun]] = relationship(back_populates="pay_period")


class Holiday(Base, UUIDPrimaryKeyMixin):
    """Holiday calendar entry; company_id NULL means nationwide."""

    __tablename__ = "holiday"

    company_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("company.id", ondelete="CASCADE"), nullable=True
    )
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    holiday_type_code: Mapped[str] = mapped_column(String, nullable=False)
    pay_multiplier: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("1"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "holiday_type_code IN ('REGULAR', 'SPECIAL_NON_WORKING', 'SPECIAL_WORKING')",
            name="holiday_type_check",
        ),
    )


class SystemConfig(Base):
    """Key/value configuration (e.g. NIGHT_DIFF_RATE)."""

    __tablename__ = "system_config"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
