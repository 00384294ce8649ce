"""Effective-dated statutory and policy tables."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_run_engine.models.base import MONEY, QUANTITY, Base, UUIDPrimaryKeyMixin


class EffectiveDatedMixin:
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)


class SSSContributionTable(Base, UUIDPrimaryKeyMixin, EffectiveDatedMixin):
    """SSS bracket row; shares are read directly, never recomputed."""

    __tablename__ = "sss_contribution_table"

    salary_bracket_min: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    salary_bracket_max: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    monthly_salary_credit: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    employee_share: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    employer_share: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    wisp_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    wisp_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))


class PhilHealthContributionTable(Base, UUIDPrimaryKeyMixin, EffectiveDatedMixin):
    __tablename__ = "philhealth_contribution_table"

    premium_rate: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    monthly_floor: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    monthly_ceiling: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    employee_share_percent: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    employer_share_percent: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)


class PagIbigContributionTable(Base, UUIDPrimaryKeyMixin, EffectiveDatedMixin):
    """Pag-IBIG bracket row.

    When ``employee_share``/``employer_share`` are set they are used as-is;
    otherwise the shares are the rate percents applied to the compensation
    capped at ``max_monthly_compensation``.
    """

    __tablename__ = "pagibig_contribution_table"

    salary_bracket_min: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    salary_bracket_max: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    employee_rate_percent: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("0"))
    employer_rate_percent: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("0"))
    max_monthly_compensation: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    employee_share: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    employer_share: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)


class TaxTable(Base, UUIDPrimaryKeyMixin, EffectiveDatedMixin):
    """Withholding tax bracket row (per-period or annual)."""

    __tablename__ = "tax_table"

    tax_table_type_code: Mapped[str] = mapped_column(String, nullable=False)
    effective_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bracket_over: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    bracket_not_over: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    base_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_rate_percent: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False, default=Decimal("0"))
    excess_over: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint(
            "tax_table_type_code IN ('SEMI_MONTHLY', 'MONTHLY', 'ANNUAL')",
            name="tax_table_type_check",
        ),
    )


class OvertimeRate(Base, UUIDPrimaryKeyMixin, EffectiveDatedMixin):
    __tablename__ = "overtime_rate"

    overtime_type_code: Mapped[str] = mapped_column(String, nullable=False)
    rate_multiplier: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AttendanceDeductionRule(Base, UUIDPrimaryKeyMixin, EffectiveDatedMixin):
    __tablename__ = "attendance_deduction_rule"

    rule_type: Mapped[str] = mapped_column(String, nullable=False)
    calculation_basis: Mapped[str] = mapped_column(String, nullable=False, default="PER_MINUTE")
    threshold_mins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("rule_type IN ('TARDINESS', 'UNDERTIME')", name="attendance_rule_type_check"),
    )
