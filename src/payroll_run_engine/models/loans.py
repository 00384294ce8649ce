"""Employee loan models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_run_engine.models.base import MONEY, Base, TimestampMixin, UUIDPrimaryKeyMixin


class LoanType(Base, UUIDPrimaryKeyMixin):
    """Loan category; lower deduction_priority is deducted first."""

    __tablename__ = "loan_type"

    company_id: Mapped[UUID] = mapped_column(ForeignKey("company.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    deduction_priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)


class Loan(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "loan"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("employee.id", ondelete="CASCADE"), nullable=False)
    loan_type_id: Mapped[UUID] = mapped_column(ForeignKey("loan_type.id"), nullable=False)
    loan_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    principal_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    principal_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    interest_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE")

    loan_type: Mapped[LoanType] = relationship()
    amortizations: Mapped[list[LoanAmortization]] = relationship(
        back_populates="loan",
        order_by="LoanAmortization.due_date",
    )


class LoanAmortization(Base, UUIDPrimaryKeyMixin):
    """Scheduled installment; paid at most once, by at most one run."""

    __tablename__ = "loan_amortization"

    loan_id: Mapped[UUID] = mapped_column(ForeignKey("loan.id", ondelete="CASCADE"), nullable=False)
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_payment: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    payroll_run_id: Mapped[UUID | None] = mapped_column(ForeignKey("payroll_run.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="loan_amortization_installment_unique"),
    )

    loan: Mapped[Loan] = relationship(back_populates="amortizations")


class LoanPayment(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "loan_payment"

    loan_id: Mapped[UUID] = mapped_column(ForeignKey("loan.id", ondelete="CASCADE"), nullable=False)
    amortization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("loan_amortization.id"), nullable=True
    )
    payroll_run_id: Mapped[UUID | None] = mapped_column(ForeignKey("payroll_run.id"), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    principal_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    interest_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    # Amounts actually taken off the loan balances; a final installment may exceed them
    principal_reduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    interest_reduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_source_code: Mapped[str] = mapped_column(String, nullable=False, default="PAYROLL")
    status_code: Mapped[str] = mapped_column(String, nullable=False, default="DEDUCTED")
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
