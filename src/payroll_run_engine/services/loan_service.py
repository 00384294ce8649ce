"""Loan amortization application and reversal for payroll runs."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.numeric import round_currency, to_decimal
from payroll_run_engine.calculators.types import ZERO, AppliedAmortization
from payroll_run_engine.exceptions import ConcurrentTransitionError
from payroll_run_engine.models import Loan, LoanAmortization, LoanPayment, PayrollRun

logger = logging.getLogger(__name__)


class LoanService:
    """Writes and undoes the loan side effects of a run's Calculate step.

    An amortization is marked paid by exactly one run: the paid flag is set
    with a conditional update, so a second run holding a stale read fails
    instead of deducting it again. Because Calculate regenerates everything,
    a run first reverses its own previous applications, restoring exactly
    what each payment took off the loan balances.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def reverse_run(self, run_id: UUID) -> int:
        """Undo every loan payment this run made. Returns the count reversed."""
        result = await self.session.execute(
            select(LoanPayment)
            .where(LoanPayment.payroll_run_id == run_id)
            .order_by(LoanPayment.payment_date, LoanPayment.id)
        )
        payments = list(result.scalars().all())

        for payment in payments:
            loan = await self.session.get(Loan, payment.loan_id)
            if loan is not None:
                loan.principal_balance = round_currency(
                    to_decimal(loan.principal_balance) + to_decimal(payment.principal_reduction)
                )
                loan.interest_balance = round_currency(
                    to_decimal(loan.interest_balance) + to_decimal(payment.interest_reduction)
                )
                loan.total_balance = round_currency(loan.principal_balance + loan.interest_balance)
                if loan.total_balance > 0:
                    loan.status_code = "ACTIVE"

            if payment.amortization_id is not None:
                amortization = await self.session.get(LoanAmortization, payment.amortization_id)
                if amortization is not None and amortization.payroll_run_id == run_id:
                    amortization.is_paid = False
                    amortization.paid_date = None
                    amortization.paid_amount = None
                    amortization.payroll_run_id = None

            await self.session.delete(payment)

        if payments:
            await self.session.flush()
            logger.info("Reversed %d loan payment(s) for run %s", len(payments), run_id)
        return len(payments)

    async def apply(
        self,
        run: PayrollRun,
        payment_date: date,
        applied: list[AppliedAmortization],
    ) -> list[LoanPayment]:
        """Record payments for the amortizations one employee's payslip deducted."""
        payments = []
        for item in applied:
            amortization = await self.session.get(LoanAmortization, item.amortization_id)
            loan = await self.session.get(Loan, item.loan_id)
            if amortization is None or loan is None:
                continue

            await self._mark_paid(amortization, item, run, payment_date)

            principal_before = to_decimal(loan.principal_balance)
            interest_before = to_decimal(loan.interest_balance)
            principal = round_currency(max(principal_before - item.principal_amount, ZERO))
            interest = round_currency(max(interest_before - item.interest_amount, ZERO))
            loan.principal_balance = principal
            loan.interest_balance = interest
            loan.total_balance = round_currency(principal + interest)
            loan.status_code = "FULLY_PAID" if loan.total_balance <= 0 else "ACTIVE"

            payment = LoanPayment(
                loan_id=loan.id,
                amortization_id=amortization.id,
                payroll_run_id=run.id,
                payment_date=payment_date,
                amount_paid=item.amount,
                principal_paid=round_currency(item.principal_amount),
                interest_paid=round_currency(item.interest_amount),
                principal_reduction=round_currency(principal_before - principal),
                interest_reduction=round_currency(interest_before - interest),
                balance_after=loan.total_balance,
                payment_source_code="PAYROLL",
                status_code="DEDUCTED",
                remarks=f"Auto-deducted from payroll run {run.run_number}",
            )
            self.session.add(payment)
            payments.append(payment)
        return payments

    async def _mark_paid(
        self,
        amortization: LoanAmortization,
        item: AppliedAmortization,
        run: PayrollRun,
        payment_date: date,
    ) -> None:
        await self.session.flush()
        marked = await self.session.execute(
            update(LoanAmortization)
            .where(LoanAmortization.id == amortization.id, LoanAmortization.is_paid.is_(False))
            .values(
                is_paid=True,
                paid_date=payment_date,
                paid_amount=item.amount,
                payroll_run_id=run.id,
            )
            .execution_options(synchronize_session=False)
        )
        if marked.rowcount == 0:
            raise ConcurrentTransitionError(
                f"Loan amortization {item.loan_number} #{amortization.installment_number} "
                "was already applied by another payroll run."
            )
        await self.session.refresh(
            amortization, attribute_names=["is_paid", "paid_date", "paid_amount", "payroll_run_id"]
        )

