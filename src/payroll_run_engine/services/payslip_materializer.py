"""Payslip persistence: delete-and-regenerate of a run's computed output."""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.engine import EmployeeCalculation, RunCalculation
from payroll_run_engine.calculators.line_builder import LineItemBuilder
from payroll_run_engine.calculators.numeric import round_currency, round_quantity, to_decimal
from payroll_run_engine.calculators.types import ZERO, DeductionLine, EarningLine
from payroll_run_engine.models import (
    DeductionType,
    EarningType,
    PayrollRun,
    Payslip,
    PayslipDeduction,
    PayslipEarning,
)

logger = logging.getLogger(__name__)

EARNING_TYPE_NAMES = {
    "BASIC_PAY": "Basic Pay",
    "THIRTEENTH_MONTH": "13th Month Pay",
    "MID_YEAR_BONUS": "Mid-Year Bonus",
    "OVERTIME": "Overtime Pay",
    "NIGHT_DIFF": "Night Differential",
    "HOLIDAY_PAY": "Holiday Premium",
    "ADJUSTMENT": "Manual Adjustment",
}

DEDUCTION_TYPE_NAMES = {
    "TARDINESS": "Tardiness",
    "UNDERTIME": "Undertime",
    "SSS": "SSS Contribution",
    "PHILHEALTH": "PhilHealth Contribution",
    "PAGIBIG": "Pag-IBIG Contribution",
    "WTAX": "Withholding Tax",
    "ADJUSTMENT": "Manual Adjustment",
    "LOAN_PAYMENT": "Loan Payment",
}


def payslip_number(run_number: str, employee_id: UUID) -> str:
    """PSL-<run suffix>-<first six characters of the employee id>."""
    suffix = run_number[4:] if run_number.startswith("RUN-") else run_number
    return f"PSL-{suffix}-{str(employee_id)[:6].upper()}"


class LineTypeResolver:
    """Looks up earning/deduction types by code, creating missing ones for the company.

    Company-specific rows win over global (company-less) rows.
    """

    def __init__(self, session: AsyncSession, company_id: UUID):
        self.session = session
        self.company_id = company_id
        self._earning_types: dict[str, UUID] = {}
        self._deduction_types: dict[str, UUID] = {}

    async def earning_type_id(self, code: str) -> UUID:
        if code not in self._earning_types:
            existing = await self._find(EarningType, code)
            if existing is None:
                existing = EarningType(
                    company_id=self.company_id,
                    code=code,
                    name=EARNING_TYPE_NAMES.get(code, code.replace("_", " ").title()),
                    is_taxable=True,
                    is_included_in_gross=True,
                )
                self.session.add(existing)
                await self.session.flush()
            self._earning_types[code] = existing.id
        return self._earning_types[code]

    async def deduction_type_id(self, code: str) -> UUID:
        if code not in self._deduction_types:
            existing = await self._find(DeductionType, code)
            if existing is None:
                existing = DeductionType(
                    company_id=self.company_id,
                    code=code,
                    name=DEDUCTION_TYPE_NAMES.get(code, code.replace("_", " ").title()),
                    is_mandatory=True,
                    is_pre_tax=code != "WTAX",
                )
                self.session.add(existing)
                await self.session.flush()
            self._deduction_types[code] = existing.id
        return self._deduction_types[code]

    async def _find(self, model, code: str):
        result = await self.session.execute(
            select(model).where(
                model.code == code,
                or_(model.company_id == self.company_id, model.company_id.is_(None)),
            )
        )
        rows = list(result.scalars().all())
        rows.sort(key=lambda row: row.company_id is None)
        return rows[0] if rows else None


class PayslipMaterializer:
    """Writes computed payslips and their ordered line items.

    Every write for a run goes through ``delete_run_payslips`` first, so the
    stored output is always a pure function of the latest calculation.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def delete_run_payslips(self, run_id: UUID) -> None:
        payslip_ids = select(Payslip.id).where(Payslip.payroll_run_id == run_id)
        await self.session.execute(
            delete(PayslipEarning)
            .where(PayslipEarning.payslip_id.in_(payslip_ids))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(PayslipDeduction)
            .where(PayslipDeduction.payslip_id.in_(payslip_ids))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(Payslip).where(Payslip.payroll_run_id == run_id).execution_options(synchronize_session=False)
        )

    async def materialize(self, run: PayrollRun, calculation: RunCalculation) -> list[Payslip]:
        """Persist one payslip per calculated employee. Caller deletes the old set first."""
        resolver = LineTypeResolver(self.session, run.company_id)
        payslips = []
        for result in calculation.results:
            payslip = await self._build_payslip(run, result, resolver)
            self.session.add(payslip)
            payslips.append(payslip)
        await self.session.flush()
        logger.debug("Materialized %d payslip(s) for run %s", len(payslips), run.run_number)
        return payslips

    async def _build_payslip(
        self, run: PayrollRun, result: EmployeeCalculation, resolver: LineTypeResolver
    ) -> Payslip:
        attendance = result.attendance
        contributions = result.contributions
        ytd = result.ytd
        gross = result.gross_pay
        net = result.net_pay
        basic = result.earnings.basic_pay
        withholding = result.deductions.withholding_tax

        payslip = Payslip(
            payroll_run_id=run.id,
            employee_id=result.employee_id,
            payslip_number=payslip_number(run.run_number, result.employee_id),
            base_salary=round_currency(result.rates.base_salary),
            daily_rate=round_quantity(result.rates.daily_rate),
            hourly_rate=round_quantity(result.rates.hourly_rate),
            working_days=round_quantity(result.working_days),
            days_worked=ZERO if result.is_bonus_run else round_quantity(attendance.total_payable_days),
            days_absent=round_quantity(attendance.unpaid_absences),
            hours_worked=round_quantity(attendance.hours_worked) if attendance.hours_worked > 0 else None,
            overtime_hours=round_quantity(attendance.overtime_hours),
            tardiness_mins=attendance.tardiness_mins,
            undertime_mins=attendance.undertime_mins,
            night_diff_hours=round_quantity(attendance.night_diff_hours),
            basic_pay=round_currency(basic),
            gross_pay=gross,
            total_earnings=round_currency(gross - basic),
            total_deductions=result.total_deductions,
            net_pay=net,
            sss_employee=round_currency(contributions.sss_employee),
            sss_employer=round_currency(contributions.sss_employer),
            philhealth_employee=round_currency(contributions.philhealth_employee),
            philhealth_employer=round_currency(contributions.philhealth_employer),
            pagibig_employee=round_currency(contributions.pagibig_employee),
            pagibig_employer=round_currency(contributions.pagibig_employer),
            withholding_tax=round_currency(withholding),
            ytd_gross_pay=round_currency(ytd.gross_pay + gross),
            ytd_taxable_income=round_currency(ytd.gross_pay + result.taxable_income),
            ytd_tax_withheld=round_currency(ytd.withholding_tax + withholding),
            ytd_sss=round_currency(ytd.sss + contributions.sss_employee),
            ytd_philhealth=round_currency(ytd.philhealth + contributions.philhealth_employee),
            ytd_pagibig=round_currency(ytd.pagibig + contributions.pagibig_employee),
            ytd_net_pay=round_currency(ytd.net_pay + net),
        )
        payslip.earnings = [
            await self._earning_row(index, line, resolver)
            for index, line in enumerate(result.earning_lines, start=1)
        ]
        payslip.deductions = [
            await self._deduction_row(index, line, resolver)
            for index, line in enumerate(result.deduction_lines, start=1)
        ]
        return payslip

    @staticmethod
    async def _earning_row(index: int, line: EarningLine, resolver: LineTypeResolver) -> PayslipEarning:
        return PayslipEarning(
            line_number=index,
            earning_type_id=line.earning_type_id or await resolver.earning_type_id(line.type_code),
            description=line.description,
            amount=round_currency(line.amount),
            hours=round_quantity(line.hours) if line.hours else None,
            days=round_quantity(line.days) if line.days else None,
            rate=round_quantity(line.rate) if line.rate else None,
            is_taxable=line.is_taxable,
        )

    @staticmethod
    async def _deduction_row(index: int, line: DeductionLine, resolver: LineTypeResolver) -> PayslipDeduction:
        return PayslipDeduction(
            line_number=index,
            deduction_type_id=line.deduction_type_id or await resolver.deduction_type_id(line.type_code),
            description=line.description,
            amount=round_currency(line.amount),
            employer_share=round_currency(line.employer_share) if line.employer_share else None,
            reference_type=line.reference_type.value if line.reference_type else None,
            reference_id=line.reference_id,
        )

    @staticmethod
    def recompute_payslip_totals(payslip: Payslip) -> tuple[Decimal, Decimal]:
        """Re-derive totals from the loaded lines; returns (gross delta, net delta)."""
        old_gross = to_decimal(payslip.gross_pay)
        old_net = to_decimal(payslip.net_pay)

        gross = round_currency(sum((to_decimal(line.amount) for line in payslip.earnings), ZERO))
        total_deductions = round_currency(sum((to_decimal(line.amount) for line in payslip.deductions), ZERO))
        net = LineItemBuilder.calculate_net(gross, total_deductions)

        payslip.gross_pay = gross
        payslip.total_earnings = round_currency(gross - to_decimal(payslip.basic_pay))
        payslip.total_deductions = total_deductions
        payslip.net_pay = net
        return round_currency(gross - old_gross), round_currency(net - old_net)

    async def refresh_run_totals(self, run: PayrollRun) -> None:
        """Recompute the run aggregates from its stored payslips."""
        await self.session.flush()
        result = await self.session.execute(
            select(
                func.count(Payslip.id),
                func.coalesce(func.sum(Payslip.gross_pay), 0),
                func.coalesce(func.sum(Payslip.total_deductions), 0),
                func.coalesce(func.sum(Payslip.net_pay), 0),
                func.coalesce(
                    func.sum(Payslip.sss_employer + Payslip.philhealth_employer + Payslip.pagibig_employer), 0
                ),
            ).where(Payslip.payroll_run_id == run.id)
        )
        count, gross, deductions, net, employer = result.one()
        run.total_employees = count
        run.total_gross_pay = round_currency(to_decimal(gross))
        run.total_deductions = round_currency(to_decimal(deductions))
        run.total_net_pay = round_currency(to_decimal(net))
        run.total_employer_contributions = round_currency(to_decimal(employer))
        run.total_employer_cost = round_currency(run.total_gross_pay + run.total_employer_contributions)
