"""Statutory contributions and withholding tax from effective-dated tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.numeric import round_currency
from payroll_run_engine.calculators.policies import should_apply_by_timing
from payroll_run_engine.calculators.types import (
    ZERO,
    EmployeeYtd,
    PayFrequency,
    PeriodHalf,
    StatutoryContributions,
    StatutoryDiagnostics,
    StatutorySchedule,
)
from payroll_run_engine.config import Settings, get_settings
from payroll_run_engine.models import (
    PagIbigContributionTable,
    PhilHealthContributionTable,
    SSSContributionTable,
    TaxTable,
)

logger = logging.getLogger(__name__)


@dataclass
class StatutoryTables:
    """Table rows active for one cutoff window, read fresh per calculation."""

    sss: list[SSSContributionTable] = field(default_factory=list)
    philhealth: PhilHealthContributionTable | None = None
    pagibig: list[PagIbigContributionTable] = field(default_factory=list)
    period_tax_rows: list[TaxTable] = field(default_factory=list)
    annual_tax_rows: list[TaxTable] = field(default_factory=list)

    def active_table_counts(self) -> dict[str, int]:
        return {
            "sss": len(self.sss),
            "phil_health": 1 if self.philhealth is not None else 0,
            "pag_ibig": len(self.pagibig),
            "withholding_tax": len(self.annual_tax_rows) or len(self.period_tax_rows),
        }


def _latest_effective(rows: list[TaxTable]) -> list[TaxTable]:
    """Keep only rows sharing the newest effective_from; input is sorted newest first."""
    if not rows:
        return []
    latest = rows[0].effective_from
    return [row for row in rows if row.effective_from == latest]


def find_tax_bracket(amount: Decimal, rows: list[TaxTable]) -> TaxTable | None:
    return next(
        (row for row in rows if row.bracket_over <= amount <= row.bracket_not_over),
        None,
    )


def bracket_tax(amount: Decimal, row: TaxTable) -> Decimal:
    return round_currency(row.base_tax + (amount - row.excess_over) * row.tax_rate_percent)


def calculate_annual_tax(
    taxable: Decimal, rows: list[TaxTable], diagnostics: StatutoryDiagnostics | None = None
) -> Decimal:
    """Annual tax due; an amount no bracket covers uses the last row and counts as unmatched."""
    if taxable <= 0 or not rows:
        return ZERO
    row = find_tax_bracket(taxable, rows)
    if row is None:
        logger.warning("No annual tax bracket matched %s; using the top bracket", taxable)
        if diagnostics is not None:
            diagnostics.withholding_tax_no_bracket_match += 1
        row = rows[-1]
    return max(ZERO, bracket_tax(taxable, row))


class TaxCalculator:
    """SSS, PhilHealth, Pag-IBIG and withholding tax for one run.

    Tables are read once per calculation through ``load_tables`` and never
    cached across runs. The per-employee methods are pure.

    Contribution bases are the employee's monthly base salary, not the
    period-prorated amount. Each contribution is gated by its timing policy;
    every applied, skipped or unmatched case lands in ``StatutoryDiagnostics``.
    """

    def __init__(self, session: AsyncSession | None, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    async def load_tables(
        self,
        cutoff_start: date,
        cutoff_end: date,
        year: int,
        pay_frequency: str,
    ) -> StatutoryTables:
        """Rows whose effective range overlaps the cutoff window."""

        def overlapping(model):
            return (
                model.effective_from <= cutoff_end,
                or_(model.effective_to.is_(None), model.effective_to >= cutoff_start),
            )

        sss = await self.session.execute(
            select(SSSContributionTable)
            .where(*overlapping(SSSContributionTable))
            .order_by(
                SSSContributionTable.effective_from.desc(),
                SSSContributionTable.salary_bracket_min.asc(),
            )
        )
        philhealth = await self.session.execute(
            select(PhilHealthContributionTable)
            .where(*overlapping(PhilHealthContributionTable))
            .order_by(PhilHealthContributionTable.effective_from.desc())
            .limit(1)
        )
        pagibig = await self.session.execute(
            select(PagIbigContributionTable)
            .where(*overlapping(PagIbigContributionTable))
            .order_by(
                PagIbigContributionTable.effective_from.desc(),
                PagIbigContributionTable.salary_bracket_min.asc(),
            )
        )

        period_type = "SEMI_MONTHLY" if pay_frequency == PayFrequency.SEMI_MONTHLY else "MONTHLY"
        period_rows = await self.session.execute(
            select(TaxTable)
            .where(TaxTable.tax_table_type_code == period_type, *overlapping(TaxTable))
            .order_by(TaxTable.effective_from.desc(), TaxTable.bracket_over.asc())
        )
        annual_rows = await self.session.execute(
            select(TaxTable)
            .where(
                TaxTable.tax_table_type_code == "ANNUAL",
                TaxTable.effective_year == year,
                *overlapping(TaxTable),
            )
            .order_by(TaxTable.effective_from.desc(), TaxTable.bracket_over.asc())
        )

        tables = StatutoryTables(
            sss=list(sss.scalars().all()),
            philhealth=philhealth.scalar_one_or_none(),
            pagibig=list(pagibig.scalars().all()),
            period_tax_rows=_latest_effective(list(period_rows.scalars().all())),
            annual_tax_rows=_latest_effective(list(annual_rows.scalars().all())),
        )
        for name, count in tables.active_table_counts().items():
            if count == 0:
                logger.warning(
                    "No active %s table for cutoff %s..%s", name, cutoff_start, cutoff_end
                )
        return tables

    # ===== Contributions =====

    def calculate_sss(
        self, base_salary: Decimal, tables: StatutoryTables
    ) -> tuple[Decimal, Decimal] | None:
        """(employee, employer) from the first matching bracket; WISP included."""
        row = next(
            (t for t in tables.sss if t.salary_bracket_min <= base_salary <= t.salary_bracket_max),
            None,
        )
        if row is None:
            return None
        return (
            round_currency(row.employee_share + (row.wisp_employee or ZERO)),
            round_currency(row.employer_share + (row.wisp_employer or ZERO)),
        )

    def calculate_philhealth(
        self, base_salary: Decimal, tables: StatutoryTables
    ) -> tuple[Decimal, Decimal] | None:
        table = tables.philhealth
        if table is None:
            return None
        compensation = min(max(base_salary, table.monthly_floor), table.monthly_ceiling)
        premium = compensation * table.premium_rate
        return (
            round_currency(premium * table.employee_share_percent),
            round_currency(premium * table.employer_share_percent),
        )

    def calculate_pagibig(
        self, base_salary: Decimal, tables: StatutoryTables
    ) -> tuple[Decimal, Decimal] | None:
        row = next(
            (t for t in tables.pagibig if t.salary_bracket_min <= base_salary <= t.salary_bracket_max),
            None,
        )
        if row is None:
            return None
        if row.employee_share is not None and row.employer_share is not None:
            return round_currency(row.employee_share), round_currency(row.employer_share)
        compensation = min(base_salary, row.max_monthly_compensation)
        return (
            round_currency(compensation * row.employee_rate_percent),
            round_currency(compensation * row.employer_rate_percent),
        )

    def calculate_contributions(
        self,
        base_salary: Decimal,
        tables: StatutoryTables,
        schedule: StatutorySchedule,
        pay_frequency: str,
        period_half: PeriodHalf | str | None,
        diagnostics: StatutoryDiagnostics,
        is_bonus_run: bool = False,
    ) -> StatutoryContributions:
        """Gated SSS/PhilHealth/Pag-IBIG; bonus runs count as skipped-by-timing."""

        def applies(timing) -> bool:
            return not is_bonus_run and should_apply_by_timing(timing, pay_frequency, period_half)

        sss = philhealth = pagibig = (ZERO, ZERO)

        if applies(schedule.sss):
            result = self.calculate_sss(base_salary, tables)
            if result is None:
                diagnostics.sss_no_bracket_match += 1
            else:
                sss = result
                if sss[0] > 0:
                    diagnostics.sss_applied += 1
        else:
            diagnostics.sss_skipped_by_timing += 1

        if applies(schedule.phil_health):
            result = self.calculate_philhealth(base_salary, tables)
            if result is None:
                diagnostics.phil_health_no_active_config += 1
            else:
                philhealth = result
                if philhealth[0] > 0:
                    diagnostics.phil_health_applied += 1
        else:
            diagnostics.phil_health_skipped_by_timing += 1

        if applies(schedule.pag_ibig):
            result = self.calculate_pagibig(base_salary, tables)
            if result is None:
                diagnostics.pag_ibig_no_bracket_match += 1
            else:
                pagibig = result
                if pagibig[0] > 0:
                    diagnostics.pag_ibig_applied += 1
        else:
            diagnostics.pag_ibig_skipped_by_timing += 1

        return StatutoryContributions(
            sss_employee=sss[0],
            sss_employer=sss[1],
            philhealth_employee=philhealth[0],
            philhealth_employer=philhealth[1],
            pagibig_employee=pagibig[0],
            pagibig_employer=pagibig[1],
        )

    # ===== Withholding tax =====

    @staticmethod
    def taxable_income(
        gross_pay: Decimal, contributions: StatutoryContributions, pre_tax_recurring: Decimal
    ) -> Decimal:
        provisional = round_currency(max(ZERO, gross_pay - contributions.employee_total))
        return round_currency(max(ZERO, provisional - pre_tax_recurring))

    def calculate_withholding_tax(
        self,
        *,
        gross_pay: Decimal,
        taxable_income: Decimal,
        contributions: StatutoryContributions,
        pre_tax_recurring: Decimal,
        ytd: EmployeeYtd,
        tables: StatutoryTables,
        is_substituted_filing: bool,
        applies: bool,
        diagnostics: StatutoryDiagnostics,
    ) -> Decimal:
        """Withholding for the period.

        Substituted filing: flat rate of the taxable income. Otherwise the
        annualized projection against the ANNUAL table, less tax already
        withheld this year. Without an annual table the taxable income is
        matched directly against the per-period table.
        """
        if not applies:
            diagnostics.withholding_tax_skipped_by_timing += 1
            return ZERO

        if is_substituted_filing:
            tax = round_currency(taxable_income * self.settings.substituted_filing_rate)
        elif tables.annual_tax_rows:
            annual_taxable = self.project_annual_taxable(
                gross_pay, contributions, pre_tax_recurring, ytd
            )
            annual_due = calculate_annual_tax(annual_taxable, tables.annual_tax_rows, diagnostics)
            tax = round_currency(max(ZERO, annual_due - ytd.withholding_tax))
        else:
            row = find_tax_bracket(taxable_income, tables.period_tax_rows)
            if row is None:
                if taxable_income > 0:
                    diagnostics.withholding_tax_no_bracket_match += 1
                return ZERO
            tax = max(ZERO, bracket_tax(taxable_income, row))

        if tax > 0:
            diagnostics.withholding_tax_applied += 1
        return tax

    def project_annual_taxable(
        self,
        gross_pay: Decimal,
        contributions: StatutoryContributions,
        pre_tax_recurring: Decimal,
        ytd: EmployeeYtd,
    ) -> Decimal:
        """Year-to-date gross plus this period, less contributions, bonus exclusion and pre-tax deductions."""
        mandatory = ytd.sss + ytd.philhealth + ytd.pagibig + contributions.employee_total
        bonus_exclusion = min(self.settings.bonus_exclusion_ceiling, ytd.bonus_gross)
        pre_tax = ytd.pre_tax_recurring + pre_tax_recurring
        annual_gross = ytd.gross_pay + gross_pay
        return max(ZERO, annual_gross - mandatory - bonus_exclusion - pre_tax)
