"""Payslip line construction and totals."""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from uuid import UUID

from payroll_run_engine.calculators.numeric import round_currency, round_quantity
from payroll_run_engine.calculators.types import (
    ZERO,
    DeductionLine,
    EarningLine,
    ReferenceType,
    to_jsonable,
)


class LineItemBuilder:
    """Builds earning/deduction lines with canonical rounding.

    Conventions:
    - every amount is stored positive; deductions are subtracted, never negated
    - amounts round to 2 decimals, hours/days/rates to 4
    - NET = max(GROSS - sum(deductions), 0)
    """

    @staticmethod
    def earning(
        type_code: str,
        description: str,
        amount: Decimal,
        is_taxable: bool = True,
        earning_type_id: UUID | None = None,
        hours: Decimal | None = None,
        days: Decimal | None = None,
        rate: Decimal | None = None,
    ) -> EarningLine:
        return EarningLine(
            type_code=type_code,
            description=description,
            amount=round_currency(abs(amount)),
            is_taxable=is_taxable,
            earning_type_id=earning_type_id,
            hours=round_quantity(hours) if hours else None,
            days=round_quantity(days) if days else None,
            rate=round_quantity(rate) if rate else None,
        )

    @staticmethod
    def deduction(
        type_code: str,
        description: str,
        amount: Decimal,
        reference_type: ReferenceType | None = None,
        reference_id: UUID | None = None,
        employer_share: Decimal | None = None,
        is_pre_tax: bool = False,
        deduction_type_id: UUID | None = None,
    ) -> DeductionLine:
        return DeductionLine(
            type_code=type_code,
            description=description,
            amount=round_currency(abs(amount)),
            reference_type=reference_type,
            reference_id=reference_id,
            employer_share=round_currency(employer_share) if employer_share else None,
            is_pre_tax=is_pre_tax,
            deduction_type_id=deduction_type_id,
        )

    @staticmethod
    def calculate_gross(lines: list[EarningLine]) -> Decimal:
        return round_currency(sum((line.amount for line in lines), ZERO))

    @staticmethod
    def calculate_total_deductions(lines: list[DeductionLine]) -> Decimal:
        return round_currency(sum((line.amount for line in lines), ZERO))

    @staticmethod
    def calculate_net(gross: Decimal, total_deductions: Decimal) -> Decimal:
        """Net pay, floored at zero."""
        return round_currency(max(gross - total_deductions, ZERO))

    @staticmethod
    def compute_lines_hash(earnings: list[EarningLine], deductions: list[DeductionLine]) -> str:
        """Deterministic fingerprint of a payslip's lines.

        Identical inputs produce identical hashes, which is how recalculation
        reproducibility is checked.
        """
        canonical = {
            "earnings": [
                [line.type_code, line.description, line.amount, line.hours, line.days, line.rate, line.is_taxable]
                for line in earnings
            ],
            "deductions": [
                [line.type_code, line.description, line.amount, line.employer_share,
                 line.reference_type, line.reference_id]
                for line in deductions
            ],
        }
        json_str = json.dumps(to_jsonable(canonical), sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]
