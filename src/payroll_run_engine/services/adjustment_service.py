"""Manual payslip adjustments during Review/Adjust."""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_run_engine.calculators.numeric import round_currency, to_decimal
from payroll_run_engine.calculators.types import ReferenceType
from payroll_run_engine.exceptions import AdjustmentNotAllowedError, PayslipNotFoundError
from payroll_run_engine.models import EarningType, PayrollRun, Payslip, PayslipDeduction, PayslipEarning
from payroll_run_engine.services.audit import AuditEntry, AuditSink, DatabaseAuditSink, FieldChange
from payroll_run_engine.services.authorization import (
    AccessPolicy,
    Actor,
    RoleAccessPolicy,
    ensure_payroll_access,
)
from payroll_run_engine.services.payslip_materializer import LineTypeResolver, PayslipMaterializer
from payroll_run_engine.services.state_machine import RunStateMachine, RunStatus

logger = logging.getLogger(__name__)

ADJUSTMENT_CODE = "ADJUSTMENT"


class AdjustmentKind(str, Enum):
    EARNING = "EARNING"
    DEDUCTION = "DEDUCTION"


class AdjustmentService:
    """Adds and removes ADJUSTMENT lines on computed payslips.

    Both operations re-derive the payslip totals from its lines and the run
    aggregates from its payslips. Lines added here survive recalculation
    because Calculate carries adjustment lines over verbatim.
    """

    def __init__(
        self,
        session: AsyncSession,
        access_policy: AccessPolicy | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self.session = session
        self.access_policy = access_policy or RoleAccessPolicy()
        self.audit_sink = audit_sink or DatabaseAuditSink(session)
        self.materializer = PayslipMaterializer(session)

    async def add_adjustment(
        self,
        run_id: UUID,
        payslip_id: UUID,
        actor: Actor,
        kind: AdjustmentKind,
        description: str,
        amount: Decimal,
        is_taxable: bool = True,
    ) -> Payslip:
        await ensure_payroll_access(self.access_policy, actor)
        run, payslip = await self._load_editable(run_id, payslip_id, actor.company_id)

        amount = round_currency(to_decimal(amount))
        if amount <= 0:
            raise AdjustmentNotAllowedError("Adjustment amount must be greater than zero.")
        description = description.strip() or "Manual adjustment"

        resolver = LineTypeResolver(self.session, run.company_id)
        kind = AdjustmentKind(kind)
        if kind == AdjustmentKind.EARNING:
            line = PayslipEarning(
                line_number=_next_line_number(payslip.earnings),
                earning_type_id=await resolver.earning_type_id(ADJUSTMENT_CODE),
                description=description,
                amount=amount,
                is_taxable=is_taxable,
            )
            payslip.earnings.append(line)
        else:
            line = PayslipDeduction(
                line_number=_next_line_number(payslip.deductions),
                deduction_type_id=await resolver.deduction_type_id(ADJUSTMENT_CODE),
                description=description,
                amount=amount,
                reference_type=ReferenceType.ADJUSTMENT.value,
            )
            payslip.deductions.append(line)

        await self._apply_totals(run, payslip)
        await self._record_audit(
            payslip,
            actor,
            "PAYSLIP_ADJUSTMENT_UPSERT",
            (
                FieldChange("kind", new_value=kind.value),
                FieldChange("description", new_value=description),
                FieldChange("amount", new_value=amount),
                FieldChange("net_pay", new_value=payslip.net_pay),
            ),
        )
        logger.info(
            "Added %s adjustment %s to payslip %s", kind.value, amount, payslip.payslip_number
        )
        return payslip

    async def remove_adjustment(self, run_id: UUID, payslip_id: UUID, line_id: UUID, actor: Actor) -> Payslip:
        await ensure_payroll_access(self.access_policy, actor)
        run, payslip = await self._load_editable(run_id, payslip_id, actor.company_id)

        earning = next((line for line in payslip.earnings if line.id == line_id), None)
        deduction = next((line for line in payslip.deductions if line.id == line_id), None)
        if earning is not None:
            earning_type = await self.session.get(EarningType, earning.earning_type_id)
            if earning_type is None or earning_type.code != ADJUSTMENT_CODE:
                raise AdjustmentNotAllowedError("Only adjustment lines can be removed.")
            removed = earning
            payslip.earnings.remove(earning)
        elif deduction is not None:
            if deduction.reference_type != ReferenceType.ADJUSTMENT.value:
                raise AdjustmentNotAllowedError("Only adjustment lines can be removed.")
            removed = deduction
            payslip.deductions.remove(deduction)
        else:
            raise AdjustmentNotAllowedError("Adjustment line not found on this payslip.")

        await self.session.delete(removed)
        await self._apply_totals(run, payslip)
        await self._record_audit(
            payslip,
            actor,
            "PAYSLIP_ADJUSTMENT_REMOVE",
            (
                FieldChange("description", old_value=removed.description),
                FieldChange("amount", old_value=removed.amount),
                FieldChange("net_pay", new_value=payslip.net_pay),
            ),
        )
        logger.info("Removed adjustment line %s from payslip %s", line_id, payslip.payslip_number)
        return payslip

    async def _load_editable(self, run_id: UUID, payslip_id: UUID, company_id: UUID) -> tuple[PayrollRun, Payslip]:
        result = await self.session.execute(
            select(Payslip)
            .join(PayrollRun, Payslip.payroll_run_id == PayrollRun.id)
            .options(
                selectinload(Payslip.earnings),
                selectinload(Payslip.deductions),
                selectinload(Payslip.payroll_run),
            )
            .where(
                Payslip.id == payslip_id,
                Payslip.payroll_run_id == run_id,
                PayrollRun.company_id == company_id,
            )
        )
        payslip = result.scalar_one_or_none()
        if payslip is None:
            raise PayslipNotFoundError(payslip_id)

        run = payslip.payroll_run
        if RunStatus(run.status_code) not in RunStateMachine.ADJUSTMENT_ALLOWED:
            raise AdjustmentNotAllowedError(
                f"Payslips cannot be adjusted while the run is {run.status_code}."
            )
        return run, payslip

    async def _apply_totals(self, run: PayrollRun, payslip: Payslip) -> None:
        gross_delta, net_delta = PayslipMaterializer.recompute_payslip_totals(payslip)
        payslip.ytd_gross_pay = round_currency(to_decimal(payslip.ytd_gross_pay) + gross_delta)
        payslip.ytd_net_pay = round_currency(to_decimal(payslip.ytd_net_pay) + net_delta)
        await self.materializer.refresh_run_totals(run)

    async def _record_audit(
        self, payslip: Payslip, actor: Actor, reason: str, changes: tuple[FieldChange, ...]
    ) -> None:
        await self.audit_sink.record(
            AuditEntry(
                table_name="Payslip",
                record_id=str(payslip.id),
                action="UPDATE",
                actor_id=actor.user_id,
                reason=reason,
                changes=changes,
            )
        )
        await self.session.flush()


def _next_line_number(lines) -> int:
    return max((line.line_number for line in lines), default=0) + 1
