"""Payroll run service - orchestrates the six-step run pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_run_engine.calculators.engine import PayrollEngine
from payroll_run_engine.calculators.numeric import reporting_year
from payroll_run_engine.calculators.types import RunScope, RunType
from payroll_run_engine.config import Settings, get_settings
from payroll_run_engine.exceptions import (
    ActiveRunExistsError,
    CalculationFailedError,
    ConcurrentTransitionError,
    InvalidTransitionError,
    NoEligibleEmployeesError,
    PayPeriodNotFoundError,
    PayPeriodNotOpenError,
    RunNotFoundError,
)
from payroll_run_engine.models import (
    PayPeriod,
    PayPeriodPattern,
    PayrollProcessStep,
    PayrollRun,
    Payslip,
)
from payroll_run_engine.models.base import utcnow
from payroll_run_engine.services.audit import AuditEntry, AuditSink, DatabaseAuditSink, FieldChange
from payroll_run_engine.services.authorization import (
    AccessPolicy,
    Actor,
    RoleAccessPolicy,
    ensure_payroll_access,
)
from payroll_run_engine.services.loan_service import LoanService
from payroll_run_engine.services.payslip_materializer import PayslipMaterializer
from payroll_run_engine.services.state_machine import (
    ACTIVE_STATUSES,
    RunStateMachine,
    RunStatus,
    StepName,
    StepStatus,
)
from payroll_run_engine.services.validation_service import (
    ValidationReport,
    ValidationService,
    count_eligible_employees,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunActionResult:
    ok: bool
    message: str
    run_id: UUID | None = None
    run_number: str | None = None


@dataclass(frozen=True)
class CalculationSummary:
    """Outcome of a successful Calculate step."""

    run_id: UUID
    message: str
    processed_count: int
    skipped_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_employer_contributions: Decimal
    total_employer_cost: Decimal


class PayrollRunService:
    """Service for managing the payroll run lifecycle.

    Operations:
    - create_run: open a run for a pay period and scope
    - validate_run: data-completeness checks (step 2)
    - proceed_to_calculate / calculate_run: full regenerate of payslips (step 3)
    - proceed_to_review / complete_review: review and adjust (step 4)
    - generate_payslips: freeze output (step 5)
    - close_run / reopen_run: lock or unlock the period (step 6)

    Every operation checks module access first and writes an audit entry.
    The caller owns the transaction; only a failed calculation commits on
    its own so the failure survives the rollback of the partial work.
    """

    def __init__(
        self,
        session: AsyncSession,
        access_policy: AccessPolicy | None = None,
        audit_sink: AuditSink | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.access_policy = access_policy or RoleAccessPolicy()
        self.audit_sink = audit_sink or DatabaseAuditSink(session)
        self.settings = settings or get_settings()

    # ===== Queries =====

    async def get_run(self, run_id: UUID, actor: Actor) -> PayrollRun:
        await ensure_payroll_access(self.access_policy, actor)
        return await self._load_run(run_id, actor.company_id)

    async def list_payslips(self, run_id: UUID, actor: Actor) -> list[Payslip]:
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        result = await self.session.execute(
            select(Payslip)
            .options(selectinload(Payslip.earnings), selectinload(Payslip.deductions))
            .where(Payslip.payroll_run_id == run.id)
            .order_by(Payslip.payslip_number)
        )
        return list(result.scalars().all())

    async def next_run_number(self, company_id: UUID) -> str:
        """RUN-<reporting year>-<company run count + 1, five digits>."""
        year = reporting_year(datetime.now(timezone.utc))
        result = await self.session.execute(
            select(func.count(PayrollRun.id)).where(PayrollRun.company_id == company_id)
        )
        return f"RUN-{year}-{result.scalar_one() + 1:05d}"

    # ===== Step 1: create =====

    async def create_run(
        self,
        actor: Actor,
        pay_period_id: UUID,
        run_type: RunType = RunType.REGULAR,
        scope: RunScope | None = None,
    ) -> RunActionResult:
        """Create a run for an open period.

        Rejects periods that already hold an active run, and scopes that match
        no employee. The period's run guard is bumped with a conditional
        update so two concurrent creates cannot both succeed.
        """
        await ensure_payroll_access(self.access_policy, actor)
        scope = scope or RunScope()

        result = await self.session.execute(
            select(PayPeriod)
            .join(PayPeriodPattern, PayPeriod.pattern_id == PayPeriodPattern.id)
            .where(PayPeriod.id == pay_period_id, PayPeriodPattern.company_id == actor.company_id)
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise PayPeriodNotFoundError(pay_period_id)
        if period.status_code != "OPEN":
            raise PayPeriodNotOpenError()

        guard_version = period.run_guard_version
        active = await self.session.execute(
            select(PayrollRun.run_number)
            .where(
                PayrollRun.pay_period_id == period.id,
                PayrollRun.status_code.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(PayrollRun.created_at)
        )
        existing_number = active.scalars().first()
        if existing_number is not None:
            raise ActiveRunExistsError(existing_number)

        eligible = await count_eligible_employees(
            self.session, actor.company_id, period.pattern_id, scope, run_type, period.year
        )
        if eligible == 0:
            raise NoEligibleEmployeesError()

        guarded = await self.session.execute(
            update(PayPeriod)
            .where(PayPeriod.id == period.id, PayPeriod.run_guard_version == guard_version)
            .values(run_guard_version=guard_version + 1)
            .execution_options(synchronize_session=False)
        )
        if guarded.rowcount == 0:
            raise ConcurrentTransitionError("A payroll run was created for this period by another request.")

        run_number = await self.next_run_number(actor.company_id)
        run = PayrollRun(
            id=uuid4(),
            company_id=actor.company_id,
            pay_period_id=period.id,
            run_number=run_number,
            run_type_code=RunType(run_type).value,
            status_code=RunStatus.DRAFT.value,
            current_step_number=StepName.VALIDATE_DATA.number,
            current_step_name=StepName.VALIDATE_DATA.value,
            scope=scope.to_dict(),
            total_employees=eligible,
            created_by_id=actor.user_id,
        )
        run.process_steps = RunStateMachine.initial_steps({"scope": scope.to_dict()})
        self.session.add(run)
        await self.session.flush()

        await self._record_audit(
            run,
            actor,
            "CREATE_PAYROLL_RUN",
            action="CREATE",
            changes=(
                FieldChange("run_number", new_value=run_number),
                FieldChange("run_type_code", new_value=run.run_type_code),
                FieldChange("pay_period_id", new_value=period.id),
                FieldChange("total_employees", new_value=eligible),
            ),
        )
        logger.info("Created payroll run %s (%s) with %d employee(s)", run_number, run.id, eligible)
        return RunActionResult(True, f"Payroll run {run_number} created.", run.id, run_number)

    # ===== Step 2: validate =====

    async def validate_run(self, run_id: UUID, actor: Actor) -> ValidationReport:
        """Validate inputs; errors park the run at DRAFT with step 2 FAILED."""
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)
        machine.require_status(
            RunStateMachine.VALIDATION_ALLOWED,
            RunStatus.VALIDATING,
            "Payroll run can no longer be validated.",
        )

        report = await ValidationService(self.session, self.settings).validate(run)
        notes = {"validated_at": utcnow().isoformat(), **report.to_dict()}

        if report.errors:
            from_status = machine.move_to(RunStatus.DRAFT, StepName.VALIDATE_DATA)
            machine.set_step(StepName.VALIDATE_DATA, StepStatus.FAILED, notes=notes)
            machine.reset_steps(StepName.CALCULATE_PAYROLL)
        else:
            from_status = machine.move_to(RunStatus.VALIDATING, StepName.VALIDATE_DATA)
            machine.set_step(StepName.VALIDATE_DATA, StepStatus.COMPLETED, notes=notes)
        run.total_employees = report.employee_count

        await self._record_audit(
            run,
            actor,
            "VALIDATE_PAYROLL_RUN",
            changes=(
                FieldChange("validation_error_count", new_value=len(report.errors)),
                FieldChange("validation_warning_count", new_value=len(report.warnings)),
            ),
        )
        self._log_transition(run, from_status)
        return report

    async def proceed_to_calculate(self, run_id: UUID, actor: Actor) -> RunActionResult:
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)
        self._require_clean_validation(machine)
        machine.require_step_at_most(
            StepName.CALCULATE_PAYROLL.number,
            RunStatus.PROCESSING,
            "Run is already beyond the calculation step.",
        )

        machine.set_current_step(StepName.CALCULATE_PAYROLL)
        machine.set_step(StepName.CALCULATE_PAYROLL, StepStatus.IN_PROGRESS)

        await self._record_audit(
            run,
            actor,
            "PROCEED_TO_CALCULATE_PAYROLL",
            changes=(FieldChange("current_step_number", 2, StepName.CALCULATE_PAYROLL.number),),
        )
        logger.info("Run %s proceeded to calculation", run.run_number)
        return RunActionResult(True, "Validation reviewed. Proceeded to calculation step.", run.id)

    # ===== Step 3: calculate =====

    async def calculate_run(self, run_id: UUID, actor: Actor) -> CalculationSummary:
        """Regenerate every payslip of the run inside the caller's transaction.

        Manual adjustment lines and loan applications from a previous pass
        are carried over and reversed respectively before the old payslips
        are deleted. On any failure the partial work is rolled back, the run
        returns to VALIDATING with step 3 FAILED, and CalculationFailedError
        is raised.
        """
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)

        machine.require_step(
            StepName.VALIDATE_DATA,
            RunStatus.PROCESSING,
            "Payroll run must pass validation before calculation.",
        )
        self._require_clean_validation(machine)
        machine.require_status(
            RunStateMachine.CALCULATION_ALLOWED,
            RunStatus.PROCESSING,
            f"Payroll run cannot be calculated while {run.status_code}.",
        )
        if machine.is_completed(StepName.GENERATE_PAYSLIPS.number):
            raise InvalidTransitionError(
                run.status_code,
                RunStatus.PROCESSING.value,
                "Payslips have already been generated for this run.",
            )

        run_id, run_number = run.id, run.run_number
        from_status = machine.status

        try:
            machine.move_to(RunStatus.PROCESSING, StepName.CALCULATE_PAYROLL)
            machine.set_step(StepName.CALCULATE_PAYROLL, StepStatus.IN_PROGRESS)

            engine = PayrollEngine(self.session, self.settings)
            loans = LoanService(self.session)
            materializer = PayslipMaterializer(self.session)

            carry_over = await engine.load_adjustment_carry_over(run_id)
            await loans.reverse_run(run_id)
            await materializer.delete_run_payslips(run_id)

            calculation = await engine.calculate_run(run, carry_over)
            await materializer.materialize(run, calculation)

            period = await self.session.get(PayPeriod, run.pay_period_id)
            for result in calculation.results:
                await loans.apply(run, period.cutoff_end_date, result.deductions.loans.applied)

            run.total_employees = calculation.processed_count
            run.total_gross_pay = calculation.total_gross
            run.total_deductions = calculation.total_deductions
            run.total_net_pay = calculation.total_net
            run.total_employer_contributions = calculation.total_employer_contributions
            run.total_employer_cost = calculation.total_employer_cost
            run.processed_at = utcnow()
            run.processed_by_id = actor.user_id

            machine.move_to(RunStatus.COMPUTED, StepName.CALCULATE_PAYROLL)
            machine.set_step(StepName.CALCULATE_PAYROLL, StepStatus.COMPLETED, notes=calculation.trace.to_dict())
            machine.reset_steps(StepName.REVIEW_ADJUST, StepName.GENERATE_PAYSLIPS)

            await self._record_audit(
                run,
                actor,
                "CALCULATE_PAYROLL_RUN",
                changes=(
                    FieldChange("status_code", from_status.value, RunStatus.COMPUTED.value),
                    FieldChange("processed_employee_count", new_value=calculation.processed_count),
                    FieldChange("total_gross_pay", new_value=calculation.total_gross),
                    FieldChange("total_deductions", new_value=calculation.total_deductions),
                    FieldChange("total_net_pay", new_value=calculation.total_net),
                ),
            )
            await self.session.flush()
        except Exception as exc:
            logger.exception("Calculation failed for payroll run %s", run_number)
            await self._record_calculation_failure(run_id, exc)
            raise CalculationFailedError(exc) from exc

        self._log_transition(run, from_status)
        return CalculationSummary(
            run_id=run_id,
            message="Payroll calculation completed.",
            processed_count=calculation.processed_count,
            skipped_count=calculation.skipped_count,
            total_gross=calculation.total_gross,
            total_deductions=calculation.total_deductions,
            total_net=calculation.total_net,
            total_employer_contributions=calculation.total_employer_contributions,
            total_employer_cost=calculation.total_employer_cost,
        )

    async def _record_calculation_failure(self, run_id: UUID, exc: Exception) -> None:
        """Roll back the partial calculation and persist the failure on its own."""
        await self.session.rollback()
        await self.session.execute(
            update(PayrollRun)
            .where(PayrollRun.id == run_id)
            .values(
                status_code=RunStatus.VALIDATING.value,
                current_step_number=StepName.CALCULATE_PAYROLL.number,
                current_step_name=StepName.CALCULATE_PAYROLL.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            update(PayrollProcessStep)
            .where(
                PayrollProcessStep.payroll_run_id == run_id,
                PayrollProcessStep.step_number == StepName.CALCULATE_PAYROLL.number,
            )
            .values(
                status=StepStatus.FAILED.value,
                is_completed=False,
                completed_at=None,
                notes={"error": str(exc) or exc.__class__.__name__},
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    # ===== Step 4: review =====

    async def proceed_to_review(self, run_id: UUID, actor: Actor) -> RunActionResult:
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)
        machine.require_step(
            StepName.CALCULATE_PAYROLL,
            RunStatus.FOR_REVIEW,
            "Calculation step must be completed before proceeding.",
        )
        machine.require_step_at_most(
            StepName.CALCULATE_PAYROLL.number,
            RunStatus.FOR_REVIEW,
            "Run is already beyond calculation step.",
        )

        from_status = machine.move_to(RunStatus.FOR_REVIEW, StepName.REVIEW_ADJUST)
        machine.set_step(StepName.REVIEW_ADJUST, StepStatus.IN_PROGRESS)

        await self._record_audit(
            run,
            actor,
            "PROCEED_TO_REVIEW_PAYROLL",
            changes=(FieldChange("status_code", from_status.value, RunStatus.FOR_REVIEW.value),),
        )
        self._log_transition(run, from_status)
        return RunActionResult(True, "Calculation reviewed. Proceeded to review/adjust step.", run.id)

    async def complete_review(self, run_id: UUID, actor: Actor) -> RunActionResult:
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)
        machine.require_step(
            StepName.CALCULATE_PAYROLL,
            RunStatus.FOR_REVIEW,
            "Payroll must be calculated before review completion.",
        )
        message = "Review step is no longer editable for this run."
        machine.require_step_at_most(StepName.REVIEW_ADJUST.number, RunStatus.FOR_REVIEW, message)
        machine.require_status(RunStateMachine.ADJUSTMENT_ALLOWED, RunStatus.FOR_REVIEW, message)

        from_status = machine.move_to(RunStatus.FOR_REVIEW, StepName.GENERATE_PAYSLIPS)
        machine.set_step(StepName.REVIEW_ADJUST, StepStatus.COMPLETED)
        machine.set_step(StepName.GENERATE_PAYSLIPS, StepStatus.IN_PROGRESS)

        await self._record_audit(
            run,
            actor,
            "COMPLETE_PAYROLL_REVIEW",
            changes=(FieldChange("current_step_number", 4, StepName.GENERATE_PAYSLIPS.number),),
        )
        self._log_transition(run, from_status)
        return RunActionResult(True, "Payroll review completed. Ready to generate payslips.", run.id)

    # ===== Step 5: generate payslips =====

    async def generate_payslips(self, run_id: UUID, actor: Actor) -> RunActionResult:
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)
        machine.require_step(
            StepName.REVIEW_ADJUST,
            RunStatus.FOR_PAYMENT,
            "Review and adjustment step must be completed first.",
        )
        machine.require_step_at_most(
            StepName.GENERATE_PAYSLIPS.number,
            RunStatus.FOR_PAYMENT,
            "Payslip generation is no longer available for this run.",
        )

        counted = await self.session.execute(
            select(func.count(Payslip.id)).where(Payslip.payroll_run_id == run.id)
        )
        payslip_count = counted.scalar_one()
        if payslip_count == 0:
            raise InvalidTransitionError(
                run.status_code, RunStatus.FOR_PAYMENT.value, "No payslips found. Run calculation first."
            )

        await self.session.execute(
            update(Payslip)
            .where(Payslip.payroll_run_id == run.id)
            .values(generated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        from_status = machine.move_to(RunStatus.FOR_PAYMENT, StepName.CLOSE_RUN)
        machine.set_step(
            StepName.GENERATE_PAYSLIPS, StepStatus.COMPLETED, notes={"payslip_count": payslip_count}
        )
        machine.set_step(StepName.CLOSE_RUN, StepStatus.IN_PROGRESS)

        await self._record_audit(
            run,
            actor,
            "GENERATE_PAYSLIPS",
            changes=(
                FieldChange("status_code", from_status.value, RunStatus.FOR_PAYMENT.value),
                FieldChange("payslip_count", new_value=payslip_count),
            ),
        )
        self._log_transition(run, from_status)
        return RunActionResult(True, "Payslips generated. Review and proceed when ready.", run.id)

    # ===== Step 6: close / reopen =====

    async def close_run(self, run_id: UUID, actor: Actor) -> RunActionResult:
        """Mark the run PAID and lock a regular run's period.

        Safe to retry: an already-PAID run returns success without changes.
        The status change is a conditional update, so of two concurrent
        closes exactly one succeeds.
        """
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)

        if machine.status == RunStatus.PAID:
            return RunActionResult(True, "Payroll run is already closed and locked.", run.id)

        machine.require_status(
            RunStateMachine.CLOSABLE, RunStatus.PAID, "Payroll run is not in a closable state."
        )
        machine.require_step(
            StepName.GENERATE_PAYSLIPS,
            RunStatus.PAID,
            "Generate payslips step must be completed before closing run.",
        )

        from_status = machine.status
        now = utcnow()
        await self.session.flush()
        closed = await self.session.execute(
            update(PayrollRun)
            .where(
                PayrollRun.id == run.id,
                PayrollRun.status_code.in_([s.value for s in RunStateMachine.CLOSABLE]),
            )
            .values(
                status_code=RunStatus.PAID.value,
                current_step_number=StepName.CLOSE_RUN.number,
                current_step_name=StepName.CLOSE_RUN.value,
                paid_at=now,
                closed_by_id=actor.user_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if closed.rowcount == 0:
            raise ConcurrentTransitionError("Payroll run was already closed by another request.")
        await self.session.refresh(
            run,
            attribute_names=[
                "status_code",
                "current_step_number",
                "current_step_name",
                "paid_at",
                "closed_by_id",
                "updated_at",
            ],
        )

        machine.complete_steps(StepName.REVIEW_ADJUST, StepName.GENERATE_PAYSLIPS)
        machine.set_step(StepName.CLOSE_RUN, StepStatus.COMPLETED)

        if run.run_type_code == RunType.REGULAR.value:
            period = await self.session.get(PayPeriod, run.pay_period_id)
            period.status_code = "LOCKED"
            period.locked_at = now

        await self._record_audit(
            run,
            actor,
            "CLOSE_PAYROLL_RUN",
            changes=(FieldChange("status_code", from_status.value, RunStatus.PAID.value),),
        )
        self._log_transition(run, from_status)
        return RunActionResult(True, "Payroll run closed successfully.", run.id)

    async def reopen_run(self, run_id: UUID, actor: Actor) -> RunActionResult:
        await ensure_payroll_access(self.access_policy, actor)
        run = await self._load_run(run_id, actor.company_id)
        machine = RunStateMachine(run)
        machine.require_status(
            RunStateMachine.REOPENABLE,
            RunStatus.FOR_REVIEW,
            "Only approved/paid payroll runs can be reopened.",
        )

        from_status = machine.move_to(RunStatus.FOR_REVIEW, StepName.REVIEW_ADJUST)
        run.paid_at = None
        run.closed_by_id = None
        machine.set_step(StepName.REVIEW_ADJUST, StepStatus.IN_PROGRESS)
        machine.reset_steps(StepName.GENERATE_PAYSLIPS, StepName.CLOSE_RUN)

        if run.run_type_code == RunType.REGULAR.value:
            period = await self.session.get(PayPeriod, run.pay_period_id)
            period.status_code = "OPEN"
            period.locked_at = None

        await self._record_audit(
            run,
            actor,
            "REOPEN_PAYROLL_RUN",
            changes=(FieldChange("status_code", from_status.value, RunStatus.FOR_REVIEW.value),),
        )
        self._log_transition(run, from_status)
        return RunActionResult(True, "Payroll run reopened for review.", run.id)

    # ===== Helpers =====

    async def _load_run(self, run_id: UUID, company_id: UUID) -> PayrollRun:
        result = await self.session.execute(
            select(PayrollRun)
            .options(selectinload(PayrollRun.process_steps))
            .where(PayrollRun.id == run_id, PayrollRun.company_id == company_id)
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    @staticmethod
    def _require_clean_validation(machine: RunStateMachine) -> None:
        machine.require_step(
            StepName.VALIDATE_DATA, RunStatus.PROCESSING, "Validate step must be completed first."
        )
        if machine.validation_errors():
            raise InvalidTransitionError(
                machine.status.value,
                RunStatus.PROCESSING.value,
                "Validation errors still exist. Resolve them before proceeding.",
            )

    async def _record_audit(
        self,
        run: PayrollRun,
        actor: Actor,
        reason: str,
        action: str = "UPDATE",
        changes: tuple[FieldChange, ...] = (),
    ) -> None:
        await self.audit_sink.record(
            AuditEntry(
                table_name="PayrollRun",
                record_id=str(run.id),
                action=action,
                actor_id=actor.user_id,
                reason=reason,
                changes=changes,
            )
        )
        await self.session.flush()

    @staticmethod
    def _log_transition(run: PayrollRun, from_status: RunStatus) -> None:
        logger.info(
            "Payroll run %s (%s): %s -> %s",
            run.run_number,
            run.id,
            from_status.value,
            run.status_code,
        )
