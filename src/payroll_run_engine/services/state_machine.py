"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import Any

from payroll_run_engine.exceptions import InvalidTransitionError
from payroll_run_engine.models import PayrollProcessStep, PayrollRun
from payroll_run_engine.models.base import utcnow


class RunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    VALIDATING = "VALIDATING"
    PROCESSING = "PROCESSING"
    COMPUTED = "COMPUTED"
    FOR_REVIEW = "FOR_REVIEW"
    APPROVED = "APPROVED"
    FOR_PAYMENT = "FOR_PAYMENT"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class StepName(str, Enum):
    """The six pipeline steps, in order."""

    CREATE_RUN = "CREATE_RUN"
    VALIDATE_DATA = "VALIDATE_DATA"
    CALCULATE_PAYROLL = "CALCULATE_PAYROLL"
    REVIEW_ADJUST = "REVIEW_ADJUST"
    GENERATE_PAYSLIPS = "GENERATE_PAYSLIPS"
    CLOSE_RUN = "CLOSE_RUN"

    @property
    def number(self) -> int:
        return list(StepName).index(self) + 1

    @classmethod
    def for_number(cls, step_number: int) -> StepName:
        return list(cls)[step_number - 1]


# A period may hold at most one run in any of these statuses.
ACTIVE_STATUSES = frozenset(
    {
        RunStatus.DRAFT,
        RunStatus.VALIDATING,
        RunStatus.PROCESSING,
        RunStatus.COMPUTED,
        RunStatus.FOR_REVIEW,
        RunStatus.APPROVED,
        RunStatus.FOR_PAYMENT,
    }
)


class RunStateMachine:
    """State machine for a payroll run and its six process steps.

    Allowed status transitions:
    - DRAFT → VALIDATING (validation passed) or DRAFT (failed again)
    - VALIDATING → PROCESSING (calculate), DRAFT (re-validation failed)
    - PROCESSING → COMPUTED, or back to VALIDATING when calculation fails
    - COMPUTED → FOR_REVIEW, PROCESSING (recalculate)
    - FOR_REVIEW → FOR_PAYMENT (payslips generated), PROCESSING (recalculate)
    - FOR_PAYMENT/APPROVED → PAID (close)
    - PAID/APPROVED/FOR_PAYMENT → FOR_REVIEW (reopen)

    The machine owns the run together with its step rows; every transition
    method updates both so they cannot drift apart. Callers must load
    ``run.process_steps`` before wrapping a run.
    """

    VALID_TRANSITIONS: dict[RunStatus, list[RunStatus]] = {
        RunStatus.DRAFT: [RunStatus.DRAFT, RunStatus.VALIDATING],
        RunStatus.VALIDATING: [RunStatus.DRAFT, RunStatus.VALIDATING, RunStatus.PROCESSING],
        RunStatus.PROCESSING: [RunStatus.COMPUTED, RunStatus.VALIDATING],
        RunStatus.COMPUTED: [
            RunStatus.DRAFT,
            RunStatus.VALIDATING,
            RunStatus.PROCESSING,
            RunStatus.FOR_REVIEW,
        ],
        RunStatus.FOR_REVIEW: [
            RunStatus.DRAFT,
            RunStatus.VALIDATING,
            RunStatus.PROCESSING,
            RunStatus.FOR_REVIEW,
            RunStatus.FOR_PAYMENT,
        ],
        RunStatus.APPROVED: [RunStatus.FOR_PAYMENT, RunStatus.PAID, RunStatus.FOR_REVIEW],
        RunStatus.FOR_PAYMENT: [RunStatus.PAID, RunStatus.FOR_REVIEW],
        RunStatus.PAID: [RunStatus.FOR_REVIEW],
        RunStatus.CANCELLED: [],  # Terminal state
    }

    # Validation may run again until payslips are generated
    VALIDATION_ALLOWED = frozenset(
        {RunStatus.DRAFT, RunStatus.VALIDATING, RunStatus.COMPUTED, RunStatus.FOR_REVIEW}
    )

    # Statuses where recalculation is allowed
    CALCULATION_ALLOWED = frozenset({RunStatus.VALIDATING, RunStatus.COMPUTED, RunStatus.FOR_REVIEW})

    # Statuses where payslip lines can be adjusted by hand
    ADJUSTMENT_ALLOWED = frozenset({RunStatus.COMPUTED, RunStatus.FOR_REVIEW})

    CLOSABLE = frozenset({RunStatus.FOR_PAYMENT, RunStatus.APPROVED})

    REOPENABLE = frozenset({RunStatus.PAID, RunStatus.APPROVED, RunStatus.FOR_PAYMENT})

    STEP_COUNT = 6

    def __init__(self, run: PayrollRun):
        self.run = run
        self.steps = {step.step_number: step for step in run.process_steps}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(RunStatus(from_status), [])
        return RunStatus(to_status) in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str, reason: str | None = None) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(RunStatus(from_status).value, RunStatus(to_status).value, reason)

    @classmethod
    def initial_steps(cls, scope_notes: dict[str, Any] | None = None) -> list[PayrollProcessStep]:
        """Step rows for a new run: step 1 done, step 2 in progress."""
        now = utcnow()
        steps = []
        for name in StepName:
            if name == StepName.CREATE_RUN:
                status = StepStatus.COMPLETED
            elif name == StepName.VALIDATE_DATA:
                status = StepStatus.IN_PROGRESS
            else:
                status = StepStatus.PENDING
            steps.append(
                PayrollProcessStep(
                    step_number=name.number,
                    step_name=name.value,
                    status=status.value,
                    is_completed=status == StepStatus.COMPLETED,
                    completed_at=now if status == StepStatus.COMPLETED else None,
                    notes=scope_notes if name == StepName.CREATE_RUN else None,
                )
            )
        return steps

    # ===== Queries =====

    @property
    def status(self) -> RunStatus:
        return RunStatus(self.run.status_code)

    def step(self, step_number: int) -> PayrollProcessStep:
        return self.steps[step_number]

    def is_completed(self, step_number: int) -> bool:
        step = self.steps.get(step_number)
        return bool(step and step.is_completed)

    def validation_errors(self) -> list[str]:
        notes = self.step(StepName.VALIDATE_DATA.number).notes
        if isinstance(notes, dict):
            return list(notes.get("errors") or [])
        return []

    # ===== Mutations =====

    def move_to(self, to_status: RunStatus, step: StepName, reason: str | None = None) -> RunStatus:
        """Change status and current step together; returns the previous status."""
        from_status = self.status
        self.validate_transition(from_status, to_status, reason)
        self.run.status_code = to_status.value
        self.set_current_step(step)
        return from_status

    def set_current_step(self, step: StepName) -> None:
        """Move the step pointer without a status change."""
        self.run.current_step_number = step.number
        self.run.current_step_name = step.value

    def set_step(self, step: StepName, status: StepStatus, notes: Any = None, keep_notes: bool = True) -> None:
        row = self.step(step.number)
        row.status = status.value
        row.is_completed = status == StepStatus.COMPLETED
        row.completed_at = utcnow() if status == StepStatus.COMPLETED else None
        if notes is not None or not keep_notes:
            row.notes = notes

    def reset_steps(self, *steps: StepName) -> None:
        for step in steps:
            self.set_step(step, StepStatus.PENDING)

    def complete_steps(self, *steps: StepName) -> None:
        """Mark steps completed, leaving already-completed ones untouched."""
        for step in steps:
            if not self.is_completed(step.number):
                self.set_step(step, StepStatus.COMPLETED)

    # ===== Guards =====

    def require_step(self, step: StepName, to_status: RunStatus, message: str) -> None:
        """Reject a transition whose prerequisite step is not completed."""
        if not self.is_completed(step.number):
            raise InvalidTransitionError(self.status.value, to_status.value, message)

    def require_status(self, allowed: frozenset[RunStatus], to_status: RunStatus, message: str) -> None:
        if self.status not in allowed:
            raise InvalidTransitionError(self.status.value, to_status.value, message)

    def require_step_at_most(self, step_number: int, to_status: RunStatus, message: str) -> None:
        if self.run.current_step_number > step_number or self.status == RunStatus.PAID:
            raise InvalidTransitionError(self.status.value, to_status.value, message)
