"""Payroll run services."""

from payroll_run_engine.services.adjustment_service import AdjustmentKind, AdjustmentService
from payroll_run_engine.services.payroll_run_service import (
    CalculationSummary,
    PayrollRunService,
    RunActionResult,
)
from payroll_run_engine.services.state_machine import RunStateMachine, RunStatus, StepName, StepStatus
from payroll_run_engine.services.validation_service import ValidationReport, ValidationService

__all__ = [
    "AdjustmentKind",
    "AdjustmentService",
    "CalculationSummary",
    "PayrollRunService",
    "RunActionResult",
    "RunStateMachine",
    "RunStatus",
    "StepName",
    "StepStatus",
    "ValidationReport",
    "ValidationService",
]
