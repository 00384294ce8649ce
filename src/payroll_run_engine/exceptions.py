"""Typed exceptions for payroll run operations.

Every exception carries a machine-readable ``code`` so the API layer can map
it to a status code without parsing messages:

    PayrollRunError
    +-- RunNotFoundError            RUN_NOT_FOUND
    +-- PayPeriodNotFoundError      PAY_PERIOD_NOT_FOUND
    +-- PayslipNotFoundError        PAYSLIP_NOT_FOUND
    +-- PayPeriodNotOpenError       PAY_PERIOD_NOT_OPEN
    +-- ActiveRunExistsError        ACTIVE_RUN_EXISTS
    +-- NoEligibleEmployeesError    NO_ELIGIBLE_EMPLOYEES
    +-- InvalidTransitionError      INVALID_TRANSITION
    +-- ConcurrentTransitionError   CONCURRENT_TRANSITION
    +-- PermissionDeniedError       PERMISSION_DENIED
    +-- CalculationFailedError      CALCULATION_FAILED
    +-- AdjustmentNotAllowedError   ADJUSTMENT_NOT_ALLOWED
"""

from __future__ import annotations

from uuid import UUID


class PayrollRunError(Exception):
    """Base class for payroll run errors."""

    code: str = "PAYROLL_RUN_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RunNotFoundError(PayrollRunError):
    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: UUID):
        self.run_id = run_id
        super().__init__("Payroll run not found.")


class PayPeriodNotFoundError(PayrollRunError):
    code = "PAY_PERIOD_NOT_FOUND"

    def __init__(self, pay_period_id: UUID):
        self.pay_period_id = pay_period_id
        super().__init__("Pay period not found for active company.")


class PayslipNotFoundError(PayrollRunError):
    code = "PAYSLIP_NOT_FOUND"

    def __init__(self, payslip_id: UUID):
        self.payslip_id = payslip_id
        super().__init__("Payslip not found.")


class PayPeriodNotOpenError(PayrollRunError):
    code = "PAY_PERIOD_NOT_OPEN"

    def __init__(self) -> None:
        super().__init__("Selected pay period is not open.")


class ActiveRunExistsError(PayrollRunError):
    """Raised when the period already has a non-terminal run."""

    code = "ACTIVE_RUN_EXISTS"

    def __init__(self, run_number: str):
        self.run_number = run_number
        super().__init__(
            f"A payroll run is already in progress for this period ({run_number})."
        )


class NoEligibleEmployeesError(PayrollRunError):
    code = "NO_ELIGIBLE_EMPLOYEES"

    def __init__(self, message: str = "No eligible employees matched this payroll run scope."):
        super().__init__(message)


class InvalidTransitionError(PayrollRunError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = reason or f"Invalid transition from '{from_status}' to '{to_status}'"
        super().__init__(msg)


class ConcurrentTransitionError(PayrollRunError):
    """Raised when a conditional update matched zero rows."""

    code = "CONCURRENT_TRANSITION"


class PermissionDeniedError(PayrollRunError):
    code = "PERMISSION_DENIED"

    def __init__(self, message: str = "You do not have access to payroll operations."):
        super().__init__(message)


class CalculationFailedError(PayrollRunError):
    """Raised after a failed calculation has been recorded on step 3."""

    code = "CALCULATION_FAILED"

    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(f"Failed to calculate payroll run: {cause}")


class AdjustmentNotAllowedError(PayrollRunError):
    code = "ADJUSTMENT_NOT_ALLOWED"
