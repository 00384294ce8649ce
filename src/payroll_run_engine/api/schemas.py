"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from payroll_run_engine.calculators.types import RunScope, RunType
from payroll_run_engine.services.adjustment_service import AdjustmentKind


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for creating a new payroll run."""

    pay_period_id: UUID
    run_type: RunType = RunType.REGULAR
    department_ids: list[UUID] = Field(default_factory=list)
    branch_ids: list[UUID] = Field(default_factory=list)
    employee_ids: list[UUID] = Field(default_factory=list)

    def to_scope(self) -> RunScope:
        return RunScope(
            department_ids=tuple(self.department_ids),
            branch_ids=tuple(self.branch_ids),
            employee_ids=tuple(self.employee_ids),
        )


class ProcessStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_number: int
    step_name: str
    status: str
    is_completed: bool
    completed_at: datetime | None = None
    notes: Any | None = None


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    pay_period_id: UUID
    run_number: str
    run_type_code: str
    status_code: str
    current_step_number: int
    current_step_name: str
    scope: dict[str, Any] | None = None
    total_employees: int
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employer_contributions: Decimal
    total_employer_cost: Decimal
    processed_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    process_steps: list[ProcessStepResponse] = Field(default_factory=list)


class RunActionResponse(BaseModel):
    """Outcome of a workflow transition."""

    ok: bool
    message: str
    run_id: UUID | None = None
    run_number: str | None = None


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: list[str]
    warnings: list[str]
    employee_count: int
    diagnostics: dict[str, Any] = Field(default_factory=dict)
    dtr_summary: dict[str, Any] = Field(default_factory=dict)
    pre_payroll_report: dict[str, int] = Field(default_factory=dict)


class CalculationResponse(BaseModel):
    run_id: UUID
    message: str
    processed_count: int
    skipped_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_employer_contributions: Decimal
    total_employer_cost: Decimal


# ============================================================================
# Payslip schemas
# ============================================================================


class PayslipEarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_number: int
    earning_type_id: UUID
    description: str
    amount: Decimal
    hours: Decimal | None = None
    days: Decimal | None = None
    rate: Decimal | None = None
    is_taxable: bool


class PayslipDeductionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_number: int
    deduction_type_id: UUID
    description: str
    amount: Decimal
    employer_share: Decimal | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None


class PayslipResponse(BaseModel):
    """Schema for a payslip with its ordered line items."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    payslip_number: str
    basic_pay: Decimal
    gross_pay: Decimal
    total_earnings: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    sss_employee: Decimal
    sss_employer: Decimal
    philhealth_employee: Decimal
    philhealth_employer: Decimal
    pagibig_employee: Decimal
    pagibig_employer: Decimal
    withholding_tax: Decimal
    ytd_gross_pay: Decimal
    ytd_net_pay: Decimal
    generated_at: datetime | None = None
    earnings: list[PayslipEarningResponse] = Field(default_factory=list)
    deductions: list[PayslipDeductionResponse] = Field(default_factory=list)


class AdjustmentCreate(BaseModel):
    """Schema for a manual adjustment line."""

    kind: AdjustmentKind
    description: str = Field(min_length=1, max_length=200)
    amount: Decimal = Field(gt=0)
    is_taxable: bool = True


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    detail: str
    code: str | None = None
