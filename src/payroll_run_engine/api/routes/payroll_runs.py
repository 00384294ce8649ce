"""Payroll run API endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from payroll_run_engine.api.dependencies import CurrentActor, DbSession
from payroll_run_engine.api.schemas import (
    AdjustmentCreate,
    CalculationResponse,
    ErrorResponse,
    PayrollRunCreate,
    PayrollRunResponse,
    PayslipResponse,
    RunActionResponse,
    ValidationResponse,
)
from payroll_run_engine.services.adjustment_service import AdjustmentService
from payroll_run_engine.services.payroll_run_service import PayrollRunService, RunActionResult

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _action(result: RunActionResult) -> RunActionResponse:
    return RunActionResponse(
        ok=result.ok,
        message=result.message,
        run_id=result.run_id,
        run_number=result.run_number,
    )


# ============================================================================
# Payroll run CRUD
# ============================================================================


@router.post(
    "",
    response_model=RunActionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_payroll_run(
    db: DbSession,
    actor: CurrentActor,
    payload: PayrollRunCreate,
) -> RunActionResponse:
    """Create a new payroll run for an open pay period."""
    result = await PayrollRunService(db).create_run(
        actor,
        payload.pay_period_id,
        run_type=payload.run_type,
        scope=payload.to_scope(),
    )
    return _action(result)


@router.get("/{run_id}", response_model=PayrollRunResponse, responses=ERROR_RESPONSES)
async def get_payroll_run(db: DbSession, actor: CurrentActor, run_id: UUID) -> PayrollRunResponse:
    """Get a payroll run with its process steps."""
    run = await PayrollRunService(db).get_run(run_id, actor)
    return PayrollRunResponse.model_validate(run)


@router.get("/{run_id}/payslips", response_model=list[PayslipResponse], responses=ERROR_RESPONSES)
async def list_payslips(db: DbSession, actor: CurrentActor, run_id: UUID) -> list[PayslipResponse]:
    payslips = await PayrollRunService(db).list_payslips(run_id, actor)
    return [PayslipResponse.model_validate(p) for p in payslips]


# ============================================================================
# Workflow steps
# ============================================================================


@router.post("/{run_id}/validate", response_model=ValidationResponse, responses=ERROR_RESPONSES)
async def validate_payroll_run(db: DbSession, actor: CurrentActor, run_id: UUID) -> ValidationResponse:
    """Run the data-completeness checks (step 2)."""
    report = await PayrollRunService(db).validate_run(run_id, actor)
    return ValidationResponse(is_valid=report.is_valid, **report.to_dict())


@router.post("/{run_id}/proceed-to-calculate", response_model=RunActionResponse, responses=ERROR_RESPONSES)
async def proceed_to_calculate(db: DbSession, actor: CurrentActor, run_id: UUID) -> RunActionResponse:
    return _action(await PayrollRunService(db).proceed_to_calculate(run_id, actor))


@router.post("/{run_id}/calculate", response_model=CalculationResponse, responses=ERROR_RESPONSES)
async def calculate_payroll_run(db: DbSession, actor: CurrentActor, run_id: UUID) -> CalculationResponse:
    """Regenerate every payslip of the run (step 3)."""
    summary = await PayrollRunService(db).calculate_run(run_id, actor)
    return CalculationResponse(
        run_id=summary.run_id,
        message=summary.message,
        processed_count=summary.processed_count,
        skipped_count=summary.skipped_count,
        total_gross=summary.total_gross,
        total_deductions=summary.total_deductions,
        total_net=summary.total_net,
        total_employer_contributions=summary.total_employer_contributions,
        total_employer_cost=summary.total_employer_cost,
    )


@router.post("/{run_id}/proceed-to-review", response_model=RunActionResponse, responses=ERROR_RESPONSES)
async def proceed_to_review(db: DbSession, actor: CurrentActor, run_id: UUID) -> RunActionResponse:
    return _action(await PayrollRunService(db).proceed_to_review(run_id, actor))


@router.post("/{run_id}/complete-review", response_model=RunActionResponse, responses=ERROR_RESPONSES)
async def complete_review(db: DbSession, actor: CurrentActor, run_id: UUID) -> RunActionResponse:
    return _action(await PayrollRunService(db).complete_review(run_id, actor))


@router.post("/{run_id}/generate-payslips", response_model=RunActionResponse, responses=ERROR_RESPONSES)
async def generate_payslips(db: DbSession, actor: CurrentActor, run_id: UUID) -> RunActionResponse:
    return _action(await PayrollRunService(db).generate_payslips(run_id, actor))


@router.post("/{run_id}/close", response_model=RunActionResponse, responses=ERROR_RESPONSES)
async def close_payroll_run(db: DbSession, actor: CurrentActor, run_id: UUID) -> RunActionResponse:
    """Close the run and lock a regular run's pay period. Safe to retry."""
    return _action(await PayrollRunService(db).close_run(run_id, actor))


@router.post("/{run_id}/reopen", response_model=RunActionResponse, responses=ERROR_RESPONSES)
async def reopen_payroll_run(db: DbSession, actor: CurrentActor, run_id: UUID) -> RunActionResponse:
    return _action(await PayrollRunService(db).reopen_run(run_id, actor))


# ============================================================================
# Manual adjustments
# ============================================================================


@router.post(
    "/{run_id}/payslips/{payslip_id}/adjustments",
    response_model=PayslipResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def add_adjustment(
    db: DbSession,
    actor: CurrentActor,
    run_id: UUID,
    payslip_id: UUID,
    payload: AdjustmentCreate,
) -> PayslipResponse:
    payslip = await AdjustmentService(db).add_adjustment(
        run_id,
        payslip_id,
        actor,
        kind=payload.kind,
        description=payload.description,
        amount=payload.amount,
        is_taxable=payload.is_taxable,
    )
    return PayslipResponse.model_validate(payslip)


@router.delete(
    "/{run_id}/payslips/{payslip_id}/adjustments/{line_id}",
    response_model=PayslipResponse,
    responses=ERROR_RESPONSES,
)
async def remove_adjustment(
    db: DbSession,
    actor: CurrentActor,
    run_id: UUID,
    payslip_id: UUID,
    line_id: UUID,
) -> PayslipResponse:
    payslip = await AdjustmentService(db).remove_adjustment(run_id, payslip_id, line_id, actor)
    return PayslipResponse.model_validate(payslip)
