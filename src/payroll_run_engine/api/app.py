"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_run_engine.api.routes import health_router, payroll_runs_router
from payroll_run_engine.config import get_settings
from payroll_run_engine.database import dispose_db, init_db
from payroll_run_engine.exceptions import (
    ActiveRunExistsError,
    ConcurrentTransitionError,
    PayPeriodNotFoundError,
    PayrollRunError,
    PayslipNotFoundError,
    PermissionDeniedError,
    RunNotFoundError,
)
from payroll_run_engine.logging_config import configure_logging

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[PayrollRunError], int] = {
    RunNotFoundError: status.HTTP_404_NOT_FOUND,
    PayPeriodNotFoundError: status.HTTP_404_NOT_FOUND,
    PayslipNotFoundError: status.HTTP_404_NOT_FOUND,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    ActiveRunExistsError: status.HTTP_409_CONFLICT,
    ConcurrentTransitionError: status.HTTP_409_CONFLICT,
}


def status_for(exc: PayrollRunError) -> int:
    for exc_type, code in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging(get_settings().log_level)
    init_db()
    yield
    # Shutdown
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Payroll Run Engine API",
        description="Philippine payroll run calculation engine",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PayrollRunError)
    async def payroll_run_exception_handler(request: Request, exc: PayrollRunError) -> JSONResponse:
        """Map typed service errors to status codes."""
        return JSONResponse(
            status_code=status_for(exc),
            content={"detail": exc.message, "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app
