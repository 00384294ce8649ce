"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.database import init_db
from payroll_run_engine.services.authorization import Actor


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session per request; committed when the handler returns normally."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _parse_uuid(value: str | None, header: str, required: bool = True) -> UUID | None:
    if not value:
        if required:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{header} header is required",
            )
        return None
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


async def get_actor(
    x_company_id: Annotated[str | None, Header()] = None,
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the calling actor from the identity headers."""
    return Actor(
        user_id=_parse_uuid(x_user_id, "X-User-ID", required=False),
        company_id=_parse_uuid(x_company_id, "X-Company-ID"),
        role=(x_user_role or "").upper(),
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
