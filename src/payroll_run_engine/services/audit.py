"""Audit trail for run transitions and payslip-affecting operations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_run_engine.calculators.types import to_jsonable
from payroll_run_engine.models import AuditLog


@dataclass(frozen=True)
class FieldChange:
    field_name: str
    old_value: Any = None
    new_value: Any = None


@dataclass(frozen=True)
class AuditEntry:
    """One audited action: (table, record, action, actor, reason, changes)."""

    table_name: str
    record_id: str
    action: str
    actor_id: UUID | None = None
    reason: str | None = None
    changes: tuple[FieldChange, ...] = field(default_factory=tuple)


class AuditSink(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...


def audit_text(value: Any) -> str | None:
    """Scalars and dates as plain text, structures as JSON."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (str, int, float, bool, Decimal, UUID)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return json.dumps(to_jsonable(value), sort_keys=True)


class DatabaseAuditSink:
    """Writes one AuditLog row per field change inside the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, entry: AuditEntry) -> None:
        changes = entry.changes or (None,)
        for change in changes:
            self.session.add(
                AuditLog(
                    table_name=entry.table_name,
                    record_id=entry.record_id,
                    action=entry.action,
                    user_id=entry.actor_id,
                    reason=entry.reason,
                    field_name=change.field_name if change else None,
                    old_value=audit_text(change.old_value) if change else None,
                    new_value=audit_text(change.new_value) if change else None,
                )
            )
