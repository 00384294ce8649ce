"""Module-permission checks consulted before every run operation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol
from uuid import UUID

from payroll_run_engine.exceptions import PermissionDeniedError

PAYROLL_MODULE = "payroll"


class Role(str, Enum):
    COMPANY_ADMIN = "COMPANY_ADMIN"
    HR_ADMIN = "HR_ADMIN"
    PAYROLL_ADMIN = "PAYROLL_ADMIN"
    EMPLOYEE = "EMPLOYEE"
    VIEWER = "VIEWER"


@dataclass(frozen=True)
class Actor:
    """The caller of a service operation."""

    user_id: UUID | None
    company_id: UUID
    role: str


class AccessPolicy(Protocol):
    async def has_module_access(self, actor: Actor, company_id: UUID, module: str) -> bool: ...


class RoleAccessPolicy:
    """Grants modules by company role; actors only act on their own company."""

    MODULE_ROLES: dict[str, frozenset[Role]] = {
        PAYROLL_MODULE: frozenset({Role.COMPANY_ADMIN, Role.HR_ADMIN, Role.PAYROLL_ADMIN}),
    }

    async def has_module_access(self, actor: Actor, company_id: UUID, module: str) -> bool:
        if actor.company_id != company_id:
            return False
        try:
            role = Role(actor.role)
        except ValueError:
            return False
        return role in self.MODULE_ROLES.get(module, frozenset())


async def ensure_payroll_access(policy: AccessPolicy, actor: Actor, company_id: UUID | None = None) -> None:
    """Raise PermissionDeniedError unless the actor may run payroll for the company."""
    target = company_id or actor.company_id
    if not await policy.has_module_access(actor, target, PAYROLL_MODULE):
        raise PermissionDeniedError()
