"""Authenticated principal and role lookup.

Roles are resolved per request through a ``RoleProvider`` rather than
being stored on users, leave requests or balances.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaveflow.auth.models import RoleAssignment
from leaveflow.common.constants import UserRole


@dataclass(frozen=True)
class Principal:
    """The caller of an engine operation."""

    user_id: uuid.UUID
    roles: frozenset[UserRole] = field(default_factory=frozenset)
    team_lead_id: Optional[uuid.UUID] = None

    def has_role(self, *roles: UserRole) -> bool:
        return not self.roles.isdisjoint(roles)

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN in self.roles

    @classmethod
    def of(
        cls,
        user_id: uuid.UUID,
        roles: Iterable[UserRole] = (),
        team_lead_id: Optional[uuid.UUID] = None,
    ) -> Principal:
        return cls(user_id=user_id, roles=frozenset(roles), team_lead_id=team_lead_id)


class RoleProvider(Protocol):
    async def roles_for(self, db: AsyncSession, user_id: uuid.UUID) -> frozenset[UserRole]:
        ...


class SqlRoleProvider:
    """Reads active rows from ``role_assignments``; every user is an EMPLOYEE."""

    async def roles_for(self, db: AsyncSession, user_id: uuid.UUID) -> frozenset[UserRole]:
        result = await db.execute(
            select(RoleAssignment.role).where(
                RoleAssignment.user_id == user_id,
                RoleAssignment.is_active.is_(True),
            )
        )
        return frozenset(result.scalars().all()) | {UserRole.EMPLOYEE}


role_provider: RoleProvider = SqlRoleProvider()
