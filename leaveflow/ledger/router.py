"""Admin balance router — view, allocate and reset leave balances, plus
organisation-wide listing and utilisation stats.

All endpoints require the ADMIN or HR role.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leaveflow.auth.dependencies import require_role
from leaveflow.auth.principal import Principal
from leaveflow.common.constants import UserRole
from leaveflow.database import get_db
from leaveflow.ledger.schemas import (
    AllocationUpdate,
    BalanceStatsOut,
    BulkAllocationUpdate,
    LeaveBalanceOut,
    UserBalancesOut,
)
from leaveflow.ledger.service import LedgerService

router = APIRouter(prefix="", tags=["leave-balances"])

_admin_dep = require_role(UserRole.ADMIN, UserRole.HR)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=list[UserBalancesOut])
async def list_all_balances(
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    include_inactive: bool = Query(False),
    principal: Principal = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Every user's balances for one year."""
    return await LedgerService.list_all_balances(
        db, year or date.today().year, include_inactive=include_inactive,
    )


# ── GET /stats ──────────────────────────────────────────────────────

@router.get("/stats", response_model=BalanceStatsOut)
async def utilization_stats(
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    principal: Principal = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Allocated, used, remaining, carried and held days per leave type."""
    return await LedgerService.get_utilization_stats(db, year or date.today().year)


# ── GET /user/{id} ──────────────────────────────────────────────────

@router.get("/user/{user_id}", response_model=list[LeaveBalanceOut])
async def get_user_balances(
    user_id: uuid.UUID,
    year: Optional[int] = Query(None, description="Leave year; defaults to current year"),
    principal: Principal = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """All leave-type balances of a user for one year."""
    return await LedgerService.get_user_balances(db, user_id, year or date.today().year)


# ── PUT /user/{id} ──────────────────────────────────────────────────

@router.put("/user/{user_id}", response_model=LeaveBalanceOut)
async def set_allocation(
    user_id: uuid.UUID,
    body: AllocationUpdate,
    principal: Principal = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Overwrite allocation and carry-over for one leave type."""
    return await LedgerService.admin_set_allocation(
        db,
        user_id,
        body.leave_type,
        body.year or date.today().year,
        body.total_allocated,
        body.carry_over_days,
        actor_id=principal.user_id,
    )


# ── POST /user/{id}/reset ───────────────────────────────────────────

@router.post("/user/{user_id}/reset", response_model=list[LeaveBalanceOut])
async def reset_for_new_year(
    user_id: uuid.UUID,
    year: Optional[int] = Query(None, description="Year to reset; defaults to current year"),
    principal: Principal = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Grant default allocations for the year with capped carry-over."""
    return await LedgerService.reset_for_new_year(
        db, user_id, year or date.today().year, actor_id=principal.user_id,
    )


# ── PUT /user/{id}/bulk ─────────────────────────────────────────────

@router.put("/user/{user_id}/bulk", response_model=list[LeaveBalanceOut])
async def bulk_set_allocation(
    user_id: uuid.UUID,
    body: BulkAllocationUpdate,
    principal: Principal = Depends(_admin_dep),
    db: AsyncSession = Depends(get_db),
):
    """Overwrite allocation and carry-over for several leave types at once."""
    return await LedgerService.bulk_set_allocation(
        db,
        user_id,
        body.year or date.today().year,
        body.leave_balances,
        actor_id=principal.user_id,
    )
