"""Leave router — submit, edit, cancel, approve/reject, workflow views, balances.

All endpoints require authentication; approver checks happen in the
service through the authorization gate.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leaveflow.auth.dependencies import get_current_principal
from leaveflow.auth.principal import Principal
from leaveflow.common.constants import LeaveStatus
from leaveflow.common.rate_limit import limiter
from leaveflow.config import settings
from leaveflow.database import get_db
from leaveflow.leave.schemas import (
    LeaveDecisionRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveStatsOut,
    LeaveSummaryOut,
    TimelineEntry,
    WorkflowStatusOut,
)
from leaveflow.leave.service import LeaveService
from leaveflow.ledger.schemas import LeaveBalanceOut
from leaveflow.ledger.service import LedgerService

router = APIRouter(prefix="", tags=["leave-requests"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestOut, status_code=201)
@limiter.limit(settings.CREATE_RATE_LIMIT)
async def create_leave_request(
    request: Request,
    body: LeaveRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Submit a leave request. Holds the days against the caller's balance."""
    return await LeaveService.create_request(db, principal, body)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=list[LeaveRequestOut])
async def list_leave_requests(
    year: Optional[int] = Query(None, description="Only requests starting in this year"),
    scope: str = Query("my", pattern="^(my|team|all)$"),
    status: Optional[LeaveStatus] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """The caller's requests, their team's requests, or all requests."""
    return await LeaveService.list_requests(
        db, principal, year=year, scope=scope, status=status,
    )


# ── GET /pending ────────────────────────────────────────────────────

@router.get("/pending", response_model=list[LeaveRequestOut])
async def pending_approvals(
    level: Optional[str] = Query(None, alias="type", description="team-lead | hr | management"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Requests waiting on a step the caller may decide."""
    return await LeaveService.get_pending_approvals(db, principal, level)


# ── GET /stats ──────────────────────────────────────────────────────

@router.get("/stats", response_model=LeaveStatsOut)
async def leave_stats(
    year: Optional[int] = Query(None, description="Defaults to current year"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Counts of the caller's requests by status."""
    return await LeaveService.get_stats(db, principal, year or date.today().year)


# ── GET /summary ────────────────────────────────────────────────────

@router.get("/summary", response_model=LeaveSummaryOut)
async def leave_summary(
    year: Optional[int] = Query(None, description="Defaults to current year"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Organisation-wide counts by status, leave type and start month."""
    return await LeaveService.get_summary(db, principal, year or date.today().year)


# ── GET /balance ────────────────────────────────────────────────────

@router.get("/balance", response_model=list[LeaveBalanceOut])
async def my_balances(
    year: Optional[int] = Query(None, description="Defaults to current year"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """The caller's balance for every leave type."""
    return await LedgerService.get_balances(
        db, principal.user_id, year or date.today().year,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_request(db, request_id, principal)


# ── PUT /{id} ───────────────────────────────────────────────────────

@router.put("/{request_id}", response_model=LeaveRequestOut)
async def update_leave_request(
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Edit a pending request (requester only)."""
    return await LeaveService.update_request(db, request_id, principal, body)


# ── DELETE /{id} ────────────────────────────────────────────────────

@router.delete("/{request_id}", status_code=204)
async def cancel_leave_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a request that is not yet fully approved."""
    await LeaveService.cancel(db, request_id, principal)


# ── POST /{id}/approve ──────────────────────────────────────────────

@router.post("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave_request(
    request_id: uuid.UUID,
    body: Optional[LeaveDecisionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Approve the next pending step."""
    body = body or LeaveDecisionRequest()
    return await LeaveService.approve(
        db, request_id, principal, comments=body.comments, step=body.step,
    )


# ── POST /{id}/reject ───────────────────────────────────────────────

@router.post("/{request_id}/reject", status_code=204)
async def reject_leave_request(
    request_id: uuid.UUID,
    body: Optional[LeaveDecisionRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Reject at the current pending step."""
    body = body or LeaveDecisionRequest()
    await LeaveService.reject(
        db, request_id, principal, comments=body.comments, step=body.step,
    )


# ── GET /{id}/workflow ──────────────────────────────────────────────

@router.get("/{request_id}/workflow", response_model=WorkflowStatusOut)
async def workflow_status(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_workflow_status(db, request_id, principal)


# ── GET /{id}/timeline ──────────────────────────────────────────────

@router.get("/{request_id}/timeline", response_model=list[TimelineEntry])
async def timeline(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Submission, step decisions and cancellation, oldest first."""
    return await LeaveService.get_timeline(db, request_id, principal)
