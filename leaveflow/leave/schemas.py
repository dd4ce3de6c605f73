"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out                          → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leaveflow.common.constants import ApprovalStep, LeaveStatus, LeaveType, StepDecision


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Write
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request."""

    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_dates(self) -> "LeaveRequestCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        return self


class LeaveRequestUpdate(BaseModel):
    """Partial edit of a pending request; omitted fields keep their value."""

    leave_type: Optional[LeaveType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveDecisionRequest(BaseModel):
    """Body of approve / reject. ``step`` pins the level the caller expects."""

    comments: Optional[str] = Field(None, max_length=1000)
    step: Optional[ApprovalStep] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Read
# ═════════════════════════════════════════════════════════════════════


class ApprovalDecisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step: ApprovalStep
    decision: StepDecision
    approver_id: uuid.UUID
    decided_at: datetime
    comments: Optional[str] = None


class LeaveRequestOut(BaseModel):
    """Full leave request with its per-step decisions."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    requester_id: uuid.UUID
    team_lead_id: Optional[uuid.UUID] = None
    leave_type: LeaveType
    start_date: date
    end_date: date
    days_requested: int
    reason: Optional[str] = None
    status: LeaveStatus
    reservation_id: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[uuid.UUID] = None
    decisions: list[ApprovalDecisionOut] = []
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Workflow views
# ═════════════════════════════════════════════════════════════════════


class WorkflowStatusOut(BaseModel):
    """Where a request stands in its approval chain."""

    request_id: uuid.UUID
    current_status: LeaveStatus
    next_approver: Optional[str] = Field(
        None, description="team_lead | hr | management, or null once final"
    )
    is_final: bool
    requires_management: bool
    steps: list[ApprovalStep]
    completed_steps: list[ApprovalStep]


class TimelineEntry(BaseModel):
    action: str
    status: LeaveStatus
    actor_id: Optional[uuid.UUID] = None
    step: Optional[ApprovalStep] = None
    comments: Optional[str] = None
    timestamp: datetime


class LeaveStatsOut(BaseModel):
    """Request counts by status for one year."""

    year: int
    total: int
    by_status: dict[LeaveStatus, int]
    days_approved: int
    days_pending: int


class LeaveSummaryOut(BaseModel):
    """Organisation-wide request counts for one year."""

    year: int
    total_requests: int
    by_status: dict[LeaveStatus, int]
    by_type: dict[LeaveType, int]
    by_month: dict[int, int]
