"""Approval policy — which sign-off steps a leave request needs.

All functions here are pure: the step sequence depends only on whether the
requester had a team lead and how many days were requested.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional, Sequence

from leaveflow.common.constants import ApprovalStep, LeaveStatus
from leaveflow.config import settings

_APPROVED_STATUS: dict[ApprovalStep, LeaveStatus] = {
    ApprovalStep.TEAM_LEAD: LeaveStatus.TEAM_LEAD_APPROVED,
    ApprovalStep.HR: LeaveStatus.HR_APPROVED,
    ApprovalStep.MANAGEMENT: LeaveStatus.MANAGEMENT_APPROVED,
}


def count_leave_days(start_date: date, end_date: date) -> int:
    """Calendar days from *start_date* to *end_date*, both inclusive.

    Weekends and public holidays are counted like any other day.
    """
    return (end_date - start_date).days + 1


def requires_management(days_requested: int, threshold: Optional[int] = None) -> bool:
    if threshold is None:
        threshold = settings.MANAGEMENT_APPROVAL_THRESHOLD_DAYS
    return days_requested > threshold


def resolve_steps(
    has_team_lead: bool,
    days_requested: int,
    threshold: Optional[int] = None,
) -> list[ApprovalStep]:
    """Ordered approval steps.

    >>> resolve_steps(True, 3)
    [<ApprovalStep.TEAM_LEAD: 'TEAM_LEAD'>, <ApprovalStep.HR: 'HR'>]
    >>> resolve_steps(False, 5)
    [<ApprovalStep.HR: 'HR'>, <ApprovalStep.MANAGEMENT: 'MANAGEMENT'>]
    """
    steps: list[ApprovalStep] = []
    if has_team_lead:
        steps.append(ApprovalStep.TEAM_LEAD)
    steps.append(ApprovalStep.HR)
    if requires_management(days_requested, threshold):
        steps.append(ApprovalStep.MANAGEMENT)
    return steps


def resolve_request_steps(request) -> list[ApprovalStep]:
    """Steps for a stored request, from its team-lead snapshot and day count."""
    return resolve_steps(request.team_lead_id is not None, request.days_requested)


def next_pending_step(
    steps: Sequence[ApprovalStep],
    decided_steps: Iterable[ApprovalStep],
) -> Optional[ApprovalStep]:
    """First step in *steps* without a decision, or ``None`` when all are decided."""
    decided = set(decided_steps)
    for step in steps:
        if step not in decided:
            return step
    return None


def approved_status_for(step: ApprovalStep) -> LeaveStatus:
    return _APPROVED_STATUS[step]
