"""Authorization gate for leave-request actions.

Stateless checks over a ``Principal`` and a request; no I/O. The request
argument only needs ``requester_id`` and ``team_lead_id``.
"""

from __future__ import annotations

from leaveflow.auth.principal import Principal
from leaveflow.common.constants import ApprovalStep, UserRole
from leaveflow.leave.models import LeaveRequest

# Roles allowed to see every request
_VIEW_ALL_ROLES = (UserRole.HR, UserRole.MANAGEMENT, UserRole.ADMIN)


def can_act(actor: Principal, request: LeaveRequest, step: ApprovalStep) -> bool:
    """May *actor* approve or reject *request* at *step*?"""
    if step == ApprovalStep.TEAM_LEAD:
        return actor.is_admin or (
            request.team_lead_id is not None and actor.user_id == request.team_lead_id
        )
    if step == ApprovalStep.HR:
        return actor.has_role(UserRole.HR, UserRole.ADMIN)
    if step == ApprovalStep.MANAGEMENT:
        return actor.has_role(UserRole.MANAGEMENT, UserRole.ADMIN)
    return False


def can_cancel(actor: Principal, request: LeaveRequest) -> bool:
    return actor.user_id == request.requester_id or actor.is_admin


def can_update(actor: Principal, request: LeaveRequest) -> bool:
    return actor.user_id == request.requester_id


def can_view_all(actor: Principal) -> bool:
    return actor.has_role(*_VIEW_ALL_ROLES)


def can_view(actor: Principal, request: LeaveRequest) -> bool:
    return (
        actor.user_id == request.requester_id
        or (request.team_lead_id is not None and actor.user_id == request.team_lead_id)
        or can_view_all(actor)
    )
