"""Approval policy and authorization gate — pure logic, no DB."""

from __future__ import annotations

import uuid
from datetime import date

import pytest

from leaveflow.auth.principal import Principal
from leaveflow.common.constants import (
    LEAVE_POLICIES,
    ApprovalStep,
    LeaveStatus,
    LeaveType,
    UserRole,
)
from leaveflow.leave.authorization import can_act, can_cancel, can_update, can_view, can_view_all
from leaveflow.leave.models import LeaveRequest
from leaveflow.leave.policy import (
    approved_status_for,
    count_leave_days,
    next_pending_step,
    requires_management,
    resolve_steps,
)


TL, HR, MGMT = ApprovalStep.TEAM_LEAD, ApprovalStep.HR, ApprovalStep.MANAGEMENT


def _request(requester_id=None, team_lead_id=None) -> LeaveRequest:
    """An unsaved request; the gates only read its people."""
    return LeaveRequest(
        requester_id=requester_id or uuid.uuid4(),
        team_lead_id=team_lead_id,
    )


# ═════════════════════════════════════════════════════════════════════
# 1. Day counting and step resolution
# ═════════════════════════════════════════════════════════════════════


class TestCountLeaveDays:

    def test_single_day(self):
        assert count_leave_days(date(2026, 3, 2), date(2026, 3, 2)) == 1

    def test_weekends_are_counted(self):
        """Fri → Mon is four calendar days."""
        assert count_leave_days(date(2026, 2, 27), date(2026, 3, 2)) == 4


class TestResolveSteps:

    def test_short_leave_with_team_lead(self):
        assert resolve_steps(True, 3) == [TL, HR]

    def test_short_leave_without_team_lead(self):
        assert resolve_steps(False, 4) == [HR]

    def test_long_leave_with_team_lead(self):
        assert resolve_steps(True, 5) == [TL, HR, MGMT]

    def test_long_leave_without_team_lead(self):
        assert resolve_steps(False, 10) == [HR, MGMT]

    def test_threshold_is_exclusive(self):
        """Exactly at the threshold no management sign-off is needed."""
        assert requires_management(4) is False
        assert requires_management(5) is True

    def test_custom_threshold(self):
        assert resolve_steps(False, 3, threshold=2) == [HR, MGMT]

    def test_threshold_from_settings(self, monkeypatch):
        from leaveflow.config import settings
        monkeypatch.setattr(settings, "MANAGEMENT_APPROVAL_THRESHOLD_DAYS", 10)
        assert resolve_steps(True, 7) == [TL, HR]


class TestNextPendingStep:

    def test_first_undecided(self):
        assert next_pending_step([TL, HR, MGMT], []) == TL
        assert next_pending_step([TL, HR, MGMT], [TL]) == HR
        assert next_pending_step([TL, HR, MGMT], [TL, HR]) == MGMT

    def test_all_decided(self):
        assert next_pending_step([HR], [HR]) is None

    def test_approved_status_per_step(self):
        assert approved_status_for(TL) == LeaveStatus.TEAM_LEAD_APPROVED
        assert approved_status_for(HR) == LeaveStatus.HR_APPROVED
        assert approved_status_for(MGMT) == LeaveStatus.MANAGEMENT_APPROVED


class TestDefaultPolicies:

    def test_every_type_has_a_policy(self):
        assert set(LEAVE_POLICIES) == set(LeaveType)

    def test_only_annual_carries_over(self):
        carry = [lt for lt, p in LEAVE_POLICIES.items() if p.allow_carry_over]
        assert carry == [LeaveType.ANNUAL]
        assert LEAVE_POLICIES[LeaveType.ANNUAL].max_carry_over == 5


# ═════════════════════════════════════════════════════════════════════
# 2. Authorization gate
# ═════════════════════════════════════════════════════════════════════


class TestCanAct:

    def test_team_lead_step_only_for_requesters_lead(self):
        lead = Principal.of(uuid.uuid4())
        other_lead = Principal.of(uuid.uuid4())
        req = _request(team_lead_id=lead.user_id)

        assert can_act(lead, req, TL) is True
        assert can_act(other_lead, req, TL) is False

    def test_hr_role_does_not_grant_team_lead_step(self):
        hr = Principal.of(uuid.uuid4(), {UserRole.HR})
        req = _request(team_lead_id=uuid.uuid4())
        assert can_act(hr, req, TL) is False

    def test_admin_acts_at_every_step(self):
        admin = Principal.of(uuid.uuid4(), {UserRole.ADMIN})
        req = _request(team_lead_id=uuid.uuid4())
        assert all(can_act(admin, req, step) for step in (TL, HR, MGMT))

    @pytest.mark.parametrize("role,step,allowed", [
        (UserRole.HR, HR, True),
        (UserRole.MANAGEMENT, HR, False),
        (UserRole.EMPLOYEE, HR, False),
        (UserRole.MANAGEMENT, MGMT, True),
        (UserRole.HR, MGMT, False),
    ])
    def test_role_steps(self, role, step, allowed):
        actor = Principal.of(uuid.uuid4(), {role})
        assert can_act(actor, _request(), step) is allowed


class TestOtherGates:

    def test_cancel_by_requester_or_admin(self):
        req = _request()
        assert can_cancel(Principal.of(req.requester_id), req)
        assert can_cancel(Principal.of(uuid.uuid4(), {UserRole.ADMIN}), req)
        assert not can_cancel(Principal.of(uuid.uuid4(), {UserRole.HR}), req)

    def test_update_only_by_requester(self):
        req = _request()
        assert can_update(Principal.of(req.requester_id), req)
        assert not can_update(Principal.of(uuid.uuid4(), {UserRole.ADMIN}), req)

    def test_view(self):
        lead_id = uuid.uuid4()
        req = _request(team_lead_id=lead_id)
        assert can_view(Principal.of(req.requester_id), req)
        assert can_view(Principal.of(lead_id), req)
        assert can_view(Principal.of(uuid.uuid4(), {UserRole.MANAGEMENT}), req)
        assert not can_view(Principal.of(uuid.uuid4()), req)

    def test_view_all_roles(self):
        assert can_view_all(Principal.of(uuid.uuid4(), {UserRole.HR}))
        assert not can_view_all(Principal.of(uuid.uuid4(), {UserRole.EMPLOYEE}))
