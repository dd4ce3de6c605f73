"""Enums, leave-type policies and constants for the leave engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    HR = "HR"
    MANAGEMENT = "MANAGEMENT"
    ADMIN = "ADMIN"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    ANNUAL = "ANNUAL"
    SICK = "SICK"
    PERSONAL = "PERSONAL"
    EMERGENCY = "EMERGENCY"
    MATERNITY = "MATERNITY"
    PATERNITY = "PATERNITY"
    UNPAID = "UNPAID"


class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    TEAM_LEAD_APPROVED = "TEAM_LEAD_APPROVED"
    HR_APPROVED = "HR_APPROVED"
    MANAGEMENT_APPROVED = "MANAGEMENT_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ApprovalStep(str, enum.Enum):
    TEAM_LEAD = "TEAM_LEAD"
    HR = "HR"
    MANAGEMENT = "MANAGEMENT"


class StepDecision(str, enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReservationStatus(str, enum.Enum):
    HELD = "HELD"
    COMMITTED = "COMMITTED"
    RELEASED = "RELEASED"


TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset({
    LeaveStatus.APPROVED,
    LeaveStatus.REJECTED,
    LeaveStatus.CANCELLED,
})

# Statuses that still occupy the requester's calendar (overlap checks)
ACTIVE_STATUSES: frozenset[LeaveStatus] = frozenset({
    LeaveStatus.PENDING,
    LeaveStatus.TEAM_LEAD_APPROVED,
    LeaveStatus.HR_APPROVED,
    LeaveStatus.MANAGEMENT_APPROVED,
    LeaveStatus.APPROVED,
})

# Query-string spelling used by the approval dashboards
PENDING_LEVELS: dict[str, ApprovalStep] = {
    "team-lead": ApprovalStep.TEAM_LEAD,
    "hr": ApprovalStep.HR,
    "management": ApprovalStep.MANAGEMENT,
}


# ── Leave-type policies ─────────────────────────────────────────────

@dataclass(frozen=True)
class LeavePolicy:
    default_allocation: int
    min_notice_days: int
    max_consecutive_days: int
    allow_carry_over: bool = False
    max_carry_over: int = 0


LEAVE_POLICIES: dict[LeaveType, LeavePolicy] = {
    LeaveType.ANNUAL: LeavePolicy(
        default_allocation=20,
        min_notice_days=7,
        max_consecutive_days=15,
        allow_carry_over=True,
        max_carry_over=5,
    ),
    LeaveType.SICK: LeavePolicy(
        default_allocation=10, min_notice_days=0, max_consecutive_days=5,
    ),
    LeaveType.PERSONAL: LeavePolicy(
        default_allocation=5, min_notice_days=3, max_consecutive_days=3,
    ),
    LeaveType.EMERGENCY: LeavePolicy(
        default_allocation=3, min_notice_days=0, max_consecutive_days=3,
    ),
    LeaveType.MATERNITY: LeavePolicy(
        default_allocation=90, min_notice_days=30, max_consecutive_days=90,
    ),
    LeaveType.PATERNITY: LeavePolicy(
        default_allocation=15, min_notice_days=14, max_consecutive_days=15,
    ),
    LeaveType.UNPAID: LeavePolicy(
        default_allocation=0, min_notice_days=14, max_consecutive_days=30,
    ),
}


# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
