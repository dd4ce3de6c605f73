"""Leave ORM models: LeaveRequest, ApprovalDecision."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leaveflow.common.constants import (
    TERMINAL_STATUSES,
    ApprovalStep,
    LeaveStatus,
    LeaveType,
    StepDecision,
)
from leaveflow.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("start_date <= end_date", name="ck_leave_request_dates"),
        sa.CheckConstraint("days_requested > 0", name="ck_leave_request_days"),
        sa.Index("ix_leave_requests_requester_dates", "requester_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    # Team lead at submission time; the approval chain is resolved from this
    team_lead_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), index=True
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type", native_enum=False, length=32),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    days_requested: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status", native_enum=False, length=32),
        default=LeaveStatus.PENDING,
        nullable=False,
    )
    reservation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("balance_reservations.id")
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    # Relationships
    decisions: Mapped[list[ApprovalDecision]] = relationship(
        back_populates="request",
        lazy="selectin",
        order_by="ApprovalDecision.decided_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def year(self) -> int:
        return self.start_date.year

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def decided_steps(self) -> list[ApprovalStep]:
        return [d.step for d in self.decisions]

    def __repr__(self) -> str:
        return f"<LeaveRequest {self.id} {self.leave_type} {self.status}>"


class ApprovalDecision(Base):
    """One row per approval step that was reached and decided."""

    __tablename__ = "leave_approval_decisions"
    __table_args__ = (
        sa.UniqueConstraint("request_id", "step", name="uq_leave_decision_step"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step: Mapped[ApprovalStep] = mapped_column(
        sa.Enum(ApprovalStep, name="approval_step", native_enum=False, length=32),
        nullable=False,
    )
    decision: Mapped[StepDecision] = mapped_column(
        sa.Enum(StepDecision, name="step_decision", native_enum=False, length=32),
        nullable=False,
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    decided_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, nullable=False
    )
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Relationships
    request: Mapped[LeaveRequest] = relationship(back_populates="decisions")
