"""Ledger ORM models: LeaveBalance, BalanceReservation."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from leaveflow.common.constants import LeaveType, ReservationStatus
from leaveflow.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "leave_type", "year", name="uq_leave_balance"),
        sa.CheckConstraint("total_allocated >= 0", name="ck_balance_allocated_nonneg"),
        sa.CheckConstraint("carry_over_days >= 0", name="ck_balance_carry_nonneg"),
        sa.CheckConstraint("used_days >= 0", name="ck_balance_used_nonneg"),
        sa.CheckConstraint("reserved_days >= 0", name="ck_balance_reserved_nonneg"),
        sa.CheckConstraint("remaining_days >= 0", name="ck_balance_remaining_nonneg"),
        sa.CheckConstraint(
            "remaining_days = total_allocated + carry_over_days - used_days",
            name="ck_balance_remaining_formula",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False, index=True
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type", native_enum=False, length=32),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_allocated: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    used_days: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    carry_over_days: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    remaining_days: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    # Days held by pending requests; counted against availability, not remaining
    reserved_days: Mapped[int] = mapped_column(sa.Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_days(self) -> int:
        return self.remaining_days - self.reserved_days

    def recompute_remaining(self) -> None:
        self.remaining_days = self.total_allocated + self.carry_over_days - self.used_days

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance {self.user_id} {self.leave_type} {self.year} "
            f"remaining={self.remaining_days} reserved={self.reserved_days}>"
        )


class BalanceReservation(Base):
    """A hold of ``days`` against one balance key, owned by one leave request."""

    __tablename__ = "balance_reservations"
    __table_args__ = (
        sa.CheckConstraint("days > 0", name="ck_reservation_days_positive"),
        sa.Index("ix_reservation_balance_key", "user_id", "leave_type", "year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type", native_enum=False, length=32),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        sa.Enum(ReservationStatus, name="reservation_status", native_enum=False, length=32),
        default=ReservationStatus.HELD,
        nullable=False,
    )
    request_id: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid, index=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    @property
    def balance_key(self) -> tuple[uuid.UUID, LeaveType, int]:
        return (self.user_id, self.leave_type, self.year)

    def __repr__(self) -> str:
        return f"<BalanceReservation {self.id} {self.days}d {self.status}>"
