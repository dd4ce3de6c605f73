"""Ledger Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leaveflow.common.constants import LeaveType


class LeaveBalanceOut(BaseModel):
    """Balance for one leave type and year, with the derived available figure."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    user_id: uuid.UUID
    leave_type: LeaveType
    year: int
    total_allocated: int
    used_days: int
    carry_over_days: int
    remaining_days: int
    reserved_days: int
    available_days: int


class AllocationItem(BaseModel):
    """Allocation and carry-over for one leave type; ``used_days`` is never writable."""

    leave_type: LeaveType
    total_allocated: int = Field(..., ge=0)
    carry_over_days: int = Field(0, ge=0)


class AllocationUpdate(AllocationItem):
    year: Optional[int] = Field(None, ge=2000, le=2100)


class BulkAllocationUpdate(BaseModel):
    """Several leave types of one user, applied together or not at all."""

    year: Optional[int] = Field(None, ge=2000, le=2100)
    leave_balances: list[AllocationItem] = Field(..., min_length=1)

    @field_validator("leave_balances")
    @classmethod
    def _unique_types(cls, v: list[AllocationItem]) -> list[AllocationItem]:
        seen = [item.leave_type for item in v]
        if len(seen) != len(set(seen)):
            raise ValueError("Each leave type may appear only once.")
        return v


# ── Organisation views ──────────────────────────────────────────────

class BalanceUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    full_name: str
    is_active: bool


class UserBalancesOut(BaseModel):
    user: BalanceUserOut
    year: int
    balances: list[LeaveBalanceOut]


class LeaveTypeUtilization(BaseModel):
    """Sums over every stored balance of one leave type."""

    users: int = 0
    total_allocated: int = 0
    total_used: int = 0
    total_remaining: int = 0
    total_carryover: int = 0
    total_reserved: int = 0


class BalanceStatsOut(BaseModel):
    year: int
    stats: dict[LeaveType, LeaveTypeUtilization]
