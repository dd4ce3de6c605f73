"""Common module — shared utilities for the leave engine."""

from leaveflow.common.audit import AuditTrail, create_audit_entry
from leaveflow.common.constants import (
    ACTIVE_STATUSES,
    DATE_FORMAT,
    LEAVE_POLICIES,
    PENDING_LEVELS,
    TERMINAL_STATUSES,
    ApprovalStep,
    LeavePolicy,
    LeaveStatus,
    LeaveType,
    ReservationStatus,
    StepDecision,
    UserRole,
)
from leaveflow.common.exceptions import (
    AppException,
    ConcurrentModificationError,
    ForbiddenException,
    InsufficientBalanceError,
    InvalidAllocationError,
    InvalidTransitionError,
    NotFoundException,
    StorageError,
    ValidationException,
    register_exception_handlers,
)
from leaveflow.common.locks import KeyedLock, balance_locks, request_locks, requester_locks

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ApprovalStep",
    "LeavePolicy",
    "LeaveStatus",
    "LeaveType",
    "ReservationStatus",
    "StepDecision",
    "UserRole",
    "ACTIVE_STATUSES",
    "DATE_FORMAT",
    "LEAVE_POLICIES",
    "PENDING_LEVELS",
    "TERMINAL_STATUSES",
    # Exceptions
    "AppException",
    "ConcurrentModificationError",
    "ForbiddenException",
    "InsufficientBalanceError",
    "InvalidAllocationError",
    "InvalidTransitionError",
    "NotFoundException",
    "StorageError",
    "ValidationException",
    "register_exception_handlers",
    # Locks
    "KeyedLock",
    "balance_locks",
    "request_locks",
    "requester_locks",
]
