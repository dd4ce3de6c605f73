"""Leave service layer — request submission, approval workflow, views.

Business logic:
  - Submission with date, notice, length and overlap validation
  - Balance hold at submission, commit on final approval, release on
    rejection or cancellation
  - Step-by-step approval along the chain resolved by ``leave.policy``
  - Edits of pending requests with atomic re-reservation
  - Workflow status, timeline, pending-approval and statistics views

Mutations take the requester lock (where overlap is checked), then the
request lock, and leave balance locking to ``LedgerService``. The keyed
locks only order writers inside one process; submissions and edits also
bump the requester's ``users`` row, whose lock lasts until commit.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leaveflow.auth.models import User
from leaveflow.auth.principal import Principal
from leaveflow.common.audit import create_audit_entry
from leaveflow.common.constants import (
    ACTIVE_STATUSES,
    LEAVE_POLICIES,
    PENDING_LEVELS,
    TERMINAL_STATUSES,
    ApprovalStep,
    LeaveStatus,
    LeaveType,
    StepDecision,
)
from leaveflow.common.exceptions import (
    ConcurrentModificationError,
    ForbiddenException,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from leaveflow.common.locks import request_locks, requester_locks
from leaveflow.leave.authorization import can_act, can_cancel, can_update, can_view, can_view_all
from leaveflow.leave.models import ApprovalDecision, LeaveRequest
from leaveflow.leave.policy import (
    approved_status_for,
    count_leave_days,
    next_pending_step,
    resolve_request_steps,
    resolve_steps,
)
from leaveflow.leave.schemas import LeaveRequestCreate, LeaveRequestUpdate
from leaveflow.ledger.service import LedgerService

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset({
    LeaveStatus.PENDING,
    LeaveStatus.TEAM_LEAD_APPROVED,
    LeaveStatus.HR_APPROVED,
    LeaveStatus.MANAGEMENT_APPROVED,
})

# Statuses in which each step can be the next one pending
_PENDING_AT: dict[ApprovalStep, tuple[LeaveStatus, ...]] = {
    ApprovalStep.TEAM_LEAD: (LeaveStatus.PENDING,),
    ApprovalStep.HR: (LeaveStatus.PENDING, LeaveStatus.TEAM_LEAD_APPROVED),
    ApprovalStep.MANAGEMENT: (LeaveStatus.HR_APPROVED,),
}

_APPROVER_LABEL: dict[ApprovalStep, str] = {
    ApprovalStep.TEAM_LEAD: "team_lead",
    ApprovalStep.HR: "hr",
    ApprovalStep.MANAGEMENT: "management",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize(request: LeaveRequest) -> dict[str, Any]:
    """JSON-safe snapshot for the audit trail."""
    return {
        "status": request.status.value,
        "leave_type": request.leave_type.value,
        "start_date": request.start_date.isoformat(),
        "end_date": request.end_date.isoformat(),
        "days_requested": request.days_requested,
        "reason": request.reason,
        "reservation_id": str(request.reservation_id) if request.reservation_id else None,
    }


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave-request operations: submit, decide, cancel, edit, read."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        request = result.scalars().first()
        if request is None:
            raise NotFoundException("LeaveRequest", request_id)
        return request

    @staticmethod
    async def _lock_requester(db: AsyncSession, requester_id: uuid.UUID) -> None:
        """Write-lock the requester's row for the rest of the transaction.

        A second submission for the same requester, in any session or
        process, blocks here until the first one commits, and its overlap
        query then sees the committed row.
        """
        await db.execute(
            update(User)
            .where(User.id == requester_id)
            .values(leave_seq=User.leave_seq + 1)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def _flush_decision(
        db: AsyncSession,
        request: LeaveRequest,
        step: ApprovalStep,
    ) -> None:
        try:
            await db.flush()
        except IntegrityError:
            logger.warning(
                "Step %s of request %s was decided concurrently", step.value, request.id,
            )
            raise ConcurrentModificationError("Leave request") from None

    @staticmethod
    async def _validate(
        db: AsyncSession,
        requester_id: uuid.UUID,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Check dates, notice, length and overlap; return the day count."""
        errors: dict[str, list[str]] = {}
        today = date.today()

        if start_date > end_date:
            raise ValidationException(
                {"end_date": ["end_date must be on or after start_date."]}
            )

        days = count_leave_days(start_date, end_date)
        policy = LEAVE_POLICIES[leave_type]

        if start_date < today:
            errors.setdefault("start_date", []).append(
                "Leave cannot start in the past."
            )
        elif (start_date - today).days < policy.min_notice_days:
            errors.setdefault("start_date", []).append(
                f"{leave_type.value} leave must be requested at least "
                f"{policy.min_notice_days} days in advance."
            )

        if start_date.year != end_date.year:
            errors.setdefault("end_date", []).append(
                "A leave request cannot span two calendar years."
            )
        if days > policy.max_consecutive_days:
            errors.setdefault("end_date", []).append(
                f"{leave_type.value} leave cannot exceed "
                f"{policy.max_consecutive_days} consecutive days."
            )

        if errors:
            raise ValidationException(errors)

        overlap_q = select(LeaveRequest.id).where(
            LeaveRequest.requester_id == requester_id,
            LeaveRequest.status.in_(ACTIVE_STATUSES),
            LeaveRequest.start_date <= end_date,
            LeaveRequest.end_date >= start_date,
        )
        if exclude_id is not None:
            overlap_q = overlap_q.where(LeaveRequest.id != exclude_id)
        overlapping = (await db.execute(overlap_q.limit(1))).scalar_one_or_none()
        if overlapping is not None:
            raise ValidationException(
                {"start_date": [f"Overlaps with existing leave request {overlapping}."]}
            )

        return days

    @staticmethod
    def _current_step(
        request: LeaveRequest,
        step: Optional[ApprovalStep] = None,
    ) -> ApprovalStep:
        """Next pending step, checked against the one the caller expected."""
        if request.is_terminal:
            raise InvalidTransitionError(
                f"Leave request is already {request.status.value}.",
                current_status=request.status.value,
            )

        steps = resolve_request_steps(request)
        decided = request.decided_steps
        pending = next_pending_step(steps, decided)
        if pending is None:
            raise InvalidTransitionError(
                "No approval step is pending.",
                current_status=request.status.value,
            )

        if step is not None and step != pending:
            if step in decided:
                detail = f"The {step.value} step has already been decided."
            elif step not in steps:
                detail = f"The {step.value} step is not required for this request."
            else:
                detail = (
                    f"The {step.value} step has not been reached; "
                    f"{pending.value} is pending."
                )
            raise InvalidTransitionError(detail, current_status=request.status.value)

        return pending

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        principal: Principal,
        data: LeaveRequestCreate,
    ) -> LeaveRequest:
        """Validate, hold the balance and persist a new request.

        Nothing is persisted when the balance hold fails. A request that
        needs no approval steps is committed and approved immediately.
        """
        async with requester_locks.hold(principal.user_id):
            await LeaveService._lock_requester(db, principal.user_id)
            days = await LeaveService._validate(
                db, principal.user_id, data.leave_type, data.start_date, data.end_date,
            )
            steps = resolve_steps(principal.team_lead_id is not None, days)
            year = data.start_date.year

            reservation = await LedgerService.reserve(
                db, principal.user_id, data.leave_type, year, days,
            )

            request = LeaveRequest(
                id=uuid.uuid4(),
                requester_id=principal.user_id,
                team_lead_id=principal.team_lead_id,
                leave_type=data.leave_type,
                start_date=data.start_date,
                end_date=data.end_date,
                days_requested=days,
                reason=data.reason,
                status=LeaveStatus.PENDING,
                reservation_id=reservation.id,
                decisions=[],
            )
            if not steps:
                reservation = await LedgerService.commit(db, reservation.id)
                request.status = LeaveStatus.APPROVED

            reservation.request_id = request.id
            db.add(request)
            await db.flush()

            await create_audit_entry(
                db,
                action="create",
                entity_type="leave_request",
                entity_id=request.id,
                actor_id=principal.user_id,
                new_values=_serialize(request),
            )

        logger.info(
            "Leave request %s created by %s: %s %s days (%s → %s), steps %s",
            request.id, principal.user_id, data.leave_type.value, days,
            data.start_date, data.end_date, [s.value for s in steps],
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject / Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
        *,
        comments: Optional[str] = None,
        step: Optional[ApprovalStep] = None,
    ) -> LeaveRequest:
        """Record an approval on the next pending step and advance the status."""
        async with request_locks.hold(request_id):
            request = await LeaveService._get(db, request_id, for_update=True)
            target = LeaveService._current_step(request, step)
            if not can_act(actor, request, target):
                logger.warning(
                    "User %s denied approval of request %s at %s",
                    actor.user_id, request_id, target.value,
                )
                raise ForbiddenException(
                    f"You are not an approver for the {target.value} step of this request.",
                )

            old_values = _serialize(request)
            request.decisions.append(
                ApprovalDecision(
                    id=uuid.uuid4(),
                    step=target,
                    decision=StepDecision.APPROVED,
                    approver_id=actor.user_id,
                    decided_at=_utcnow(),
                    comments=comments,
                )
            )
            await LeaveService._flush_decision(db, request, target)

            remaining = next_pending_step(resolve_request_steps(request), request.decided_steps)
            if remaining is None:
                await LedgerService.commit(db, request.reservation_id)
                request.status = LeaveStatus.APPROVED
            else:
                request.status = approved_status_for(target)
            await db.flush()

            await create_audit_entry(
                db,
                action="approve",
                entity_type="leave_request",
                entity_id=request.id,
                actor_id=actor.user_id,
                old_values=old_values,
                new_values={**_serialize(request), "step": target.value},
            )

        logger.info(
            "Leave request %s approved at %s by %s → %s",
            request_id, target.value, actor.user_id, request.status.value,
        )
        return request

    @staticmethod
    async def reject(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
        *,
        comments: Optional[str] = None,
        step: Optional[ApprovalStep] = None,
    ) -> LeaveRequest:
        """Reject at the current pending step and release the held days."""
        async with request_locks.hold(request_id):
            request = await LeaveService._get(db, request_id, for_update=True)
            target = LeaveService._current_step(request, step)
            if not can_act(actor, request, target):
                logger.warning(
                    "User %s denied rejection of request %s at %s",
                    actor.user_id, request_id, target.value,
                )
                raise ForbiddenException(
                    f"You are not an approver for the {target.value} step of this request.",
                )

            old_values = _serialize(request)
            request.decisions.append(
                ApprovalDecision(
                    id=uuid.uuid4(),
                    step=target,
                    decision=StepDecision.REJECTED,
                    approver_id=actor.user_id,
                    decided_at=_utcnow(),
                    comments=comments,
                )
            )
            await LeaveService._flush_decision(db, request, target)
            request.status = LeaveStatus.REJECTED
            await LedgerService.release(db, request.reservation_id)
            await db.flush()

            await create_audit_entry(
                db,
                action="reject",
                entity_type="leave_request",
                entity_id=request.id,
                actor_id=actor.user_id,
                old_values=old_values,
                new_values={**_serialize(request), "step": target.value},
            )

        logger.info(
            "Leave request %s rejected at %s by %s", request_id, target.value, actor.user_id,
        )
        return request

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
    ) -> LeaveRequest:
        """Withdraw a request that is not yet fully approved."""
        async with request_locks.hold(request_id):
            request = await LeaveService._get(db, request_id, for_update=True)
            if request.status not in CANCELLABLE_STATUSES:
                raise InvalidTransitionError(
                    f"A {request.status.value} leave request cannot be cancelled.",
                    current_status=request.status.value,
                )
            if not can_cancel(actor, request):
                logger.warning(
                    "User %s denied cancellation of request %s", actor.user_id, request_id,
                )
                raise ForbiddenException("Only the requester can cancel this leave request.")

            old_values = _serialize(request)
            request.status = LeaveStatus.CANCELLED
            request.cancelled_at = _utcnow()
            request.cancelled_by = actor.user_id
            await LedgerService.release(db, request.reservation_id)
            await db.flush()

            await create_audit_entry(
                db,
                action="cancel",
                entity_type="leave_request",
                entity_id=request.id,
                actor_id=actor.user_id,
                old_values=old_values,
                new_values=_serialize(request),
            )

        logger.info("Leave request %s cancelled by %s", request_id, actor.user_id)
        return request

    # ─────────────────────────────────────────────────────────────────
    # Update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
        data: LeaveRequestUpdate,
    ) -> LeaveRequest:
        """Edit a pending request, moving its balance hold when needed.

        If the new hold cannot be placed the edit is rejected and the
        existing hold stays as it was.
        """
        current = await LeaveService._get(db, request_id)
        async with requester_locks.hold(current.requester_id), request_locks.hold(request_id):
            await LeaveService._lock_requester(db, current.requester_id)
            request = await LeaveService._get(db, request_id, for_update=True)
            if request.status != LeaveStatus.PENDING:
                raise InvalidTransitionError(
                    "Only pending leave requests can be edited.",
                    current_status=request.status.value,
                )
            if not can_update(actor, request):
                logger.warning("User %s denied edit of request %s", actor.user_id, request_id)
                raise ForbiddenException("Only the requester can edit this leave request.")

            leave_type = data.leave_type or request.leave_type
            start_date = data.start_date or request.start_date
            end_date = data.end_date or request.end_date
            days = await LeaveService._validate(
                db, request.requester_id, leave_type, start_date, end_date,
                exclude_id=request.id,
            )

            old_values = _serialize(request)
            ledger_changed = (
                leave_type != request.leave_type
                or start_date.year != request.year
                or days != request.days_requested
            )
            if ledger_changed:
                reservation = await LedgerService.swap(
                    db,
                    request.reservation_id,
                    request.requester_id,
                    leave_type,
                    start_date.year,
                    days,
                )
                reservation.request_id = request.id
                request.reservation_id = reservation.id

            request.leave_type = leave_type
            request.start_date = start_date
            request.end_date = end_date
            request.days_requested = days
            if "reason" in data.model_fields_set:
                request.reason = data.reason
            await db.flush()

            await create_audit_entry(
                db,
                action="update",
                entity_type="leave_request",
                entity_id=request.id,
                actor_id=actor.user_id,
                old_values=old_values,
                new_values=_serialize(request),
            )

        logger.info(
            "Leave request %s updated by %s (ledger %s)",
            request_id, actor.user_id, "moved" if ledger_changed else "unchanged",
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
    ) -> LeaveRequest:
        request = await LeaveService._get(db, request_id)
        if not can_view(actor, request):
            raise ForbiddenException("You cannot view this leave request.")
        return request

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        actor: Principal,
        *,
        year: Optional[int] = None,
        scope: str = "my",
        status: Optional[LeaveStatus] = None,
    ) -> list[LeaveRequest]:
        """List requests by scope: ``my`` (own), ``team`` (as team lead) or ``all``."""
        query = select(LeaveRequest)
        if scope == "my":
            query = query.where(LeaveRequest.requester_id == actor.user_id)
        elif scope == "team":
            query = query.where(LeaveRequest.team_lead_id == actor.user_id)
        elif scope == "all":
            if not can_view_all(actor):
                raise ForbiddenException("Only HR, management or admins can list all requests.")
        else:
            raise ValidationException({"scope": ["Must be one of: my, team, all."]})

        if year is not None:
            query = query.where(
                LeaveRequest.start_date >= date(year, 1, 1),
                LeaveRequest.start_date <= date(year, 12, 31),
            )
        if status is not None:
            query = query.where(LeaveRequest.status == status)

        query = query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_pending_approvals(
        db: AsyncSession,
        actor: Principal,
        level: Optional[str] = None,
    ) -> list[LeaveRequest]:
        """Requests whose next pending step the actor may decide."""
        step: Optional[ApprovalStep] = None
        if level is not None:
            step = PENDING_LEVELS.get(level)
            if step is None:
                raise ValidationException(
                    {"type": [f"Must be one of: {', '.join(PENDING_LEVELS)}."]}
                )

        query = select(LeaveRequest)
        if step is not None:
            query = query.where(LeaveRequest.status.in_(_PENDING_AT[step]))
        else:
            query = query.where(LeaveRequest.status.not_in(TERMINAL_STATUSES))
        if step == ApprovalStep.TEAM_LEAD and not actor.is_admin:
            query = query.where(LeaveRequest.team_lead_id == actor.user_id)
        query = query.order_by(LeaveRequest.created_at)

        result = await db.execute(query)
        pending: list[LeaveRequest] = []
        for request in result.scalars().all():
            next_step = next_pending_step(
                resolve_request_steps(request), request.decided_steps,
            )
            if next_step is None or (step is not None and next_step != step):
                continue
            if can_act(actor, request, next_step):
                pending.append(request)
        return pending

    @staticmethod
    async def get_workflow_status(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
    ) -> dict[str, Any]:
        request = await LeaveService.get_request(db, request_id, actor)
        steps = resolve_request_steps(request)
        completed = [
            d.step for d in request.decisions if d.decision == StepDecision.APPROVED
        ]
        next_step = None if request.is_terminal else next_pending_step(
            steps, request.decided_steps,
        )
        return {
            "request_id": request.id,
            "current_status": request.status,
            "next_approver": _APPROVER_LABEL[next_step] if next_step else None,
            "is_final": request.is_terminal,
            "requires_management": ApprovalStep.MANAGEMENT in steps,
            "steps": steps,
            "completed_steps": completed,
        }

    @staticmethod
    async def get_timeline(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor: Principal,
    ) -> list[dict[str, Any]]:
        """Submission, each step decision and cancellation, in order."""
        request = await LeaveService.get_request(db, request_id, actor)
        steps = resolve_request_steps(request)

        timeline: list[dict[str, Any]] = [{
            "action": "submitted",
            "status": LeaveStatus.PENDING,
            "actor_id": request.requester_id,
            "step": None,
            "comments": request.reason,
            "timestamp": request.created_at,
        }]
        for decision in request.decisions:
            if decision.decision == StepDecision.REJECTED:
                status = LeaveStatus.REJECTED
            elif decision.step == steps[-1]:
                status = LeaveStatus.APPROVED
            else:
                status = approved_status_for(decision.step)
            timeline.append({
                "action": decision.decision.value.lower(),
                "status": status,
                "actor_id": decision.approver_id,
                "step": decision.step,
                "comments": decision.comments,
                "timestamp": decision.decided_at,
            })
        if request.status == LeaveStatus.CANCELLED:
            timeline.append({
                "action": "cancelled",
                "status": LeaveStatus.CANCELLED,
                "actor_id": request.cancelled_by,
                "step": None,
                "comments": None,
                "timestamp": request.cancelled_at,
            })
        return timeline

    @staticmethod
    async def get_stats(
        db: AsyncSession,
        actor: Principal,
        year: int,
    ) -> dict[str, Any]:
        """Counts of the actor's own requests by status for *year*."""
        requests = await LeaveService.list_requests(db, actor, year=year, scope="my")
        by_status = {status: 0 for status in LeaveStatus}
        days_approved = 0
        days_pending = 0
        for request in requests:
            by_status[request.status] += 1
            if request.status == LeaveStatus.APPROVED:
                days_approved += request.days_requested
            elif request.status not in TERMINAL_STATUSES:
                days_pending += request.days_requested
        return {
            "year": year,
            "total": len(requests),
            "by_status": by_status,
            "days_approved": days_approved,
            "days_pending": days_pending,
        }

    @staticmethod
    async def get_summary(
        db: AsyncSession,
        actor: Principal,
        year: int,
    ) -> dict[str, Any]:
        """Organisation-wide request counts by status, type and start month."""
        if not can_view_all(actor):
            raise ForbiddenException("Only HR, management or admins can view the summary.")

        requests = await LeaveService.list_requests(db, actor, year=year, scope="all")
        by_status = {status: 0 for status in LeaveStatus}
        by_type = {leave_type: 0 for leave_type in LeaveType}
        by_month = {month: 0 for month in range(1, 13)}
        for request in requests:
            by_status[request.status] += 1
            by_type[request.leave_type] += 1
            by_month[request.start_date.month] += 1
        return {
            "year": year,
            "total_requests": len(requests),
            "by_status": by_status,
            "by_type": by_type,
            "by_month": by_month,
        }
