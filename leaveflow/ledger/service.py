"""Ledger service layer — per-user, per-leave-type, per-year day balances.

Business logic:
  - Reservation (hold) of days at submission time, counted in ``reserved_days``
  - Commit of a hold into ``used_days`` on final approval
  - Release of a hold on rejection, cancellation or update
  - Admin allocation edits (single or bulk) and new-year reset with capped
    carry-over
  - Organisation-wide balance listing and utilisation sums

Every mutation runs under the per-key balance lock and loads the balance
row ``FOR UPDATE``; the row's ``version`` column catches writers in other
processes. ``remaining_days`` is recomputed from its parts on every write.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaveflow.auth.models import User
from leaveflow.common.audit import create_audit_entry
from leaveflow.common.constants import LEAVE_POLICIES, LeaveType, ReservationStatus
from leaveflow.common.exceptions import (
    InsufficientBalanceError,
    InvalidAllocationError,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from leaveflow.common.locks import balance_locks
from leaveflow.ledger.models import BalanceReservation, LeaveBalance
from leaveflow.ledger.schemas import AllocationItem

logger = logging.getLogger(__name__)

BalanceKey = tuple[uuid.UUID, LeaveType, int]


def _snapshot(balance: LeaveBalance) -> dict[str, int]:
    return {
        "total_allocated": balance.total_allocated,
        "carry_over_days": balance.carry_over_days,
        "used_days": balance.used_days,
        "remaining_days": balance.remaining_days,
        "reserved_days": balance.reserved_days,
    }


# ═════════════════════════════════════════════════════════════════════
# LedgerService
# ═════════════════════════════════════════════════════════════════════


class LedgerService:
    """Async balance operations: reads, holds, commits, releases, admin edits."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def default_balance(user_id: uuid.UUID, leave_type: LeaveType, year: int) -> LeaveBalance:
        """Transient zero-allocation balance for a key with no stored row."""
        return LeaveBalance(
            user_id=user_id,
            leave_type=leave_type,
            year=year,
            total_allocated=0,
            used_days=0,
            carry_over_days=0,
            remaining_days=0,
            reserved_days=0,
        )

    @staticmethod
    async def _find(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = select(LeaveBalance).where(
            LeaveBalance.user_id == user_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def _find_or_create(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
    ) -> LeaveBalance:
        balance = await LedgerService._find(db, user_id, leave_type, year, for_update=True)
        if balance is None:
            balance = LedgerService.default_balance(user_id, leave_type, year)
            balance.id = uuid.uuid4()
            db.add(balance)
        return balance

    @staticmethod
    async def _require_user(db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", user_id)
        return user

    @staticmethod
    async def _get_reservation(
        db: AsyncSession,
        reservation_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> BalanceReservation:
        reservation = await db.get(
            BalanceReservation,
            reservation_id,
            with_for_update=for_update or None,
            populate_existing=for_update,
        )
        if reservation is None:
            raise NotFoundException("BalanceReservation", reservation_id)
        return reservation

    # ─────────────────────────────────────────────────────────────────
    # Reads (lock-free)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
    ) -> LeaveBalance:
        balance = await LedgerService._find(db, user_id, leave_type, year)
        if balance is None:
            return LedgerService.default_balance(user_id, leave_type, year)
        return balance

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalance]:
        """One balance per leave type, in declaration order."""
        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.user_id == user_id,
                LeaveBalance.year == year,
            )
        )
        stored = {b.leave_type: b for b in result.scalars().all()}
        return [
            stored.get(lt) or LedgerService.default_balance(user_id, lt, year)
            for lt in LeaveType
        ]

    @staticmethod
    async def get_user_balances(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalance]:
        """Admin view of another user's balances."""
        await LedgerService._require_user(db, user_id)
        return await LedgerService.get_balances(db, user_id, year)

    @staticmethod
    async def check_sufficient(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: int,
    ) -> bool:
        balance = await LedgerService.get_balance(db, user_id, leave_type, year)
        return balance.remaining_days >= days

    # ─────────────────────────────────────────────────────────────────
    # Reserve / Commit / Release
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reserve(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: int,
    ) -> BalanceReservation:
        """Hold *days* against the balance or raise ``InsufficientBalanceError``."""
        if days <= 0:
            raise ValidationException({"days": ["Reserved days must be positive."]})

        async with balance_locks.hold((user_id, leave_type, year)):
            return await LedgerService._reserve_locked(db, user_id, leave_type, year, days)

    @staticmethod
    async def _reserve_locked(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: int,
    ) -> BalanceReservation:
        balance = await LedgerService._find(db, user_id, leave_type, year, for_update=True)
        remaining = balance.remaining_days if balance else 0
        available = balance.available_days if balance else 0
        if balance is None or available < days:
            logger.warning(
                "Insufficient %s balance for user %s in %s: requested %s, available %s",
                leave_type.value, user_id, year, days, available,
            )
            raise InsufficientBalanceError(
                remaining_days=remaining,
                available_days=available,
                requested_days=days,
            )

        balance.reserved_days += days
        reservation = BalanceReservation(
            id=uuid.uuid4(),
            user_id=user_id,
            leave_type=leave_type,
            year=year,
            days=days,
            status=ReservationStatus.HELD,
        )
        db.add(reservation)
        await db.flush()

        logger.info(
            "Reserved %s %s days for user %s in %s (reservation %s)",
            days, leave_type.value, user_id, year, reservation.id,
        )
        return reservation

    @staticmethod
    async def commit(db: AsyncSession, reservation_id: uuid.UUID) -> BalanceReservation:
        """HELD → COMMITTED. A no-op on an already committed reservation."""
        reservation = await LedgerService._get_reservation(db, reservation_id)
        async with balance_locks.hold(reservation.balance_key):
            reservation = await LedgerService._get_reservation(
                db, reservation_id, for_update=True,
            )
            if reservation.status == ReservationStatus.COMMITTED:
                return reservation
            if reservation.status == ReservationStatus.RELEASED:
                raise InvalidTransitionError(
                    "A released reservation cannot be committed.",
                    current_status=reservation.status.value,
                )

            balance = await LedgerService._find(
                db, *reservation.balance_key, for_update=True,
            )
            if balance is None:
                raise NotFoundException("LeaveBalance", reservation.balance_key)

            balance.reserved_days -= reservation.days
            balance.used_days += reservation.days
            balance.recompute_remaining()
            reservation.status = ReservationStatus.COMMITTED
            await db.flush()

        logger.info(
            "Committed reservation %s (%s days) for user %s",
            reservation.id, reservation.days, reservation.user_id,
        )
        return reservation

    @staticmethod
    async def release(db: AsyncSession, reservation_id: uuid.UUID) -> BalanceReservation:
        """HELD → RELEASED. A no-op on an already released reservation."""
        reservation = await LedgerService._get_reservation(db, reservation_id)
        async with balance_locks.hold(reservation.balance_key):
            return await LedgerService._release_locked(db, reservation_id)

    @staticmethod
    async def _release_locked(
        db: AsyncSession,
        reservation_id: uuid.UUID,
    ) -> BalanceReservation:
        reservation = await LedgerService._get_reservation(
            db, reservation_id, for_update=True,
        )
        if reservation.status == ReservationStatus.RELEASED:
            return reservation
        if reservation.status == ReservationStatus.COMMITTED:
            raise InvalidTransitionError(
                "A committed reservation cannot be released.",
                current_status=reservation.status.value,
            )

        balance = await LedgerService._find(
            db, *reservation.balance_key, for_update=True,
        )
        if balance is None:
            raise NotFoundException("LeaveBalance", reservation.balance_key)

        balance.reserved_days -= reservation.days
        reservation.status = ReservationStatus.RELEASED
        await db.flush()

        logger.info(
            "Released reservation %s (%s days) for user %s",
            reservation.id, reservation.days, reservation.user_id,
        )
        return reservation

    @staticmethod
    async def swap(
        db: AsyncSession,
        reservation_id: uuid.UUID,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        days: int,
    ) -> BalanceReservation:
        """Release a held reservation and hold *days* on a (possibly other) key.

        Both balance keys are locked for the whole exchange. Availability is
        checked before anything is written, so on ``InsufficientBalanceError``
        the original hold is left untouched.
        """
        if days <= 0:
            raise ValidationException({"days": ["Reserved days must be positive."]})

        current = await LedgerService._get_reservation(db, reservation_id)
        new_key: BalanceKey = (user_id, leave_type, year)
        async with balance_locks.hold(current.balance_key, new_key):
            current = await LedgerService._get_reservation(
                db, reservation_id, for_update=True,
            )
            if current.status != ReservationStatus.HELD:
                raise InvalidTransitionError(
                    "Only a held reservation can be exchanged.",
                    current_status=current.status.value,
                )

            target = await LedgerService._find(db, *new_key, for_update=True)
            remaining = target.remaining_days if target else 0
            available = target.available_days if target else 0
            if current.balance_key == new_key:
                available += current.days
            if available < days:
                logger.warning(
                    "Rejected re-reservation of %s %s days for user %s: available %s",
                    days, leave_type.value, user_id, available,
                )
                raise InsufficientBalanceError(
                    remaining_days=remaining,
                    available_days=available,
                    requested_days=days,
                )

            await LedgerService._release_locked(db, current.id)
            return await LedgerService._reserve_locked(db, *new_key, days)

    # ─────────────────────────────────────────────────────────────────
    # Admin operations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _check_allocation(
        balance: Optional[LeaveBalance],
        leave_type: LeaveType,
        total_allocated: int,
        carry_over_days: int,
    ) -> None:
        if total_allocated < 0 or carry_over_days < 0:
            raise InvalidAllocationError(
                "Allocation and carry-over must not be negative.",
            )
        if balance is None:
            return

        new_remaining = total_allocated + carry_over_days - balance.used_days
        if new_remaining < 0:
            raise InvalidAllocationError(
                f"{balance.used_days} {leave_type.value} days are already used; "
                f"allocation plus carry-over cannot be less than that.",
            )
        if new_remaining < balance.reserved_days:
            raise InvalidAllocationError(
                f"{balance.reserved_days} {leave_type.value} days are held by pending "
                f"requests; the new allocation would leave only {new_remaining} remaining.",
            )

    @staticmethod
    async def _apply_allocation(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        total_allocated: int,
        carry_over_days: int,
        actor_id: Optional[uuid.UUID],
    ) -> LeaveBalance:
        balance = await LedgerService._find_or_create(db, user_id, leave_type, year)
        LedgerService._check_allocation(balance, leave_type, total_allocated, carry_over_days)
        old_values = _snapshot(balance)

        balance.total_allocated = total_allocated
        balance.carry_over_days = carry_over_days
        balance.recompute_remaining()
        await db.flush()

        await create_audit_entry(
            db,
            action="set_allocation",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_snapshot(balance),
        )
        return balance

    @staticmethod
    async def admin_set_allocation(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type: LeaveType,
        year: int,
        total_allocated: int,
        carry_over_days: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Overwrite allocation and carry-over; ``used_days`` is left alone."""
        await LedgerService._require_user(db, user_id)
        LedgerService._check_allocation(None, leave_type, total_allocated, carry_over_days)

        async with balance_locks.hold((user_id, leave_type, year)):
            balance = await LedgerService._apply_allocation(
                db, user_id, leave_type, year, total_allocated, carry_over_days, actor_id,
            )

        logger.info(
            "Allocation for user %s %s %s set to %s (+%s carry-over) by %s",
            user_id, leave_type.value, year, total_allocated, carry_over_days, actor_id,
        )
        return balance

    @staticmethod
    async def bulk_set_allocation(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
        items: Sequence[AllocationItem],
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Set allocation and carry-over for several leave types of one user.

        Every affected balance key is locked for the whole call and every
        row is checked before any is written, so one invalid entry leaves
        all of them unchanged.
        """
        await LedgerService._require_user(db, user_id)
        leave_types = [item.leave_type for item in items]
        if not items or len(leave_types) != len(set(leave_types)):
            raise ValidationException(
                {"leave_balances": ["Give each leave type at most once, and at least one."]}
            )
        for item in items:
            LedgerService._check_allocation(
                None, item.leave_type, item.total_allocated, item.carry_over_days,
            )

        keys = [(user_id, leave_type, year) for leave_type in leave_types]
        async with balance_locks.hold(*keys):
            for item in items:
                existing = await LedgerService._find(
                    db, user_id, item.leave_type, year, for_update=True,
                )
                LedgerService._check_allocation(
                    existing, item.leave_type, item.total_allocated, item.carry_over_days,
                )

            balances = [
                await LedgerService._apply_allocation(
                    db, user_id, item.leave_type, year,
                    item.total_allocated, item.carry_over_days, actor_id,
                )
                for item in items
            ]

        logger.info(
            "Bulk allocation of %s leave types for user %s in %s by %s",
            len(balances), user_id, year, actor_id,
        )
        return balances

    @staticmethod
    async def reset_for_new_year(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Grant the default allocation for *year* and carry over last year's
        unused days where the leave type allows it, up to its cap.

        Days still held by pending prior-year requests are not carried over;
        they may yet be committed against that year.
        """
        await LedgerService._require_user(db, user_id)
        keys = [(user_id, lt, year) for lt in LeaveType]
        balances: list[LeaveBalance] = []

        async with balance_locks.hold(*keys):
            for leave_type in LeaveType:
                policy = LEAVE_POLICIES[leave_type]
                prior = await LedgerService._find(db, user_id, leave_type, year - 1)

                carry_over = 0
                if policy.allow_carry_over and prior is not None:
                    carry_over = min(prior.available_days, policy.max_carry_over)

                balance = await LedgerService._find_or_create(db, user_id, leave_type, year)
                old_values = _snapshot(balance)

                new_remaining = policy.default_allocation + carry_over
                if new_remaining < balance.reserved_days:
                    raise InvalidAllocationError(
                        f"{balance.reserved_days} {leave_type.value} days are held by "
                        f"pending requests in {year}; reset would leave {new_remaining}.",
                    )

                balance.total_allocated = policy.default_allocation
                balance.carry_over_days = carry_over
                balance.used_days = 0
                balance.recompute_remaining()
                await db.flush()

                await create_audit_entry(
                    db,
                    action="reset_year",
                    entity_type="leave_balance",
                    entity_id=balance.id,
                    actor_id=actor_id,
                    old_values=old_values,
                    new_values=_snapshot(balance),
                )
                balances.append(balance)

        logger.info("Reset %s leave balances for user %s by %s", year, user_id, actor_id)
        return balances

    # ─────────────────────────────────────────────────────────────────
    # Organisation views
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_all_balances(
        db: AsyncSession,
        year: int,
        *,
        include_inactive: bool = False,
    ) -> list[dict]:
        """Every user's balances for *year*, one entry per leave type."""
        user_q = select(User).order_by(User.full_name, User.email)
        if not include_inactive:
            user_q = user_q.where(User.is_active.is_(True))
        users = (await db.execute(user_q)).scalars().all()

        result = await db.execute(select(LeaveBalance).where(LeaveBalance.year == year))
        stored = {(b.user_id, b.leave_type): b for b in result.scalars().all()}

        return [
            {
                "user": user,
                "year": year,
                "balances": [
                    stored.get((user.id, lt)) or LedgerService.default_balance(user.id, lt, year)
                    for lt in LeaveType
                ],
            }
            for user in users
        ]

    @staticmethod
    async def get_utilization_stats(db: AsyncSession, year: int) -> dict:
        """Per leave type sums of allocated, used, remaining, carried and held days."""
        stats = {
            lt: {
                "users": 0,
                "total_allocated": 0,
                "total_used": 0,
                "total_remaining": 0,
                "total_carryover": 0,
                "total_reserved": 0,
            }
            for lt in LeaveType
        }
        result = await db.execute(select(LeaveBalance).where(LeaveBalance.year == year))
        for balance in result.scalars().all():
            entry = stats[balance.leave_type]
            entry["users"] += 1
            entry["total_allocated"] += balance.total_allocated
            entry["total_used"] += balance.used_days
            entry["total_remaining"] += balance.remaining_days
            entry["total_carryover"] += balance.carry_over_days
            entry["total_reserved"] += balance.reserved_days
        return {"year": year, "stats": stats}
