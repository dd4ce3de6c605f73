"""Tests for common utilities — keyed locks, problem-detail handlers, audit, migrations."""

from __future__ import annotations

import asyncio
import uuid

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from leaveflow.common.audit import AuditTrail, create_audit_entry
from leaveflow.common.exceptions import (
    ConcurrentModificationError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundException,
    register_exception_handlers,
)
from leaveflow.common.locks import KeyedLock
from tests.conftest import seed_user


# ═════════════════════════════════════════════════════════════════════
# KEYED LOCK
# ═════════════════════════════════════════════════════════════════════


class TestKeyedLock:

    async def test_serializes_same_key(self):
        """Two holders of one key never overlap."""
        locks = KeyedLock("Test", timeout=1)
        events: list[str] = []

        async def worker(name: str):
            async with locks.hold("k"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    async def test_distinct_keys_do_not_block(self):
        locks = KeyedLock("Test", timeout=0.05)
        async with locks.hold("a"):
            async with locks.hold("b"):
                assert locks.locked("a") and locks.locked("b")

    async def test_timeout_raises_concurrent_modification(self):
        locks = KeyedLock("Leave request", timeout=0.05)
        async with locks.hold("busy"):
            with pytest.raises(ConcurrentModificationError) as exc_info:
                async with locks.hold("busy"):
                    pass  # pragma: no cover
        assert exc_info.value.status_code == 409
        assert "Leave request" in exc_info.value.detail

    async def test_locks_are_discarded_after_use(self):
        locks = KeyedLock("Test", timeout=0.05)
        async with locks.hold("a", "b"):
            assert len(locks) == 2
        assert len(locks) == 0

    async def test_partial_acquisition_released_on_timeout(self):
        """Keys taken before the timed-out one are freed again."""
        locks = KeyedLock("Test", timeout=0.05)
        async with locks.hold("b"):
            with pytest.raises(ConcurrentModificationError):
                async with locks.hold("a", "b"):
                    pass  # pragma: no cover
            assert not locks.locked("a")
        assert len(locks) == 0

    async def test_opposite_order_does_not_deadlock(self):
        locks = KeyedLock("Test", timeout=1)

        async def worker(*keys):
            async with locks.hold(*keys):
                await asyncio.sleep(0.01)

        await asyncio.gather(worker("x", "y"), worker("y", "x"))
        assert len(locks) == 0

    async def test_waiter_timing_out_as_lock_frees_leaves_it_free(self):
        """A waiter whose deadline coincides with the release never keeps the lock."""
        locks = KeyedLock("Test", timeout=0.05)
        loop = asyncio.get_running_loop()

        for _ in range(20):
            entered = asyncio.Event()
            release = asyncio.Event()

            async def holder():
                async with locks.hold("k"):
                    entered.set()
                    await release.wait()

            async def waiter():
                try:
                    async with locks.hold("k"):
                        return True
                except ConcurrentModificationError:
                    return False

            holder_task = asyncio.create_task(holder())
            await entered.wait()
            loop.call_later(0.05, release.set)
            await waiter()
            await holder_task

            assert not locks.locked("k")
            assert len(locks) == 0


# ═════════════════════════════════════════════════════════════════════
# PROBLEM-DETAIL HANDLERS
# ═════════════════════════════════════════════════════════════════════


def _error_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing")
    async def missing():
        raise NotFoundException("LeaveRequest", "abc")

    @app.get("/insufficient")
    async def insufficient():
        raise InsufficientBalanceError(remaining_days=2, available_days=1, requested_days=3)

    @app.get("/transition")
    async def transition():
        raise InvalidTransitionError("Leave request is already APPROVED.", current_status="APPROVED")

    @app.get("/stale")
    async def stale():
        raise StaleDataError("version mismatch")

    @app.get("/storage")
    async def storage():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    return app


class TestExceptionHandlers:

    @pytest.fixture
    async def error_client(self):
        async with AsyncClient(
            transport=ASGITransport(app=_error_app()), base_url="http://test",
        ) as ac:
            yield ac

    async def test_not_found(self, error_client: AsyncClient):
        resp = await error_client.get("/missing")
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/not-found")
        assert body["instance"] == "/missing"

    async def test_insufficient_balance_carries_numbers(self, error_client: AsyncClient):
        resp = await error_client.get("/insufficient")
        assert resp.status_code == 422
        body = resp.json()
        assert body["errors"] == {
            "remaining_days": 2, "available_days": 1, "requested_days": 3,
        }

    async def test_invalid_transition(self, error_client: AsyncClient):
        resp = await error_client.get("/transition")
        assert resp.status_code == 409
        assert resp.json()["errors"] == {"status": ["APPROVED"]}

    async def test_stale_write_maps_to_conflict(self, error_client: AsyncClient):
        resp = await error_client.get("/stale")
        assert resp.status_code == 409
        assert resp.json()["type"].endswith("/concurrent-modification")

    async def test_storage_failure_maps_to_503(self, error_client: AsyncClient):
        resp = await error_client.get("/storage")
        assert resp.status_code == 503
        assert "connection refused" not in resp.text


# ═════════════════════════════════════════════════════════════════════
# AUDIT TRAIL
# ═════════════════════════════════════════════════════════════════════


class TestAuditEntry:

    async def test_entry_is_persisted(self, db: AsyncSession):
        user = await seed_user(db)
        entity_id = uuid.uuid4()
        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=entity_id,
            actor_id=user.id,
            new_values={"status": "PENDING"},
        )

        rows = (await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == entity_id)
        )).scalars().all()
        assert len(rows) == 1
        assert rows[0].new_values == {"status": "PENDING"}
        assert rows[0].old_values is None


# ═════════════════════════════════════════════════════════════════════
# MIGRATIONS
# ═════════════════════════════════════════════════════════════════════


class TestMigrations:

    def test_migration_scripts_use_parameterized_queries(self):
        """Migration scripts must not build SQL with f-strings."""
        import ast
        import os

        migration_dir = os.path.join(
            os.path.dirname(__file__), "..", "alembic", "versions",
        )
        for fname in os.listdir(migration_dir):
            if not fname.endswith(".py"):
                continue
            with open(os.path.join(migration_dir, fname)) as f:
                tree = ast.parse(f.read())

            for node in ast.walk(tree):
                if (
                    isinstance(node, ast.Call)
                    and isinstance(node.func, ast.Attribute)
                    and node.func.attr == "execute"
                    and node.args
                ):
                    assert not isinstance(node.args[0], ast.JoinedStr), (
                        f"Found raw f-string in op.execute() in {fname}:{node.lineno}."
                    )


# ═════════════════════════════════════════════════════════════════════
# ENGINE AND THROTTLING SETTINGS
# ═════════════════════════════════════════════════════════════════════


class TestEngineOptions:

    def test_server_database_gets_pool_sizing(self):
        from leaveflow.config import settings
        from leaveflow.database import engine_options

        options = engine_options("postgresql+asyncpg://u:p@db:5432/leaveflow")
        assert options["pool_size"] == settings.DB_POOL_SIZE
        assert options["max_overflow"] == settings.DB_MAX_OVERFLOW
        assert options["pool_pre_ping"] is True

    def test_sqlite_keeps_its_own_pool(self):
        from leaveflow.database import engine_options

        options = engine_options("sqlite+aiosqlite://")
        assert "pool_size" not in options
        assert "max_overflow" not in options

    def test_limiter_uses_configured_default(self):
        from leaveflow.common.rate_limit import limiter
        from leaveflow.config import settings

        limits = [str(limit.limit) for group in limiter._default_limits for limit in group]
        assert len(limits) == 1
        assert limits[0].startswith(settings.DEFAULT_RATE_LIMIT.split("/")[0])
