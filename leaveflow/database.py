"""Async SQLAlchemy engine, declarative base and the request-scoped session.

One session spans one HTTP request and commits only after the handler has
returned. Row locks taken by the leave and ledger services (the requester's
``users`` row, ``FOR UPDATE`` on balances and requests) therefore last until
that commit, which is what keeps concurrent requests from different workers
consistent.
"""

from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leaveflow.config import settings


def engine_options(url: str) -> dict[str, Any]:
    """Engine keyword arguments for *url*.

    Pool sizing only applies to server databases; SQLite picks its own pool.
    """
    options: dict[str, Any] = {
        "echo": settings.ENVIRONMENT == "development",
        "pool_pre_ping": True,
    }
    if make_url(url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all leaveflow models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed after the handler.

    Any exception, including a 4xx raised by a service, rolls back every write
    the request made, audit entries and balance movements alike.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
