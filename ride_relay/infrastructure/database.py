"""
Persistence engine for ride records.

One async engine per process (``asyncpg`` on PostgreSQL).  The tracker writes
a single row per observable ride change, so the default pool with pre-ping
is plenty.  There are no migrations: ``init_models`` creates the
``ride_records`` table on startup.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ride_relay.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the ride record table."""


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create any missing tables on *bind*."""
    from . import models  # noqa: F401  registers RideRecordModel on Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
