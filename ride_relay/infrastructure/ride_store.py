"""SQL-backed persistence sink for ride snapshots."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .database import async_session_factory
from .repositories import RideRecordRepository, record_to_ride
from ride_relay.domain.entities import Ride
from ride_relay.domain.store import RideStore

logger = logging.getLogger(__name__)


class SqlRideStore(RideStore):
    def __init__(
        self,
        max_records: int = 120,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self.max_records = max_records
        self._session_factory = session_factory

    async def save(self, ride: Ride) -> None:
        async with self._session_factory() as session:
            repo = RideRecordRepository(session)
            await repo.upsert(ride)
            removed = await repo.trim(self.max_records)
            await session.commit()
        if removed:
            logger.debug("Trimmed %d old ride records", removed)

    async def delete(self, ride_id: int) -> None:
        async with self._session_factory() as session:
            await RideRecordRepository(session).delete(ride_id)
            await session.commit()

    async def load_open(self, limit: int) -> list[Ride]:
        async with self._session_factory() as session:
            records = await RideRecordRepository(session).get_open(limit)
        return [record_to_ride(r) for r in records]

    async def get(self, ride_id: int) -> Optional[Ride]:
        async with self._session_factory() as session:
            record = await RideRecordRepository(session).get_by_id(ride_id)
        return record_to_ride(record) if record is not None else None
