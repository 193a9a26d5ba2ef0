"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.
"""

from __future__ import annotations

from datetime import timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RideRecordModel
from ride_relay.domain.entities import Ride
from ride_relay.domain.enums import RideState

# Ride attributes mirrored one-to-one by ``RideRecordModel`` columns
_RIDE_COLUMNS = (
    "id",
    "origin",
    "destination",
    "note",
    "declared_fare",
    "created_at",
    "state",
    "driver_name",
    "vehicle_description",
    "plate",
    "stage_label",
    "last_status_text",
    "last_error",
    "final_fare",
    "notified_acceptance",
    "alerted",
    "relaunched_from",
    "relaunched_to",
)


def record_to_ride(record: RideRecordModel) -> Ride:
    values = {name: getattr(record, name) for name in _RIDE_COLUMNS}
    values["state"] = RideState(values["state"])
    values["note"] = values["note"] or ""
    if values["created_at"].tzinfo is None:
        # SQLite drops the offset; stored values are UTC
        values["created_at"] = values["created_at"].replace(tzinfo=timezone.utc)
    return Ride(**values)


class RideRecordRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(self, ride: Ride) -> RideRecordModel:
        record = await self.session.get(RideRecordModel, ride.id)
        if record is None:
            record = RideRecordModel(id=ride.id)
            self.session.add(record)
        for name in _RIDE_COLUMNS[1:]:
            setattr(record, name, getattr(ride, name))
        await self.session.flush()
        return record

    async def get_by_id(self, ride_id: int) -> Optional[RideRecordModel]:
        return await self.session.get(RideRecordModel, ride_id)

    async def get_open(self, limit: int) -> list[RideRecordModel]:
        result = await self.session.execute(
            select(RideRecordModel)
            .where(RideRecordModel.state != RideState.FINISHED)
            .order_by(RideRecordModel.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete(self, ride_id: int) -> None:
        await self.session.execute(
            delete(RideRecordModel).where(RideRecordModel.id == ride_id)
        )

    async def trim(self, keep: int) -> int:
        """Delete everything but the *keep* newest rows.  Returns rows removed."""
        result = await self.session.execute(
            select(RideRecordModel.id)
            .order_by(RideRecordModel.created_at.desc())
            .offset(keep)
        )
        stale = list(result.scalars().all())
        if stale:
            await self.session.execute(
                delete(RideRecordModel).where(RideRecordModel.id.in_(stale))
            )
        return len(stale)
