"""Persistence sink interface -- receives read-only ride snapshots."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entities import Ride


class RideStore(ABC):
    @abstractmethod
    async def save(self, ride: Ride) -> None:
        """Insert or update the record for *ride*."""

    @abstractmethod
    async def delete(self, ride_id: int) -> None: ...

    @abstractmethod
    async def load_open(self, limit: int) -> list[Ride]:
        """Most recent non-finished rides, newest first."""

    @abstractmethod
    async def get(self, ride_id: int) -> Optional[Ride]:
        """The persisted record for *ride_id*, finished or not."""
