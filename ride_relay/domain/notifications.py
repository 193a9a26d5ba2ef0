"""
Notification Sink (Strategy Pattern)
====================================

The tracker only knows this interface.  Two independent channels:

* ``alert`` -- local audible cue, fire-and-forget.
* ``broadcast`` -- push message to every registered device; returns the
  number of deliveries.

Both are best-effort: failures never change a ride's state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from .entities import Ride


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    url: str = "/"
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "url": self.url,
            "data": self.data,
        }


def acceptance_message(ride: Ride) -> PushMessage:
    """The one "driver accepted" message sent per ride."""
    parts = [f"#{ride.id}", ride.driver_name, ride.vehicle_description, ride.plate]
    return PushMessage(
        title="Driver accepted",
        body=" • ".join(p for p in parts if p),
        url="/",
        data={
            "id": ride.id,
            "driver": ride.driver_name,
            "vehicle": ride.vehicle_description,
            "plate": ride.plate,
            "origin": ride.origin,
            "destination": ride.destination,
        },
    )


class NotificationSink(ABC):
    @abstractmethod
    def alert(self, ride: Ride) -> None: ...

    @abstractmethod
    async def broadcast(self, message: PushMessage) -> int: ...
