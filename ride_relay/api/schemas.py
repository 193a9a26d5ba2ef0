"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ride_relay.domain.entities import Ride

MAX_ADDRESS_LENGTH = 255
MAX_NOTE_LENGTH = 1000


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    # Blank addresses are rejected by the tracker with a 400, not a 422
    origin: str = Field("", max_length=MAX_ADDRESS_LENGTH)
    destination: str = Field("", max_length=MAX_ADDRESS_LENGTH)
    note: str = Field("", max_length=MAX_NOTE_LENGTH)
    fare: Optional[float] = Field(
        None,
        description="Declared fare; omit to let the dispatch system compute it.",
    )


class PushNotifyRequest(BaseModel):
    title: str = "Ride update"
    body: str = ""
    url: str = "/"
    data: dict[str, Any] = Field(default_factory=dict)


class PushUnsubscribeRequest(BaseModel):
    endpoint: str


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    origin: str
    destination: str
    note: str = ""
    declared_fare: Optional[float] = None
    created_at: datetime
    state: str
    driver_name: str = ""
    vehicle_description: str = ""
    plate: str = ""
    stage_label: str = ""
    last_status_text: str = ""
    last_error: str = ""
    final_fare: Optional[float] = None
    notified_acceptance: bool = False
    relaunched_from: Optional[int] = None
    relaunched_to: Optional[int] = None
    can_relaunch: bool = False

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideResponse":
        return cls(
            **{
                **dataclasses.asdict(ride),
                "state": ride.state.value,
                "can_relaunch": ride.is_relaunchable,
            }
        )


class RideCreatedResponse(BaseModel):
    ok: bool = True
    rideId: int
    result: Any = None


class RideListResponse(BaseModel):
    ok: bool = True
    rides: list[RideResponse] = []


class RideDetailResponse(BaseModel):
    ok: bool = True
    ride: RideResponse


class PushKeyResponse(BaseModel):
    publicKey: str = ""


class PushDeliveryResponse(BaseModel):
    ok: bool = True
    sent: int = 0
    total: int = 0


class HealthResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    ok: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    details: Any = None
