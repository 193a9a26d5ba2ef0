"""
Ride endpoints
==============

POST   /rides                 -- create upstream and start tracking
GET    /rides                 -- tracked rides, newest first
GET    /rides/{ride_id}       -- one tracked ride
GET    /rides/{ride_id}/stage  -- relay: current stage (driver, vehicle, status)
GET    /rides/{ride_id}/status -- relay: general status
GET    /rides/{ride_id}/record -- relay: full record (final fare)
POST   /rides/{ride_id}/cancel   -- cancel upstream (and in the tracker)
POST   /rides/{ride_id}/relaunch -- recreate a frozen / canceled ride
DELETE /rides/{ride_id}       -- stop tracking and forget
"""

from fastapi import APIRouter, Depends, Request

from ride_relay.api.dependencies import get_dispatch_client, get_tracker
from ride_relay.api.middleware import RATE_LIMIT, limiter
from ride_relay.api.schemas import (
    RideCreatedResponse,
    RideCreateRequest,
    RideDetailResponse,
    RideListResponse,
    RideResponse,
)
from ride_relay.domain.errors import ValidationError
from ride_relay.domain.extraction import MAX_RIDE_ID
from ride_relay.infrastructure.dispatch_client import DispatchClient
from ride_relay.workers.tracker import RideTracker

router = APIRouter(prefix="/rides", tags=["rides"])


def _checked_id(ride_id: int) -> int:
    if ride_id <= 0 or ride_id > MAX_RIDE_ID:
        raise ValidationError("Invalid ride id.")
    return ride_id


@router.post(
    "",
    response_model=RideCreatedResponse,
    summary="Create a ride request",
)
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    tracker: RideTracker = Depends(get_tracker),
):
    ride, result = await tracker.create(
        body.origin, body.destination, body.note, body.fare
    )
    return RideCreatedResponse(rideId=ride.id, result=result)


@router.get("", response_model=RideListResponse, summary="List tracked rides")
async def list_rides(tracker: RideTracker = Depends(get_tracker)):
    return RideListResponse(
        rides=[RideResponse.from_ride(r) for r in tracker.rides()]
    )


@router.get(
    "/{ride_id}", response_model=RideDetailResponse, summary="Get a tracked ride"
)
async def get_ride(ride_id: int, tracker: RideTracker = Depends(get_tracker)):
    ride = tracker.get(_checked_id(ride_id))
    return RideDetailResponse(ride=RideResponse.from_ride(ride))


@router.get("/{ride_id}/stage", summary="Current stage from the dispatch API")
@limiter.limit(RATE_LIMIT)
async def get_stage(
    request: Request,
    ride_id: int,
    client: DispatchClient = Depends(get_dispatch_client),
):
    stage = await client.query_stage(_checked_id(ride_id))
    return {"ok": True, "stage": stage}


@router.get("/{ride_id}/status", summary="General status from the dispatch API")
@limiter.limit(RATE_LIMIT)
async def get_status(
    request: Request,
    ride_id: int,
    client: DispatchClient = Depends(get_dispatch_client),
):
    status = await client.query_status(_checked_id(ride_id))
    return {"ok": True, "status": status}


@router.get("/{ride_id}/record", summary="Full record from the dispatch API")
@limiter.limit(RATE_LIMIT)
async def get_record(
    request: Request,
    ride_id: int,
    client: DispatchClient = Depends(get_dispatch_client),
):
    record = await client.query_record(_checked_id(ride_id))
    return {"ok": True, "record": record}


@router.post(
    "/{ride_id}/cancel",
    summary="Cancel a ride",
    description=(
        "Cancels upstream.  A tracked ride becomes CANCELED and stops polling; "
        "FINISHED or already CANCELED rides are rejected with 409."
    ),
)
@limiter.limit(RATE_LIMIT)
async def cancel_ride(
    request: Request,
    ride_id: int,
    tracker: RideTracker = Depends(get_tracker),
):
    result = await tracker.cancel(_checked_id(ride_id))
    return {"ok": True, "result": result}


@router.post(
    "/{ride_id}/relaunch",
    response_model=RideDetailResponse,
    summary="Relaunch a frozen or canceled ride",
)
@limiter.limit(RATE_LIMIT)
async def relaunch_ride(
    request: Request,
    ride_id: int,
    tracker: RideTracker = Depends(get_tracker),
):
    ride = await tracker.relaunch(_checked_id(ride_id))
    return RideDetailResponse(ride=RideResponse.from_ride(ride))


@router.delete("/{ride_id}", summary="Stop tracking a ride")
async def remove_ride(ride_id: int, tracker: RideTracker = Depends(get_tracker)):
    await tracker.remove(_checked_id(ride_id))
    return {"ok": True}
