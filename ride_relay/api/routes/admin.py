"""
Health endpoint
===============

GET /health -- liveness probe used by the front-end's API indicator
"""

from fastapi import APIRouter

from ride_relay.api.schemas import HealthResponse

router = APIRouter(tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
