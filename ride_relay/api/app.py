"""
FastAPI application factory.

* Registers routes for rides, push and health.
* Builds the long-lived services in the lifespan (dispatch client, push
  registry, ride tracker), restores persisted rides on startup and stops
  every poll task on shutdown.
* Maps the relay's error taxonomy to ``{ok: false, ...}`` JSON bodies.
* Applies rate-limiting.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ride_relay.api.middleware import limiter
from ride_relay.api.routes import admin, push, rides
from ride_relay.config import settings
from ride_relay.domain.entities import InvalidStateTransition
from ride_relay.domain.errors import (
    NotFoundExtraction,
    PushNotConfigured,
    RideNotTracked,
    TransportError,
    UpstreamError,
    ValidationError,
)
from ride_relay.infrastructure import redis_client
from ride_relay.infrastructure.database import engine, init_models
from ride_relay.infrastructure.dispatch_client import DispatchClient
from ride_relay.infrastructure.push import (
    OperatorNotifier,
    PushSubscriptionStore,
    WebPushBroadcaster,
)
from ride_relay.infrastructure.ride_store import SqlRideStore
from ride_relay.workers.tracker import RideTracker

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services and resume tracking on startup; tear down on shutdown."""
    await init_models()

    client = DispatchClient.from_settings(settings)
    subscriptions = PushSubscriptionStore(await redis_client.get_redis())
    broadcaster = WebPushBroadcaster(
        subscriptions, settings.vapid_private_key, settings.vapid_subject
    )
    tracker = RideTracker(
        client,
        OperatorNotifier(broadcaster),
        SqlRideStore(max_records=settings.max_persisted_rides),
        poll_interval_seconds=settings.poll_interval_seconds,
        max_rides=settings.max_persisted_rides,
    )

    app.state.dispatch_client = client
    app.state.subscription_store = subscriptions
    app.state.broadcaster = broadcaster
    app.state.tracker = tracker

    await tracker.restore()
    logger.info(
        "Ride relay started (poll interval=%ss, push %s)",
        settings.poll_interval_seconds,
        "enabled" if settings.push_configured else "disabled",
    )
    yield
    await tracker.shutdown()
    await client.aclose()
    await redis_client.close_pool()
    await engine.dispose()


# ── Error mapping ─────────────────────────────────────────────────────


def _error(status_code: int, **body) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, **body})


async def _validation_error(request: Request, exc: ValidationError):
    return _error(400, message=str(exc))


async def _request_validation_error(request: Request, exc: RequestValidationError):
    return _error(400, message="Invalid request.", details=jsonable_errors(exc))


async def _upstream_error(request: Request, exc: UpstreamError):
    return _error(exc.status_code, details=exc.details)


async def _transport_error(request: Request, exc: TransportError):
    return _error(500, error=str(exc))


async def _not_found_extraction(request: Request, exc: NotFoundExtraction):
    return _error(502, message=str(exc), details=exc.payload)


async def _invalid_transition(request: Request, exc: InvalidStateTransition):
    return _error(409, message=str(exc))


async def _not_tracked(request: Request, exc: RideNotTracked):
    return _error(404, message=str(exc))


async def _push_not_configured(request: Request, exc: PushNotConfigured):
    return _error(503, message=str(exc))


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Relay API",
        description=(
            "Relays ride requests to the dispatch API, tracks each ride until "
            "a driver accepts and the trip ends, and pushes browser "
            "notifications on acceptance."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Error taxonomy
    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(UpstreamError, _upstream_error)
    app.add_exception_handler(TransportError, _transport_error)
    app.add_exception_handler(NotFoundExtraction, _not_found_extraction)
    app.add_exception_handler(InvalidStateTransition, _invalid_transition)
    app.add_exception_handler(RideNotTracked, _not_tracked)
    app.add_exception_handler(PushNotConfigured, _push_not_configured)

    # Routers
    app.include_router(admin.router)
    app.include_router(rides.router)
    app.include_router(push.router)

    # Optional front-end, mounted last so API routes take precedence
    if settings.static_dir and Path(settings.static_dir).is_dir():
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")

    return app
