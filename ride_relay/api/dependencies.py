"""FastAPI dependency injection helpers.

Long-lived services are built once in the app lifespan and kept on
``app.state``; routes receive them through these providers so tests can
swap them with ``app.dependency_overrides``.
"""

from fastapi import Request

from ride_relay.infrastructure.dispatch_client import DispatchClient
from ride_relay.infrastructure.push import PushSubscriptionStore, WebPushBroadcaster
from ride_relay.workers.tracker import RideTracker


def get_tracker(request: Request) -> RideTracker:
    return request.app.state.tracker


def get_dispatch_client(request: Request) -> DispatchClient:
    return request.app.state.dispatch_client


def get_subscription_store(request: Request) -> PushSubscriptionStore:
    return request.app.state.subscription_store


def get_broadcaster(request: Request) -> WebPushBroadcaster:
    return request.app.state.broadcaster
