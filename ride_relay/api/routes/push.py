"""
Push endpoints
==============

GET  /push/public-key  -- VAPID public key for the browser
POST /push/subscribe   -- register a subscription descriptor
POST /push/unsubscribe -- drop a subscription by endpoint
POST /push/notify      -- broadcast {title, body, url, data}
GET|POST /push/test    -- broadcast a canned test message
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from ride_relay.api.dependencies import get_broadcaster, get_subscription_store
from ride_relay.api.middleware import RATE_LIMIT, limiter
from ride_relay.api.schemas import (
    PushDeliveryResponse,
    PushKeyResponse,
    PushNotifyRequest,
    PushUnsubscribeRequest,
)
from ride_relay.config import settings
from ride_relay.domain.errors import PushNotConfigured
from ride_relay.domain.notifications import PushMessage
from ride_relay.infrastructure.push import PushSubscriptionStore, WebPushBroadcaster

router = APIRouter(prefix="/push", tags=["push"])


def _require_configured(broadcaster: WebPushBroadcaster) -> None:
    if not broadcaster.configured:
        raise PushNotConfigured("Push notifications are not configured.")


@router.get("/public-key", response_model=PushKeyResponse)
async def public_key():
    return PushKeyResponse(publicKey=settings.vapid_public_key)


@router.post("/subscribe")
@limiter.limit(RATE_LIMIT)
async def subscribe(
    request: Request,
    subscription: Any = Body(...),
    store: PushSubscriptionStore = Depends(get_subscription_store),
):
    is_new = await store.add(subscription)
    return {"ok": True, "new": is_new}


@router.post("/unsubscribe")
async def unsubscribe(
    body: PushUnsubscribeRequest,
    store: PushSubscriptionStore = Depends(get_subscription_store),
):
    found = await store.remove(body.endpoint)
    return {"ok": True, "found": found}


@router.post("/notify", response_model=PushDeliveryResponse)
@limiter.limit(RATE_LIMIT)
async def notify(
    request: Request,
    body: PushNotifyRequest,
    broadcaster: WebPushBroadcaster = Depends(get_broadcaster),
):
    _require_configured(broadcaster)
    sent, total = await broadcaster.send(
        PushMessage(title=body.title, body=body.body, url=body.url, data=body.data)
    )
    return PushDeliveryResponse(sent=sent, total=total)


@router.api_route("/test", methods=["GET", "POST"], response_model=PushDeliveryResponse)
@limiter.limit(RATE_LIMIT)
async def test_push(
    request: Request,
    broadcaster: WebPushBroadcaster = Depends(get_broadcaster),
):
    _require_configured(broadcaster)
    sent, total = await broadcaster.send(
        PushMessage(
            title="Test notification",
            body="Push notifications are working.",
            url="/",
            data={"test": True},
        )
    )
    return PushDeliveryResponse(sent=sent, total=total)
