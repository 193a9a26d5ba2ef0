"""
Push notification channel
=========================

* ``PushSubscriptionStore`` -- browser subscriptions in a Redis hash keyed by
  endpoint URL, so every relay process sees the same registry.
* ``WebPushBroadcaster`` -- delivers one payload to every subscription via
  ``pywebpush``.  A 404/410 answer means the browser dropped the
  subscription, so it is pruned; any other failure only skips that
  recipient.
* ``TerminalBell`` -- the local audible cue.
* ``OperatorNotifier`` -- the ``NotificationSink`` the tracker uses.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Optional

import redis.asyncio as aioredis
from pywebpush import WebPushException, webpush

from ride_relay.domain.entities import Ride
from ride_relay.domain.errors import ValidationError
from ride_relay.domain.notifications import NotificationSink, PushMessage

logger = logging.getLogger(__name__)

EXPIRED_STATUSES = frozenset({404, 410})


def validate_subscription(subscription: Any) -> dict[str, Any]:
    if not isinstance(subscription, dict):
        raise ValidationError("Subscription must be a JSON object.")
    keys = subscription.get("keys") or {}
    if (
        not subscription.get("endpoint")
        or not isinstance(keys, dict)
        or not keys.get("p256dh")
        or not keys.get("auth")
    ):
        raise ValidationError("Invalid subscription data.")
    return subscription


class PushSubscriptionStore:
    KEY = "push:subscriptions"

    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def add(self, subscription: dict[str, Any]) -> bool:
        """Store (or refresh) a subscription.  Returns True if it was new."""
        subscription = validate_subscription(subscription)
        added = await self.redis.hset(
            self.KEY, subscription["endpoint"], json.dumps(subscription)
        )
        return bool(added)

    async def remove(self, endpoint: str) -> bool:
        return bool(await self.redis.hdel(self.KEY, endpoint))

    async def all(self) -> list[dict[str, Any]]:
        raw = await self.redis.hgetall(self.KEY)
        subscriptions = []
        for endpoint, value in raw.items():
            try:
                subscriptions.append(json.loads(value))
            except ValueError:
                logger.warning("Dropping unreadable subscription %s", endpoint)
                await self.remove(endpoint)
        return subscriptions

    async def count(self) -> int:
        return int(await self.redis.hlen(self.KEY))


class WebPushBroadcaster:
    def __init__(
        self,
        store: PushSubscriptionStore,
        vapid_private_key: str,
        vapid_subject: str,
    ):
        self.store = store
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject

    @property
    def configured(self) -> bool:
        return bool(self.vapid_private_key)

    async def send(self, message: PushMessage) -> tuple[int, int]:
        """Deliver to every subscriber.  Returns ``(sent, total)``."""
        if not self.configured:
            logger.info("VAPID keys not configured, skipping push %r", message.title)
            return 0, 0

        subscriptions = await self.store.all()
        data = json.dumps(message.to_payload())
        sent = 0
        for sub in subscriptions:
            try:
                await asyncio.to_thread(
                    webpush,
                    subscription_info=sub,
                    data=data,
                    vapid_private_key=self.vapid_private_key,
                    vapid_claims={"sub": self.vapid_subject},
                )
                sent += 1
            except WebPushException as exc:
                status = exc.response.status_code if exc.response is not None else None
                if status in EXPIRED_STATUSES:
                    logger.info("Removing expired push subscription (HTTP %s)", status)
                    await self.store.remove(sub.get("endpoint", ""))
                else:
                    logger.warning("Push delivery failed: %s", exc)
            except Exception as exc:
                logger.warning("Push delivery error: %s", exc)

        logger.info("Push %r sent to %d/%d subscribers", message.title, sent, len(subscriptions))
        return sent, len(subscriptions)


class TerminalBell:
    """Audible cue on the operator console."""

    def __init__(self, stream: Optional[Any] = None):
        self.stream = stream

    def ring(self) -> None:
        stream = self.stream or sys.stdout
        try:
            stream.write("\a")
            stream.flush()
        except (OSError, ValueError):
            pass


class OperatorNotifier(NotificationSink):
    def __init__(self, broadcaster: WebPushBroadcaster, bell: Optional[TerminalBell] = None):
        self.broadcaster = broadcaster
        self.bell = bell or TerminalBell()

    def alert(self, ride: Ride) -> None:
        logger.info("Driver accepted ride #%d: %s", ride.id, ride.driver_name)
        self.bell.ring()

    async def broadcast(self, message: PushMessage) -> int:
        sent, _ = await self.broadcaster.send(message)
        return sent
