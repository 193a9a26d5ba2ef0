"""
Redis connection for the push-subscription registry.

The pool is built on first use, so importing the app never opens a
connection; ``close_pool`` runs at application shutdown.
"""

from typing import Optional

import redis.asyncio as aioredis

from ride_relay.config import settings

_pool: Optional[aioredis.ConnectionPool] = None


def _get_pool() -> aioredis.ConnectionPool:
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return _pool


async def get_redis() -> aioredis.Redis:
    """Client on the shared pool; responses are decoded to ``str``."""
    return aioredis.Redis(connection_pool=_get_pool())


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
