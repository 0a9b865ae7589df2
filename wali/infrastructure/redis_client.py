"""Redis connection pool shared by the notifier and the reconciler lock.

Responses are decoded to ``str``: pub/sub payloads are JSON text and the
lock compares tokens as strings.
"""

import redis.asyncio as aioredis

from wali.config import settings

_pool = aioredis.ConnectionPool.from_url(settings.redis_url, decode_responses=True)


async def get_redis() -> aioredis.Redis:
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    await _pool.disconnect()
