"""
Redis-based distributed lock.

Used by the payment reconciler so that only one API process expires
stale transactions at a time.

Acquire is ``SET key token NX EX ttl``; release runs a Lua script that
deletes the key only if it still holds our token, so a lock that expired
and was re-taken by another process is never released by us.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    """Another holder owns the lock."""


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"wali:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Try once, without waiting. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Release if still ours. Returns True if the key was deleted."""
        deleted = await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        return bool(deleted)

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
