"""
Notification fan-out over Redis pub/sub.

Channels
--------
* ``notifications:user:<id>`` -- lifecycle and payment notifications
* ``chat:order:<id>``         -- ephemeral client <-> driver messages

Publishing is fire-and-forget: a Redis failure is logged and swallowed so
that it can never roll back the order change that triggered it.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable

import redis.asyncio as aioredis

from wali.domain.notifications import WaliNotification
from wali.infrastructure.redis_client import get_redis

logger = logging.getLogger(__name__)


def user_channel(user_id: int) -> str:
    return f"notifications:user:{user_id}"


def chat_channel(order_id: int) -> str:
    return f"chat:order:{order_id}"


class Notifier(ABC):
    @abstractmethod
    async def publish(self, notification: WaliNotification) -> None: ...

    @abstractmethod
    async def publish_chat(self, order_id: int, message: dict[str, Any]) -> None: ...

    async def publish_many(self, notifications: Iterable[WaliNotification]) -> None:
        for notification in notifications:
            await self.publish(notification)


class RedisNotifier(Notifier):
    def __init__(
        self,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
    ):
        self._redis_factory = redis_factory

    async def _send(self, channel: str, payload: dict[str, Any]) -> None:
        try:
            client = await self._redis_factory()
            await client.publish(channel, json.dumps(payload, ensure_ascii=False))
        except Exception:
            logger.exception("Failed to publish on %s", channel)

    async def publish(self, notification: WaliNotification) -> None:
        await self._send(user_channel(notification.user_id), notification.to_dict())

    async def publish_chat(self, order_id: int, message: dict[str, Any]) -> None:
        await self._send(chat_channel(order_id), message)
