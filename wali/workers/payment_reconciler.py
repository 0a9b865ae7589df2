"""
Background Payment Reconciler
=============================

Runs every ``RECONCILE_INTERVAL_SECONDS`` (default 60 s).

Each cycle expires PENDING / PROCESSING payment transactions whose
``expires_at`` has passed, so that abandoned USSD pushes and card pages
do not stay open forever.  It never retries a charge.

Concurrency safety
------------------
* **Redis distributed lock**: only one API process runs a cycle at a time.
* Each expiry is a compare-and-set on the status that was read, so a
  webhook landing in the same instant wins or loses cleanly.
"""

from __future__ import annotations

import asyncio
import logging

from wali.config import settings
from wali.infrastructure.database import async_session_factory
from wali.infrastructure.locks import DistributedLock
from wali.infrastructure.notifier import RedisNotifier
from wali.infrastructure.payment_providers import build_gateways
from wali.infrastructure.redis_client import get_redis
from wali.infrastructure.repositories import OrderRepository, PaymentRepository
from wali.services.payments import PaymentService

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_reconciler_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Payment reconciler started (interval=%ds)", settings.reconcile_interval_seconds
    )


async def stop_reconciler_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Payment reconciler stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_reconcile_cycle()
        except Exception:
            logger.exception("Unhandled error in reconcile cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reconcile_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_reconcile_cycle() -> int:
    """Execute one cycle.  Returns the number of transactions expired."""
    redis = await get_redis()
    lock = DistributedLock(redis, "payment_reconciler", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker, skipping cycle")
        return 0

    try:
        async with async_session_factory() as session:
            service = PaymentService(
                PaymentRepository(session),
                OrderRepository(session),
                build_gateways(),
                RedisNotifier(),
            )
            expired = await service.expire_stale()
            await session.commit()
        if expired:
            logger.info("Expired %d stale payment(s)", expired)
        return expired
    finally:
        await lock.release()
