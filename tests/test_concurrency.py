"""
Concurrency safety tests.

Demonstrates:
1. Two drivers accepting the same order: exactly one wins.
2. Compare-and-set updates lose cleanly against a committed change.
3. Promotion usage limits hold under concurrent orders.
4. Distributed lock prevents two reconciler cycles at once.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from tests.fakes import FakeClock, RecordingNotifier, make_draft
from wali.domain.entities import PaymentTransaction
from wali.domain.enums import OrderStatus, PaymentProvider, TransactionStatus
from wali.domain.errors import ConflictError
from wali.infrastructure.locks import DistributedLock, LockNotAcquired
from wali.infrastructure.payment_providers import FlutterwaveClient, build_gateways
from wali.infrastructure.repositories import (
    OrderRepository,
    PaymentRepository,
    PromotionRepository,
    UserRepository,
)
from wali.services.orders import OrderService
from wali.services.pricing import PricingService
from wali.workers.payment_reconciler import run_reconcile_cycle


def _order_service(session) -> OrderService:
    pricing = PricingService(
        OrderRepository(session), UserRepository(session), PromotionRepository(session)
    )
    return OrderService(
        OrderRepository(session),
        UserRepository(session),
        pricing,
        RecordingNotifier(),
        clock=FakeClock(),
    )


async def _committed_order(session_factory, client):
    async with session_factory() as session:
        order = await _order_service(session).create_order(make_draft(), client)
        await session.commit()
    return order


class TestAcceptRace:
    @pytest.mark.asyncio
    async def test_exactly_one_driver_wins(self, session_factory, users):
        order = await _committed_order(session_factory, users.client)

        async def accept(driver):
            async with session_factory() as session:
                try:
                    await _order_service(session).accept_order(order.id, driver)
                    await session.commit()
                    return "ok"
                except ConflictError:
                    await session.rollback()
                    return "conflict"

        results = await asyncio.gather(
            accept(users.moto_driver), accept(users.car_driver)
        )
        assert sorted(results) == ["conflict", "ok"]

        async with session_factory() as session:
            stored = await OrderRepository(session).get(order.id)
            history = await OrderRepository(session).list_history(order.id)
        assert stored.status == OrderStatus.ACCEPTED
        assert stored.driver_id in (users.moto_driver.id, users.car_driver.id)
        # the loser left no trace
        assert [h.status for h in history] == [OrderStatus.PENDING, OrderStatus.ACCEPTED]

    @pytest.mark.asyncio
    async def test_stale_compare_and_set_matches_nothing(self, session_factory, users):
        order = await _committed_order(session_factory, users.client)
        now = datetime.now(timezone.utc)

        async with session_factory() as slow, session_factory() as fast:
            seen = await OrderRepository(slow).get(order.id)
            assert seen.status == OrderStatus.PENDING

            cancelled = await OrderRepository(fast).compare_and_set_status(
                order.id, OrderStatus.PENDING, OrderStatus.CANCELLED, updated_at=now
            )
            assert cancelled.status == OrderStatus.CANCELLED
            await fast.commit()

            lost = await OrderRepository(slow).compare_and_set_status(
                order.id,
                seen.status,
                OrderStatus.ACCEPTED,
                updated_at=now,
                driver_id=users.moto_driver.id,
            )
            assert lost is None

    @pytest.mark.asyncio
    async def test_stale_payment_save_is_rejected(self, session_factory, users):
        order = await _committed_order(session_factory, users.client)
        now = datetime.now(timezone.utc)
        async with session_factory() as session:
            tx = await PaymentRepository(session).add(
                PaymentTransaction(
                    order_id=order.id,
                    user_id=users.client.id,
                    amount=order.total_price,
                    provider=PaymentProvider.WAVE,
                    reference=f"WALI-{order.id}-RACE0001",
                    status=TransactionStatus.PROCESSING,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()

        async with session_factory() as webhook, session_factory() as poller:
            a = await PaymentRepository(webhook).get(tx.id)
            b = await PaymentRepository(poller).get(tx.id)

            a.transition_to(TransactionStatus.COMPLETED)
            assert await PaymentRepository(webhook).save(a, TransactionStatus.PROCESSING)
            await webhook.commit()

            b.transition_to(TransactionStatus.EXPIRED)
            assert not await PaymentRepository(poller).save(b, TransactionStatus.PROCESSING)


class TestPromotionUsage:
    @pytest.mark.asyncio
    async def test_usage_limit_holds_under_concurrency(self, session_factory, promotions):
        async def consume():
            async with session_factory() as session:
                ok = await PromotionRepository(session).consume(promotions["NOUVEAU"])
                await session.commit()
                return ok

        results = await asyncio.gather(consume(), consume(), consume())
        assert sorted(results) == [False, False, True]

        async with session_factory() as session:
            promo = await PromotionRepository(session).get_by_code("NOUVEAU")
        assert promo.usage_count == 1

    @pytest.mark.asyncio
    async def test_unlimited_promotion(self, session_factory, promotions):
        async with session_factory() as session:
            repo = PromotionRepository(session)
            assert await repo.consume(promotions["WALI2024"])
            assert await repo.consume(promotions["WALI2024"])
            await session.commit()
            assert (await repo.get_by_code("wali2024")).usage_count == 2


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "payment_reconciler", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "wali:lock:payment_reconciler", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "payment_reconciler", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_only_deletes_own_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "payment_reconciler", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "wali:lock:payment_reconciler", lock.token)

    @pytest.mark.asyncio
    async def test_each_lock_has_its_own_token(self):
        first = DistributedLock(AsyncMock(), "payment_reconciler")
        second = DistributedLock(AsyncMock(), "payment_reconciler")
        assert first.token != second.token

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "payment_reconciler", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass
        assert issubclass(LockNotAcquired, RuntimeError)


class TestReconciler:
    @pytest.mark.asyncio
    async def test_cycle_skipped_when_lock_is_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        with (
            patch(
                "wali.workers.payment_reconciler.get_redis",
                AsyncMock(return_value=mock_redis),
            ),
            patch("wali.workers.payment_reconciler.async_session_factory") as factory,
        ):
            assert await run_reconcile_cycle() == 0

        factory.assert_not_called()
        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_cycle_expires_overdue_payments(self, session_factory, users):
        order = await _committed_order(session_factory, users.client)
        overdue = datetime(2024, 1, 10, 10, 30, tzinfo=timezone.utc)
        async with session_factory() as session:
            tx = await PaymentRepository(session).add(
                PaymentTransaction(
                    order_id=order.id,
                    user_id=users.client.id,
                    amount=order.total_price,
                    provider=PaymentProvider.ORANGE_MONEY,
                    reference=f"WALI-{order.id}-OLD00001",
                    status=TransactionStatus.PROCESSING,
                    expires_at=overdue,
                    created_at=overdue,
                    updated_at=overdue,
                )
            )
            await session.commit()

        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        with (
            patch(
                "wali.workers.payment_reconciler.get_redis",
                AsyncMock(return_value=mock_redis),
            ),
            patch("wali.workers.payment_reconciler.async_session_factory", session_factory),
            patch(
                "wali.workers.payment_reconciler.build_gateways",
                lambda: build_gateways(FlutterwaveClient(secret_key="")),
            ),
        ):
            assert await run_reconcile_cycle() == 1

        mock_redis.eval.assert_awaited_once()
        async with session_factory() as session:
            stored = await PaymentRepository(session).get(tx.id)
        assert stored.status == TransactionStatus.EXPIRED
        assert stored.error_code == "EXPIRED"
