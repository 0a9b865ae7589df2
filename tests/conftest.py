"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models carry no
PostgreSQL-only column types, so the real ``Base.metadata`` is created
as is.  A file (not ``:memory:``) lets two sessions race on the same
rows in the concurrency tests.
"""

from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tests.fakes import FakeClock, FakeGeocoder, RecordingNotifier
from wali.api.security import create_access_token
from wali.domain.entities import User
from wali.domain.enums import PromotionType, UserRole, VehicleType
from wali.infrastructure.database import Base
from wali.infrastructure.models import PromotionModel, UserModel
from wali.infrastructure.payment_providers import FlutterwaveClient, build_gateways
from wali.infrastructure.repositories import (
    AddressRepository,
    OrderRepository,
    PaymentRepository,
    PromotionRepository,
    UserRepository,
)
from wali.services.addresses import AddressService
from wali.services.orders import OrderService
from wali.services.payments import PaymentService
from wali.services.pricing import PricingService


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'wali-test.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Seed data ─────────────────────────────────────────────────────────


USERS = {
    "client": dict(name="Aya Kouassi", phone="+2250701020304", role=UserRole.CLIENT),
    "other_client": dict(name="Koffi N'Guessan", phone="+2250505060708", role=UserRole.CLIENT),
    "moto_driver": dict(
        name="Ibrahim Coulibaly",
        phone="+2250711111111",
        role=UserRole.DRIVER,
        vehicle_type=VehicleType.MOTO,
        is_available=True,
    ),
    "car_driver": dict(
        name="Jean-Marc Aké",
        phone="+2250755555555",
        role=UserRole.DRIVER,
        vehicle_type=VehicleType.VOITURE,
        is_available=True,
    ),
    "admin": dict(name="Admin WALI", phone="+2250700000000", role=UserRole.ADMIN),
}


@pytest_asyncio.fixture
async def users(session_factory) -> SimpleNamespace:
    rows = {key: UserModel(**values) for key, values in USERS.items()}
    async with session_factory() as session:
        session.add_all(rows.values())
        await session.commit()
    return SimpleNamespace(
        **{
            key: User(
                id=row.id,
                role=row.role,
                name=row.name,
                phone=row.phone,
                vehicle_type=row.vehicle_type,
            )
            for key, row in rows.items()
        }
    )


@pytest_asyncio.fixture
async def promotions(session_factory) -> dict[str, int]:
    rows = [
        PromotionModel(
            code="WALI2024",
            promotion_type=PromotionType.PERCENTAGE,
            value=10,
            max_discount=1000,
            min_order_value=1000,
        ),
        PromotionModel(
            code="NOUVEAU",
            promotion_type=PromotionType.FIXED_AMOUNT,
            value=500,
            min_order_value=1500,
            usage_limit=1,
        ),
        PromotionModel(
            code="LIVRAISON",
            promotion_type=PromotionType.FREE_DELIVERY,
            value=0,
        ),
    ]
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()
    return {row.code: row.id for row in rows}


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


# ── Adapters ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def gateways():
    # no secret key: the Flutterwave client answers in simulated mode
    return build_gateways(FlutterwaveClient(secret_key=""))


# ── Services on a single session ──────────────────────────────────────


@pytest.fixture
def pricing_service(db_session) -> PricingService:
    return PricingService(
        OrderRepository(db_session), UserRepository(db_session), PromotionRepository(db_session)
    )


@pytest.fixture
def order_service(db_session, pricing_service, notifier, clock) -> OrderService:
    return OrderService(
        OrderRepository(db_session),
        UserRepository(db_session),
        pricing_service,
        notifier,
        clock=clock,
    )


@pytest.fixture
def payment_service(db_session, gateways, notifier, clock) -> PaymentService:
    return PaymentService(
        PaymentRepository(db_session),
        OrderRepository(db_session),
        gateways,
        notifier,
        clock=clock,
    )


@pytest.fixture
def address_service(db_session, geocoder) -> AddressService:
    return AddressService(AddressRepository(db_session), geocoder)


# ── HTTP client ───────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, notifier, geocoder, gateways):
    """AsyncClient over the real app, wired to SQLite and the fakes."""

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    with (
        patch(
            "wali.workers.payment_reconciler.start_reconciler_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "wali.workers.payment_reconciler.stop_reconciler_loop",
            new_callable=AsyncMock,
        ),
    ):
        from wali.api.app import create_app
        from wali.api.dependencies import get_db, get_gateways, get_geocoder, get_notifier
        from wali.api.middleware import limiter

        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        app.dependency_overrides[get_notifier] = lambda: notifier
        app.dependency_overrides[get_geocoder] = lambda: geocoder
        app.dependency_overrides[get_gateways] = lambda: gateways
        limiter.enabled = False

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

        limiter.enabled = True
