"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from wali.api.security import decode_access_token
from wali.domain.entities import User
from wali.domain.enums import PaymentProvider, UserRole
from wali.domain.errors import AuthenticationError, PermissionDeniedError
from wali.infrastructure.database import async_session_factory
from wali.infrastructure.geocoding import Geocoder, GoogleGeocoder
from wali.infrastructure.notifier import Notifier, RedisNotifier
from wali.infrastructure.payment_providers import PaymentGateway, build_gateways
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

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Adapters (overridable in tests) ───────────────────────────────────


def get_notifier() -> Notifier:
    return RedisNotifier()


def get_geocoder() -> Geocoder:
    return GoogleGeocoder()


def get_gateways() -> dict[PaymentProvider, PaymentGateway]:
    return build_gateways()


# ── Authentication ────────────────────────────────────────────────────


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not credentials:
        raise AuthenticationError()
    user_id = decode_access_token(credentials.credentials)
    user = await UserRepository(db).get(user_id)
    if user is None:
        raise AuthenticationError()
    if not user.is_active:
        raise PermissionDeniedError("Compte désactivé")
    return user


def require_role(*roles: UserRole):
    """
    Dependency that checks the current user holds one of *roles*.
    Usage: ``Depends(require_role(UserRole.ADMIN))``
    """

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise PermissionDeniedError()
        return user

    return _check


require_admin = require_role(UserRole.ADMIN)
require_driver = require_role(UserRole.DRIVER)


# ── Services ──────────────────────────────────────────────────────────


def get_pricing_service(db: AsyncSession = Depends(get_db)) -> PricingService:
    return PricingService(
        OrderRepository(db), UserRepository(db), PromotionRepository(db)
    )


def get_order_service(
    db: AsyncSession = Depends(get_db),
    pricing: PricingService = Depends(get_pricing_service),
    notifier: Notifier = Depends(get_notifier),
) -> OrderService:
    return OrderService(OrderRepository(db), UserRepository(db), pricing, notifier)


def get_address_service(
    db: AsyncSession = Depends(get_db),
    geocoder: Geocoder = Depends(get_geocoder),
) -> AddressService:
    return AddressService(AddressRepository(db), geocoder)


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateways: dict[PaymentProvider, PaymentGateway] = Depends(get_gateways),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentService:
    return PaymentService(PaymentRepository(db), OrderRepository(db), gateways, notifier)
