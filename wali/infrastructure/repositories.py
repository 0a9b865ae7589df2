"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work), exposes
domain-relevant queries only and speaks domain entities, never ORM rows.
Nothing here commits: the request (``get_db``) or the worker owns the
transaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AddressModel,
    OrderItemModel,
    OrderModel,
    PaymentTransactionModel,
    PromotionModel,
    StatusHistoryModel,
    UserModel,
)
from wali.domain.entities import (
    Address,
    Order,
    OrderItem,
    PaymentTransaction,
    Promotion,
    StatusHistoryEntry,
    User,
)
from wali.domain.enums import (
    TERMINAL_ORDER_STATUSES,
    TERMINAL_TRANSACTION_STATUSES,
    OrderStatus,
    TransactionStatus,
    UserRole,
    VehicleType,
)
from wali.domain.repositories import (
    IAddressRepository,
    IOrderRepository,
    IPaymentRepository,
    IPromotionRepository,
    IUserRepository,
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything in the domain is UTC-aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Mapping ───────────────────────────────────────────────────────────


def _to_user(row: UserModel) -> User:
    return User(
        id=row.id,
        role=row.role,
        name=row.name,
        phone=row.phone,
        vehicle_type=row.vehicle_type,
        is_active=row.is_active,
    )


def _to_address(row: AddressModel) -> Address:
    return Address(
        id=row.id,
        user_id=row.user_id,
        label=row.label,
        street=row.street,
        city=row.city,
        district=row.district,
        landmark=row.landmark,
        latitude=row.latitude,
        longitude=row.longitude,
        is_default=row.is_default,
        created_at=_utc(row.created_at),
    )


def _snapshot(row: OrderModel, prefix: str) -> Address:
    return Address(
        street=getattr(row, f"{prefix}_street"),
        city=getattr(row, f"{prefix}_city"),
        district=getattr(row, f"{prefix}_district"),
        landmark=getattr(row, f"{prefix}_landmark"),
        latitude=getattr(row, f"{prefix}_latitude"),
        longitude=getattr(row, f"{prefix}_longitude"),
    )


def _snapshot_columns(address: Address, prefix: str) -> dict[str, Any]:
    return {
        f"{prefix}_street": address.street,
        f"{prefix}_city": address.city,
        f"{prefix}_district": address.district,
        f"{prefix}_landmark": address.landmark,
        f"{prefix}_latitude": address.latitude,
        f"{prefix}_longitude": address.longitude,
    }


def _to_order(row: OrderModel) -> Order:
    return Order(
        id=row.id,
        order_number=row.order_number,
        client_id=row.client_id,
        driver_id=row.driver_id,
        order_type=row.order_type,
        pickup=_snapshot(row, "pickup"),
        delivery=_snapshot(row, "delivery"),
        items=[
            OrderItem(
                id=i.id,
                name=i.name,
                description=i.description,
                quantity=i.quantity,
                weight_kg=i.weight_kg,
                value=i.value,
                fragile=i.fragile,
                category=i.category,
            )
            for i in row.items
        ],
        priority=row.priority,
        preferred_vehicle_type=row.preferred_vehicle_type,
        status=row.status,
        pricing=dict(row.pricing or {}),
        total_price=row.total_price,
        payment_method=row.payment_method,
        payment_status=row.payment_status,
        notes=row.notes,
        promotion_code=row.promotion_code,
        scheduled_at=_utc(row.scheduled_at),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
        completed_at=_utc(row.completed_at),
    )


def _to_history(row: StatusHistoryModel) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        id=row.id,
        order_id=row.order_id,
        status=row.status,
        timestamp=_utc(row.timestamp),
        latitude=row.latitude,
        longitude=row.longitude,
        notes=row.notes,
        updated_by=row.updated_by,
        updated_by_role=row.updated_by_role,
    )


def _to_promotion(row: PromotionModel) -> Promotion:
    return Promotion(
        id=row.id,
        code=row.code,
        description=row.description,
        promotion_type=row.promotion_type,
        value=row.value,
        max_discount=row.max_discount,
        min_order_value=row.min_order_value,
        valid_from=_utc(row.valid_from),
        valid_until=_utc(row.valid_until),
        usage_limit=row.usage_limit,
        usage_count=row.usage_count,
        is_active=row.is_active,
    )


_TX_FIELDS = (
    "order_id",
    "user_id",
    "reference",
    "provider",
    "amount",
    "currency",
    "status",
    "phone_number",
    "provider_transaction_id",
    "payment_url",
    "ussd_code",
    "error_code",
    "message",
    "expires_at",
    "created_at",
    "updated_at",
    "completed_at",
)


def _to_transaction(row: PaymentTransactionModel) -> PaymentTransaction:
    values = {name: getattr(row, name) for name in _TX_FIELDS}
    for name in ("expires_at", "created_at", "updated_at", "completed_at"):
        values[name] = _utc(values[name])
    return PaymentTransaction(id=row.id, **values)


# ── Repositories ──────────────────────────────────────────────────────


class UserRepository(IUserRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[User]:
        row = await self.session.get(UserModel, user_id)
        return _to_user(row) if row else None

    async def count_available_drivers(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(UserModel)
            .where(
                UserModel.role == UserRole.DRIVER,
                UserModel.is_active.is_(True),
                UserModel.is_available.is_(True),
            )
        )
        return result.scalar() or 0


class AddressRepository(IAddressRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_user(self, user_id: int) -> list[Address]:
        result = await self.session.execute(
            select(AddressModel)
            .where(AddressModel.user_id == user_id)
            .order_by(
                AddressModel.is_default.desc(),
                AddressModel.created_at.desc(),
                AddressModel.id.desc(),
            )
            .execution_options(populate_existing=True)
        )
        return [_to_address(r) for r in result.scalars().all()]

    async def get(self, address_id: int) -> Optional[Address]:
        row = await self.session.get(
            AddressModel, address_id, populate_existing=True
        )
        return _to_address(row) if row else None

    async def add(self, address: Address) -> Address:
        row = AddressModel(
            user_id=address.user_id,
            label=address.label,
            street=address.street,
            city=address.city,
            district=address.district,
            landmark=address.landmark,
            latitude=address.latitude,
            longitude=address.longitude,
            is_default=address.is_default,
            created_at=address.created_at or datetime.now(timezone.utc),
        )
        self.session.add(row)
        await self.session.flush()
        return _to_address(row)

    async def update(self, address: Address) -> Address:
        row = await self.session.get(AddressModel, address.id)
        for name in (
            "label",
            "street",
            "city",
            "district",
            "landmark",
            "latitude",
            "longitude",
            "is_default",
        ):
            setattr(row, name, getattr(address, name))
        await self.session.flush()
        return _to_address(row)

    async def delete(self, address_id: int) -> None:
        await self.session.execute(
            delete(AddressModel).where(AddressModel.id == address_id)
        )

    async def set_default(self, user_id: int, address_id: Optional[int]) -> None:
        await self.session.execute(
            update(AddressModel)
            .where(AddressModel.user_id == user_id)
            .values(is_default=(AddressModel.id == address_id) if address_id else False)
            .execution_options(synchronize_session=False)
        )


class OrderRepository(IOrderRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load(self, order_id: int) -> Optional[OrderModel]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, order: Order) -> Order:
        row = OrderModel(
            order_number=order.order_number,
            client_id=order.client_id,
            driver_id=order.driver_id,
            order_type=order.order_type,
            status=order.status,
            priority=order.priority,
            preferred_vehicle_type=order.preferred_vehicle_type,
            **_snapshot_columns(order.pickup, "pickup"),
            **_snapshot_columns(order.delivery, "delivery"),
            pricing=order.pricing,
            total_price=order.total_price,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            notes=order.notes,
            promotion_code=order.promotion_code,
            scheduled_at=order.scheduled_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
            items=[
                OrderItemModel(
                    name=i.name,
                    description=i.description,
                    quantity=i.quantity,
                    weight_kg=i.weight_kg,
                    value=i.value,
                    fragile=i.fragile,
                    category=i.category,
                )
                for i in order.items
            ],
        )
        self.session.add(row)
        await self.session.flush()
        return _to_order(row)

    async def get(self, order_id: int) -> Optional[Order]:
        row = await self._load(order_id)
        return _to_order(row) if row else None

    async def _list(self, query) -> list[Order]:
        result = await self.session.execute(
            query.execution_options(populate_existing=True)
        )
        return [_to_order(r) for r in result.scalars().all()]

    async def list_page(
        self,
        *,
        client_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        """Newest first, with the total number of matching orders."""
        conditions = []
        if client_id is not None:
            conditions.append(OrderModel.client_id == client_id)
        if driver_id is not None:
            conditions.append(OrderModel.driver_id == driver_id)
        total = await self.session.execute(
            select(func.count()).select_from(OrderModel).where(*conditions)
        )
        orders = await self._list(
            select(OrderModel)
            .where(*conditions)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return orders, total.scalar() or 0

    async def list_available(
        self, vehicle_type: Optional[VehicleType]
    ) -> list[Order]:
        query = select(OrderModel).where(OrderModel.status == OrderStatus.PENDING)
        if vehicle_type is not None:
            query = query.where(
                or_(
                    OrderModel.preferred_vehicle_type.is_(None),
                    OrderModel.preferred_vehicle_type == vehicle_type,
                )
            )
        else:
            query = query.where(OrderModel.preferred_vehicle_type.is_(None))
        return await self._list(
            query.order_by(OrderModel.created_at, OrderModel.id)
        )

    async def count_pending(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(OrderModel)
            .where(OrderModel.status == OrderStatus.PENDING)
        )
        return result.scalar() or 0

    async def compare_and_set_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new_status: OrderStatus,
        *,
        updated_at: datetime,
        **changes: Any,
    ) -> Optional[Order]:
        """``UPDATE orders SET status = :new ... WHERE id = :id AND status = :expected``."""
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == expected)
            .values(status=new_status, updated_at=updated_at, **changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        row = await self._load(order_id)
        return _to_order(row) if row else None

    async def update_details(
        self, order_id: int, *, updated_at: datetime, **changes: Any
    ) -> Optional[Order]:
        """Edit non-status columns of an order that is still open."""
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status.not_in(list(TERMINAL_ORDER_STATUSES)),
            )
            .values(updated_at=updated_at, **changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        row = await self._load(order_id)
        return _to_order(row) if row else None

    async def update_fields(self, order_id: int, **changes: Any) -> None:
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )

    async def add_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        row = StatusHistoryModel(
            order_id=entry.order_id,
            status=entry.status,
            timestamp=entry.timestamp,
            latitude=entry.latitude,
            longitude=entry.longitude,
            notes=entry.notes,
            updated_by=entry.updated_by,
            updated_by_role=entry.updated_by_role,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_history(row)

    async def list_history(self, order_id: int) -> list[StatusHistoryEntry]:
        result = await self.session.execute(
            select(StatusHistoryModel)
            .where(StatusHistoryModel.order_id == order_id)
            .order_by(StatusHistoryModel.timestamp, StatusHistoryModel.id)
        )
        return [_to_history(r) for r in result.scalars().all()]


class PromotionRepository(IPromotionRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> Optional[Promotion]:
        result = await self.session.execute(
            select(PromotionModel)
            .where(func.upper(PromotionModel.code) == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_promotion(row) if row else None

    async def consume(self, promotion_id: int) -> bool:
        result = await self.session.execute(
            update(PromotionModel)
            .where(
                PromotionModel.id == promotion_id,
                or_(
                    PromotionModel.usage_limit.is_(None),
                    PromotionModel.usage_count < PromotionModel.usage_limit,
                ),
            )
            .values(usage_count=PromotionModel.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PaymentRepository(IPaymentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, tx: PaymentTransaction) -> PaymentTransaction:
        row = PaymentTransactionModel(**{name: getattr(tx, name) for name in _TX_FIELDS})
        self.session.add(row)
        await self.session.flush()
        return _to_transaction(row)

    async def get(self, tx_id: int) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.id == tx_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_transaction(row) if row else None

    async def get_by_reference(self, reference: str) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.reference == reference)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_transaction(row) if row else None

    async def list_for_order(self, order_id: int) -> list[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.created_at, PaymentTransactionModel.id)
            .execution_options(populate_existing=True)
        )
        return [_to_transaction(r) for r in result.scalars().all()]

    async def list_stale(self, now: datetime) -> list[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(
                PaymentTransactionModel.status.not_in(list(TERMINAL_TRANSACTION_STATUSES)),
                PaymentTransactionModel.expires_at.is_not(None),
                PaymentTransactionModel.expires_at <= now,
            )
            .execution_options(populate_existing=True)
        )
        return [_to_transaction(r) for r in result.scalars().all()]

    async def save(
        self, tx: PaymentTransaction, expected: TransactionStatus
    ) -> bool:
        values = {
            name: getattr(tx, name)
            for name in _TX_FIELDS
            if name not in ("order_id", "user_id", "reference", "created_at")
        }
        result = await self.session.execute(
            update(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.id == tx.id,
                PaymentTransactionModel.status == expected,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
