"""
Repository interfaces.

The service layer depends only on these contracts.  The SQLAlchemy
implementations live in :mod:`wali.infrastructure.repositories`; the test
suite ships in-memory ones.

Every status change goes through a *compare-and-set* method: the write
only happens if the stored status still equals the expected one, and the
method reports whether it did.  This is what keeps two drivers from
accepting the same order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from .entities import (
    Address,
    Order,
    PaymentTransaction,
    Promotion,
    StatusHistoryEntry,
    User,
)
from .enums import OrderStatus, TransactionStatus, VehicleType


class IUserRepository(ABC):
    @abstractmethod
    async def get(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    async def count_available_drivers(self) -> int: ...


class IAddressRepository(ABC):
    @abstractmethod
    async def list_for_user(self, user_id: int) -> list[Address]:
        """Default address first, then most recent first."""

    @abstractmethod
    async def get(self, address_id: int) -> Optional[Address]: ...

    @abstractmethod
    async def add(self, address: Address) -> Address: ...

    @abstractmethod
    async def update(self, address: Address) -> Address: ...

    @abstractmethod
    async def delete(self, address_id: int) -> None: ...

    @abstractmethod
    async def set_default(self, user_id: int, address_id: Optional[int]) -> None:
        """Make *address_id* the only default of *user_id* (None clears all)."""


class IOrderRepository(ABC):
    @abstractmethod
    async def add(self, order: Order) -> Order:
        """Persist a new order with its items; returns it with ids set."""

    @abstractmethod
    async def get(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    async def list_page(
        self,
        *,
        client_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        """One page of orders, newest first, and the total matching count."""

    @abstractmethod
    async def list_available(
        self, vehicle_type: Optional[VehicleType]
    ) -> list[Order]:
        """PENDING orders compatible with *vehicle_type*, oldest first."""

    @abstractmethod
    async def count_pending(self) -> int: ...

    @abstractmethod
    async def compare_and_set_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new_status: OrderStatus,
        *,
        updated_at: datetime,
        **changes: Any,
    ) -> Optional[Order]:
        """Atomically move *expected* -> *new_status* and apply *changes*.

        Returns the updated order, or None if the stored status was not
        *expected* (or the order does not exist).
        """

    @abstractmethod
    async def update_details(
        self, order_id: int, *, updated_at: datetime, **changes: Any
    ) -> Optional[Order]:
        """Update non-status columns unless the order is closed (then None)."""

    @abstractmethod
    async def update_fields(self, order_id: int, **changes: Any) -> None:
        """Plain update of non-status columns (e.g. payment_status)."""

    @abstractmethod
    async def add_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry: ...

    @abstractmethod
    async def list_history(self, order_id: int) -> list[StatusHistoryEntry]:
        """Oldest first."""


class IPromotionRepository(ABC):
    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Promotion]: ...

    @abstractmethod
    async def consume(self, promotion_id: int) -> bool:
        """Increment usage_count unless the usage limit is reached."""


class IPaymentRepository(ABC):
    @abstractmethod
    async def add(self, tx: PaymentTransaction) -> PaymentTransaction: ...

    @abstractmethod
    async def get(self, tx_id: int) -> Optional[PaymentTransaction]: ...

    @abstractmethod
    async def get_by_reference(self, reference: str) -> Optional[PaymentTransaction]: ...

    @abstractmethod
    async def list_for_order(self, order_id: int) -> list[PaymentTransaction]:
        """Every attempt for *order_id*, oldest first."""

    @abstractmethod
    async def list_stale(self, now: datetime) -> list[PaymentTransaction]:
        """Non-terminal transactions whose ``expires_at`` has passed."""

    @abstractmethod
    async def save(
        self, tx: PaymentTransaction, expected: TransactionStatus
    ) -> bool:
        """Write *tx* back if the stored status is still *expected*."""
