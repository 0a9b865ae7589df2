"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Order`` and ``PaymentTransaction``: each enforces
  its own lifecycle table from :mod:`wali.domain.enums`.
- ``Address`` is an immutable value object; an order keeps snapshots of
  its pickup and delivery addresses, never references to the address book.
- ``Order.total_weight`` / ``Order.total_value`` are derived from the
  items and never stored on their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from .enums import (
    ORDER_TRANSITIONS,
    TERMINAL_ORDER_STATUSES,
    TERMINAL_TRANSACTION_STATUSES,
    TRANSACTION_TRANSITIONS,
    ItemCategory,
    OrderPriority,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    PromotionType,
    TransactionStatus,
    UserRole,
    VehicleType,
)
from .errors import InvalidTransitionError, TerminalStateError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Address:
    street: str
    city: str
    latitude: float
    longitude: float
    district: Optional[str] = None
    landmark: Optional[str] = None
    label: Optional[str] = None
    is_default: bool = False
    id: Optional[int] = None
    user_id: Optional[int] = None
    created_at: Optional[datetime] = None

    def snapshot(self) -> "Address":
        """Copy detached from the address book (no id / owner / flags)."""
        return replace(self, id=None, user_id=None, is_default=False, created_at=None)


@dataclass(frozen=True)
class GeocodeResult:
    latitude: float
    longitude: float
    formatted_address: str
    city: str
    district: Optional[str] = None
    confidence: float = 0.5


@dataclass
class User:
    """An authenticated actor: client, driver, partner or admin."""

    id: int
    role: UserRole = UserRole.CLIENT
    name: str = ""
    phone: Optional[str] = None
    vehicle_type: Optional[VehicleType] = None
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class OrderItem:
    name: str
    quantity: int = 1
    weight_kg: float = 0.0  # per unit
    value: int = 0  # declared value per unit, FCFA
    fragile: bool = False
    category: ItemCategory = ItemCategory.OTHER
    description: Optional[str] = None
    id: Optional[int] = None

    @property
    def total_weight(self) -> float:
        return self.weight_kg * self.quantity

    @property
    def total_value(self) -> int:
        return self.value * self.quantity


@dataclass
class Order:
    id: Optional[int] = None
    order_number: str = ""
    client_id: int = 0
    driver_id: Optional[int] = None
    order_type: OrderType = OrderType.DELIVERY
    pickup: Optional[Address] = None
    delivery: Optional[Address] = None
    items: list[OrderItem] = field(default_factory=list)
    priority: OrderPriority = OrderPriority.STANDARD
    preferred_vehicle_type: Optional[VehicleType] = None
    status: OrderStatus = OrderStatus.PENDING
    pricing: dict[str, Any] = field(default_factory=dict)
    total_price: int = 0
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PENDING
    notes: Optional[str] = None
    promotion_code: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_weight(self) -> float:
        return sum(item.total_weight for item in self.items)

    @property
    def total_value(self) -> int:
        return sum(item.total_value for item in self.items)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    def can_transition_to(self, new_status: OrderStatus) -> bool:
        return new_status in ORDER_TRANSITIONS.get(self.status, set())

    def check_transition(self, new_status: OrderStatus) -> None:
        """Raise unless *new_status* is a direct successor of the current one."""
        if self.is_terminal:
            raise TerminalStateError(
                f"La commande {self.order_number or self.id} est déjà "
                f"{self.status.value} et ne peut plus changer de statut"
            )
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Transition {self.status.value} -> {new_status.value} non autorisée"
            )

    def is_participant(self, user: User) -> bool:
        return user.id == self.client_id or (
            self.driver_id is not None and user.id == self.driver_id
        )


@dataclass
class StatusHistoryEntry:
    order_id: int
    status: OrderStatus
    timestamp: datetime
    updated_by: int
    updated_by_role: UserRole
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None
    id: Optional[int] = None


@dataclass
class Promotion:
    code: str
    promotion_type: PromotionType
    value: int  # percent for PERCENTAGE, FCFA for FIXED_AMOUNT
    max_discount: Optional[int] = None
    min_order_value: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    is_active: bool = True
    description: Optional[str] = None
    id: Optional[int] = None

    def is_applicable(self, order_value: Any, at: datetime) -> bool:
        if not self.is_active:
            return False
        if self.valid_from and at < self.valid_from:
            return False
        if self.valid_until and at > self.valid_until:
            return False
        if self.usage_limit is not None and self.usage_count >= self.usage_limit:
            return False
        return order_value >= self.min_order_value


@dataclass
class PaymentTransaction:
    order_id: int
    user_id: int
    amount: int
    provider: PaymentProvider
    reference: str = ""
    currency: str = "XOF"
    status: TransactionStatus = TransactionStatus.PENDING
    phone_number: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    payment_url: Optional[str] = None
    ussd_code: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRANSACTION_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return (
            not self.is_terminal
            and self.expires_at is not None
            and now >= self.expires_at
        )

    def transition_to(self, new_status: TransactionStatus) -> None:
        if self.is_terminal:
            raise TerminalStateError(
                f"Le paiement {self.reference} est déjà {self.status.value}"
            )
        if new_status not in TRANSACTION_TRANSITIONS.get(self.status, set()):
            raise InvalidTransitionError(
                f"Transition de paiement {self.status.value} -> "
                f"{new_status.value} non autorisée"
            )
        self.status = new_status
