"""
SQLAlchemy ORM models  (PostgreSQL in production, SQLite in tests).

Tables
------
* ``users``                -- clients, drivers, partners and admins
* ``addresses``            -- per-user address book
* ``orders``               -- delivery orders, with inline address snapshots
* ``order_items``          -- items carried by an order
* ``status_history``       -- append-only audit trail of order status changes
* ``payment_transactions`` -- one row per payment attempt
* ``promotions``           -- promo codes and their usage counters

Indexes
-------
* ``(status, created_at)`` on orders for the driver's available list.
* ``client_id`` / ``driver_id`` on orders for the per-actor lists.
* ``(status, expires_at)`` on payment_transactions for the reconciler.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from wali.domain.enums import (
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


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(20), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.CLIENT, nullable=False)
    vehicle_type = Column(Enum(VehicleType), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=False, nullable=False)  # drivers
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_users_role_available", "role", "is_available"),)


class AddressModel(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    label = Column(String(50), nullable=True)
    street = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False)
    district = Column(String(100), nullable=True)
    landmark = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_addresses_user", "user_id"),)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(20), unique=True, nullable=False)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    order_type = Column(Enum(OrderType), default=OrderType.DELIVERY, nullable=False)
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False)
    priority = Column(
        Enum(OrderPriority), default=OrderPriority.STANDARD, nullable=False
    )
    preferred_vehicle_type = Column(Enum(VehicleType), nullable=True)

    # Address snapshots, frozen at creation
    pickup_street = Column(String(255), nullable=False)
    pickup_city = Column(String(100), nullable=False)
    pickup_district = Column(String(100), nullable=True)
    pickup_landmark = Column(String(255), nullable=True)
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    delivery_street = Column(String(255), nullable=False)
    delivery_city = Column(String(100), nullable=False)
    delivery_district = Column(String(100), nullable=True)
    delivery_landmark = Column(String(255), nullable=True)
    delivery_latitude = Column(Float, nullable=False)
    delivery_longitude = Column(Float, nullable=False)

    pricing = Column(JSON, nullable=False)
    total_price = Column(Integer, nullable=False)  # FCFA
    payment_method = Column(
        Enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False
    )
    payment_status = Column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    notes = Column(Text, nullable=True)
    promotion_code = Column(String(50), nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        lazy="selectin",
        order_by="OrderItemModel.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_orders_status_created", "status", "created_at"),
        Index("idx_orders_client", "client_id"),
        Index("idx_orders_driver", "driver_id"),
    )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, default=1, nullable=False)
    weight_kg = Column(Float, default=0.0, nullable=False)  # per unit
    value = Column(Integer, default=0, nullable=False)  # per unit, FCFA
    fragile = Column(Boolean, default=False, nullable=False)
    category = Column(Enum(ItemCategory), default=ItemCategory.OTHER, nullable=False)

    __table_args__ = (Index("idx_order_items_order", "order_id"),)


class StatusHistoryModel(Base):
    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    status = Column(Enum(OrderStatus), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    updated_by_role = Column(Enum(UserRole), nullable=False)

    __table_args__ = (Index("idx_status_history_order", "order_id", "timestamp"),)


class PaymentTransactionModel(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reference = Column(String(64), unique=True, nullable=False)
    provider = Column(Enum(PaymentProvider), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), default="XOF", nullable=False)
    status = Column(
        Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False
    )
    phone_number = Column(String(20), nullable=True)
    provider_transaction_id = Column(String(100), nullable=True)
    payment_url = Column(String(500), nullable=True)
    ussd_code = Column(String(20), nullable=True)
    error_code = Column(String(50), nullable=True)
    message = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_payments_order", "order_id"),
        Index("idx_payments_status_expires", "status", "expires_at"),
    )


class PromotionModel(Base):
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(String(255), nullable=True)
    promotion_type = Column(Enum(PromotionType), nullable=False)
    value = Column(Integer, nullable=False)
    max_discount = Column(Integer, nullable=True)
    min_order_value = Column(Integer, default=0, nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
