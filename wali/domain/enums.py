"""Domain enumerations and state-transition rules."""

import enum


class UserRole(str, enum.Enum):
    CLIENT = "CLIENT"
    DRIVER = "DRIVER"
    PARTNER = "PARTNER"
    ADMIN = "ADMIN"


class OrderType(str, enum.Enum):
    DELIVERY = "DELIVERY"
    FOOD = "FOOD"
    SHOPPING = "SHOPPING"


class OrderPriority(str, enum.Enum):
    STANDARD = "STANDARD"  # 2-4 h
    EXPRESS = "EXPRESS"  # 1-2 h
    URGENT = "URGENT"  # 30 min - 1 h


class VehicleType(str, enum.Enum):
    VELO = "VELO"
    SCOOTER = "SCOOTER"
    MOTO = "MOTO"
    TRICYCLE = "TRICYCLE"
    VOITURE = "VOITURE"
    CAMIONNETTE = "CAMIONNETTE"


class ItemCategory(str, enum.Enum):
    FOOD = "FOOD"
    DOCUMENTS = "DOCUMENTS"
    ELECTRONICS = "ELECTRONICS"
    CLOTHING = "CLOTHING"
    PHARMACY = "PHARMACY"
    GROCERIES = "GROCERIES"
    OTHER = "OTHER"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    PICKUP_IN_PROGRESS = "PICKUP_IN_PROGRESS"
    PICKED_UP = "PICKED_UP"
    DELIVERY_IN_PROGRESS = "DELIVERY_IN_PROGRESS"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


# State machine: maps current status -> set of valid next statuses.
# Forward-only; CANCELLED reachable from every non-terminal state,
# FAILED only once the driver is on the road.
ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.ASSIGNED,
        OrderStatus.ACCEPTED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ASSIGNED: {
        OrderStatus.ACCEPTED,
        OrderStatus.PICKUP_IN_PROGRESS,
        OrderStatus.CANCELLED,
    },
    OrderStatus.ACCEPTED: {
        OrderStatus.PICKUP_IN_PROGRESS,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PICKUP_IN_PROGRESS: {
        OrderStatus.PICKED_UP,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.PICKED_UP: {
        OrderStatus.DELIVERY_IN_PROGRESS,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.DELIVERY_IN_PROGRESS: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.FAILED: set(),
}

TERMINAL_ORDER_STATUSES = frozenset(
    s for s, nxt in ORDER_TRANSITIONS.items() if not nxt
)


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    ORANGE_MONEY = "ORANGE_MONEY"
    MTN_MONEY = "MTN_MONEY"
    WAVE = "WAVE"
    CARD = "CARD"


class PaymentStatus(str, enum.Enum):
    """Payment state as seen on the order."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentProvider(str, enum.Enum):
    ORANGE_MONEY = "ORANGE_MONEY"
    MTN_MOMO = "MTN_MOMO"
    WAVE = "WAVE"
    FLUTTERWAVE = "FLUTTERWAVE"
    CASH = "CASH"


MOBILE_MONEY_PROVIDERS = frozenset(
    {PaymentProvider.ORANGE_MONEY, PaymentProvider.MTN_MOMO, PaymentProvider.WAVE}
)

# Which provider settles each order payment method
PROVIDER_FOR_METHOD: dict[PaymentMethod, PaymentProvider] = {
    PaymentMethod.CASH: PaymentProvider.CASH,
    PaymentMethod.ORANGE_MONEY: PaymentProvider.ORANGE_MONEY,
    PaymentMethod.MTN_MONEY: PaymentProvider.MTN_MOMO,
    PaymentMethod.WAVE: PaymentProvider.WAVE,
    PaymentMethod.CARD: PaymentProvider.FLUTTERWAVE,
}


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.PENDING: {
        TransactionStatus.PROCESSING,
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.EXPIRED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.PROCESSING: {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.EXPIRED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.EXPIRED: set(),
    TransactionStatus.CANCELLED: set(),
}

TERMINAL_TRANSACTION_STATUSES = frozenset(
    s for s, nxt in TRANSACTION_TRANSITIONS.items() if not nxt
)


class PromotionType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    FREE_DELIVERY = "FREE_DELIVERY"


class WeatherCondition(str, enum.Enum):
    CLEAR = "CLEAR"
    HARMATTAN = "HARMATTAN"
    LIGHT_RAIN = "LIGHT_RAIN"
    HEAVY_RAIN = "HEAVY_RAIN"
    STORM = "STORM"


class NotificationType(str, enum.Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_STATUS = "ORDER_STATUS"
    PAYMENT = "PAYMENT"
    CHAT_MESSAGE = "CHAT_MESSAGE"
