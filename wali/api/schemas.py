"""Pydantic request / response schemas for the REST API.

JSON is camelCase on the wire (the web and mobile clients are written in
TypeScript); snake_case names are accepted too.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wali.domain.enums import (
    ItemCategory,
    OrderPriority,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    TransactionStatus,
    UserRole,
    VehicleType,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(CamelModel):
    """An address given by coordinates, or by text to be geocoded."""

    street: Optional[str] = Field(None, max_length=255)
    city: str = Field("Abidjan", max_length=100)
    district: Optional[str] = Field(None, max_length=100)
    landmark: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    text: Optional[str] = Field(
        None,
        max_length=500,
        description="Free-text address, geocoded when coordinates are missing.",
    )


class OrderItemIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(1, ge=1, le=1000)
    weight_kg: float = Field(0.0, ge=0, description="Weight of one unit, kg")
    value: int = Field(0, ge=0, description="Declared value of one unit, FCFA")
    fragile: bool = False
    category: ItemCategory = ItemCategory.OTHER
    description: Optional[str] = None


class OrderCreateRequest(CamelModel):
    order_type: OrderType = OrderType.DELIVERY
    pickup: LocationIn
    delivery: LocationIn
    items: list[OrderItemIn]
    priority: OrderPriority = OrderPriority.STANDARD
    preferred_vehicle_type: Optional[VehicleType] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=1000)
    promotion_code: Optional[str] = Field(None, max_length=50)
    scheduled_at: Optional[datetime] = None


class OrderUpdateRequest(CamelModel):
    """Only the fields that are sent are changed; the price stays as quoted."""

    notes: Optional[str] = Field(None, max_length=1000)
    scheduled_at: Optional[datetime] = None


class StatusUpdateRequest(CamelModel):
    status: OrderStatus
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    notes: Optional[str] = Field(None, max_length=1000)


class AssignRequest(CamelModel):
    driver_id: int


class CancelRequest(CamelModel):
    reason: str = Field("", max_length=500)


class MessageRequest(CamelModel):
    text: str = Field(..., min_length=1, max_length=1000)


class QuoteRequest(CamelModel):
    pickup: LocationIn
    delivery: LocationIn
    vehicle_type: VehicleType = VehicleType.MOTO
    priority: OrderPriority = OrderPriority.STANDARD
    order_type: OrderType = OrderType.DELIVERY
    scheduled_at: Optional[datetime] = None
    promotion_code: Optional[str] = Field(None, max_length=50)


class AddressCreateRequest(CamelModel):
    street: str = Field(..., min_length=3, max_length=255)
    city: str = Field("Abidjan", min_length=2, max_length=100)
    district: Optional[str] = Field(None, max_length=100)
    landmark: Optional[str] = Field(None, max_length=255)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    label: Optional[str] = Field(None, max_length=50)
    is_default: bool = False


class AddressUpdateRequest(CamelModel):
    street: Optional[str] = Field(None, min_length=3, max_length=255)
    city: Optional[str] = Field(None, min_length=2, max_length=100)
    district: Optional[str] = Field(None, max_length=100)
    landmark: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    label: Optional[str] = Field(None, max_length=50)
    is_default: Optional[bool] = None


class GeocodeRequest(CamelModel):
    address: str = Field(..., min_length=3, max_length=500)


class ReverseGeocodeRequest(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CardIn(CamelModel):
    card_number: str = Field(..., min_length=12, max_length=19)
    cvv: str = Field(..., min_length=3, max_length=4)
    expiry_month: str = Field(..., min_length=2, max_length=2)
    expiry_year: str = Field(..., min_length=2, max_length=4)


class PaymentCreateRequest(CamelModel):
    order_id: int
    method: PaymentMethod
    amount: int = Field(..., gt=0)
    phone_number: Optional[str] = None
    email: Optional[str] = None
    card: Optional[CardIn] = None
    pin: Optional[str] = Field(None, min_length=4, max_length=6)


class AuthorizeRequest(CamelModel):
    pin: str = Field(..., min_length=4, max_length=6)
    card: Optional[CardIn] = None


# ── Responses ─────────────────────────────────────────────────────────


class AddressResponse(CamelModel):
    id: Optional[int] = None
    label: Optional[str] = None
    street: str
    city: str
    district: Optional[str] = None
    landmark: Optional[str] = None
    latitude: float
    longitude: float
    is_default: bool = False
    created_at: Optional[datetime] = None


class GeocodeResponse(CamelModel):
    latitude: float
    longitude: float
    formatted_address: str
    city: str
    district: Optional[str] = None
    confidence: float


class OrderItemResponse(CamelModel):
    name: str
    quantity: int
    weight_kg: float
    value: int
    fragile: bool
    category: ItemCategory
    description: Optional[str] = None


class OrderResponse(CamelModel):
    id: int
    order_number: str
    client_id: int
    driver_id: Optional[int] = None
    order_type: OrderType
    status: OrderStatus
    priority: OrderPriority
    preferred_vehicle_type: Optional[VehicleType] = None
    pickup: AddressResponse
    delivery: AddressResponse
    items: list[OrderItemResponse]
    total_weight: float
    total_value: int
    pricing: dict[str, Any]
    total_price: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    notes: Optional[str] = None
    promotion_code: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OrderPageResponse(CamelModel):
    orders: list[OrderResponse]
    total: int
    page: int
    limit: int


class HistoryEntryResponse(CamelModel):
    status: OrderStatus
    timestamp: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    notes: Optional[str] = None
    updated_by: int
    updated_by_role: UserRole


class PriceLineResponse(CamelModel):
    code: str
    label: str
    amount: int


class QuoteResponse(CamelModel):
    distance_km: float
    base_price: int
    distance_price: int
    priority_price: int
    vehicle_price: int
    zone_price: int
    surcharge_price: int
    discount: int
    total_price: int
    estimated_minutes: int
    lines: list[PriceLineResponse] = Field(
        validation_alias=AliasChoices("lines", "breakdown"),
        serialization_alias="breakdown",
    )
    factors: dict[str, float]
    promotion_code: Optional[str] = None
    currency: str = "XOF"


class MessageResponse(CamelModel):
    order_id: int
    sender_id: int
    sender_role: UserRole
    text: str
    sent_at: datetime


class PaymentResponse(CamelModel):
    id: int
    order_id: int
    reference: str
    provider: PaymentProvider
    amount: int
    currency: str
    status: TransactionStatus
    payment_url: Optional[str] = None
    ussd_code: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DemandResponse(CamelModel):
    pending_orders: int
    available_drivers: int
    demand_ratio: float
    multiplier: float


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
