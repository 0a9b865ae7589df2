"""
Order endpoints
===============

POST  /api/v1/orders                       -- create an order (client)
GET   /api/v1/orders                       -- my orders, paginated (client / driver / admin)
GET   /api/v1/orders/available             -- open orders for a vehicle type (driver)
GET   /api/v1/orders/{order_id}            -- order detail
PATCH /api/v1/orders/{order_id}            -- edit notes / schedule (owner)
GET   /api/v1/orders/{order_id}/history    -- status history, oldest first
PATCH /api/v1/orders/{order_id}/status     -- advance the lifecycle (driver / admin)
POST  /api/v1/orders/{order_id}/accept     -- take a PENDING order (driver)
POST  /api/v1/orders/{order_id}/assign     -- dispatch to a driver (admin)
POST  /api/v1/orders/{order_id}/cancel     -- cancel (owner / driver / admin)
POST  /api/v1/orders/{order_id}/messages   -- chat with the other party
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from wali.api.dependencies import (
    get_address_service,
    get_current_user,
    get_order_service,
    require_admin,
    require_driver,
)
from wali.api.middleware import DEFAULT_LIMIT, limiter
from wali.api.schemas import (
    AssignRequest,
    CancelRequest,
    HistoryEntryResponse,
    MessageRequest,
    MessageResponse,
    OrderCreateRequest,
    OrderPageResponse,
    OrderResponse,
    OrderUpdateRequest,
    StatusUpdateRequest,
)
from wali.domain.entities import OrderItem, User
from wali.domain.enums import VehicleType
from wali.services.addresses import AddressService
from wali.services.orders import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    OrderDraft,
    OrderService,
)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    status_code=201,
    response_model=OrderResponse,
    summary="Create a delivery order",
)
@limiter.limit(DEFAULT_LIMIT)
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
    addresses: AddressService = Depends(get_address_service),
):
    draft = OrderDraft(
        pickup=await addresses.resolve(**body.pickup.model_dump()),
        delivery=await addresses.resolve(**body.delivery.model_dump()),
        items=[OrderItem(**item.model_dump()) for item in body.items],
        order_type=body.order_type,
        priority=body.priority,
        preferred_vehicle_type=body.preferred_vehicle_type,
        payment_method=body.payment_method,
        notes=body.notes,
        promotion_code=body.promotion_code,
        scheduled_at=body.scheduled_at,
    )
    return OrderResponse.model_validate(await orders.create_order(draft, user))


@router.get("", response_model=OrderPageResponse, summary="List my orders, newest first")
@limiter.limit(DEFAULT_LIMIT)
async def list_orders(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    return OrderPageResponse.model_validate(await orders.list_orders_for(user, page, limit))


@router.get(
    "/available",
    response_model=list[OrderResponse],
    summary="Open orders a driver can take, oldest first",
)
@limiter.limit(DEFAULT_LIMIT)
async def available_orders(
    request: Request,
    vehicle_type: Optional[VehicleType] = Query(None, alias="vehicleType"),
    driver: User = Depends(require_driver),
    orders: OrderService = Depends(get_order_service),
):
    available = await orders.get_available_orders(vehicle_type or driver.vehicle_type)
    return [OrderResponse.model_validate(o) for o in available]


@router.get("/{order_id}", response_model=OrderResponse, summary="Get an order")
@limiter.limit(DEFAULT_LIMIT)
async def get_order(
    request: Request,
    order_id: int,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    return OrderResponse.model_validate(await orders.get_order(order_id, user))


@router.patch("/{order_id}", response_model=OrderResponse, summary="Edit notes or schedule")
@limiter.limit(DEFAULT_LIMIT)
async def update_order(
    request: Request,
    order_id: int,
    body: OrderUpdateRequest,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    changes = body.model_dump(exclude_unset=True)
    return OrderResponse.model_validate(await orders.update_order(order_id, user, **changes))


@router.get(
    "/{order_id}/history",
    response_model=list[HistoryEntryResponse],
    summary="Status history of an order",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_history(
    request: Request,
    order_id: int,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.get_status_history(order_id, user)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Advance an order's status",
    description=(
        "Only direct successors of the current status are accepted. "
        "Returns 409 if the order is closed or was changed concurrently."
    ),
)
@limiter.limit(DEFAULT_LIMIT)
async def update_status(
    request: Request,
    order_id: int,
    body: StatusUpdateRequest,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    location = None
    if body.latitude is not None and body.longitude is not None:
        location = (body.latitude, body.longitude)
    order = await orders.update_status(order_id, body.status, user, location, body.notes)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/accept",
    response_model=OrderResponse,
    summary="Accept a pending order",
    responses={409: {"description": "Order already taken by another driver."}},
)
@limiter.limit(DEFAULT_LIMIT)
async def accept_order(
    request: Request,
    order_id: int,
    driver: User = Depends(require_driver),
    orders: OrderService = Depends(get_order_service),
):
    return OrderResponse.model_validate(await orders.accept_order(order_id, driver))


@router.post(
    "/{order_id}/assign",
    response_model=OrderResponse,
    summary="Assign a pending order to a driver",
)
@limiter.limit(DEFAULT_LIMIT)
async def assign_order(
    request: Request,
    order_id: int,
    body: AssignRequest,
    admin: User = Depends(require_admin),
    orders: OrderService = Depends(get_order_service),
):
    order = await orders.assign_order(order_id, body.driver_id, admin)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel an order",
)
@limiter.limit(DEFAULT_LIMIT)
async def cancel_order(
    request: Request,
    order_id: int,
    body: CancelRequest,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    order = await orders.cancel_order(order_id, body.reason, user)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/messages",
    status_code=202,
    response_model=MessageResponse,
    summary="Send a chat message about an order",
)
@limiter.limit(DEFAULT_LIMIT)
async def send_message(
    request: Request,
    order_id: int,
    body: MessageRequest,
    user: User = Depends(get_current_user),
    orders: OrderService = Depends(get_order_service),
):
    return await orders.send_message(order_id, user, body.text)
