"""
Pricing endpoints
=================

POST /api/v1/pricing/quote -- price a trip without creating an order
"""

from fastapi import APIRouter, Depends, Request

from wali.api.dependencies import get_address_service, get_current_user, get_pricing_service
from wali.api.middleware import DEFAULT_LIMIT, limiter
from wali.api.schemas import QuoteRequest, QuoteResponse
from wali.domain.entities import User
from wali.services.addresses import AddressService
from wali.services.pricing import PricingService

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/quote", response_model=QuoteResponse, summary="Quote a delivery")
@limiter.limit(DEFAULT_LIMIT)
async def quote(
    request: Request,
    body: QuoteRequest,
    user: User = Depends(get_current_user),
    pricing: PricingService = Depends(get_pricing_service),
    addresses: AddressService = Depends(get_address_service),
):
    pickup = await addresses.resolve(**body.pickup.model_dump())
    delivery = await addresses.resolve(**body.delivery.model_dump())
    breakdown = await pricing.quote(
        pickup,
        delivery,
        body.vehicle_type,
        body.priority,
        order_type=body.order_type,
        scheduled_time=body.scheduled_at,
        promotion_code=body.promotion_code,
    )
    return QuoteResponse.model_validate(breakdown)
