"""
Admin / observability endpoints
===============================

GET /api/v1/admin/demand  -- pending orders vs. available drivers right now
GET /api/v1/admin/health  -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from wali.api.dependencies import get_pricing_service, require_admin
from wali.api.middleware import DEFAULT_LIMIT, limiter
from wali.api.schemas import DemandResponse, HealthResponse
from wali.domain.entities import User
from wali.services.pricing import PricingService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/demand",
    response_model=DemandResponse,
    summary="Current demand used by surge pricing",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_demand(
    request: Request,
    admin: User = Depends(require_admin),
    pricing: PricingService = Depends(get_pricing_service),
):
    conditions = await pricing.current_conditions()
    return DemandResponse(
        pending_orders=conditions.pending_orders,
        available_drivers=conditions.available_drivers,
        demand_ratio=round(conditions.demand_ratio, 2),
        multiplier=float(pricing.engine.demand_multiplier(conditions)),
    )


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse()
