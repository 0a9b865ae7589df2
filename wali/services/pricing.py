"""Quote service: wires the pure pricing engine to live market data."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from wali.config import settings
from wali.domain.entities import Address, Promotion
from wali.domain.enums import OrderPriority, OrderType, VehicleType, WeatherCondition
from wali.domain.pricing import PricingBreakdown, PricingConditions, PricingEngine
from wali.domain.repositories import (
    IOrderRepository,
    IPromotionRepository,
    IUserRepository,
)

logger = logging.getLogger(__name__)


class PricingService:
    def __init__(
        self,
        order_repository: IOrderRepository,
        user_repository: IUserRepository,
        promotion_repository: IPromotionRepository,
        engine: Optional[PricingEngine] = None,
    ) -> None:
        self._orders = order_repository
        self._users = user_repository
        self._promotions = promotion_repository
        self.engine = engine or PricingEngine()

    async def current_conditions(self) -> PricingConditions:
        """Measure demand (pending orders vs. available drivers) right now.

        Weather comes from ``settings.current_weather``.
        """
        weather = WeatherCondition(settings.current_weather.strip().upper())
        pending = await self._orders.count_pending()
        drivers = await self._users.count_available_drivers()
        return PricingConditions(
            weather=weather, pending_orders=pending, available_drivers=drivers
        )

    async def find_promotion(self, code: Optional[str]) -> Optional[Promotion]:
        if not code or not code.strip():
            return None
        promotion = await self._promotions.get_by_code(code)
        if promotion is None:
            logger.info("Unknown promotion code %r ignored", code)
        return promotion

    async def quote(
        self,
        pickup: Address,
        delivery: Address,
        vehicle_type: VehicleType,
        priority: OrderPriority = OrderPriority.STANDARD,
        *,
        order_type: OrderType = OrderType.DELIVERY,
        scheduled_time: Optional[datetime] = None,
        promotion_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PricingBreakdown:
        promotion = await self.find_promotion(promotion_code)
        conditions = await self.current_conditions()
        return self.engine.calculate_price(
            pickup,
            delivery,
            vehicle_type,
            priority,
            scheduled_time,
            promotion,
            order_type=order_type,
            conditions=conditions,
            now=now,
        )

    async def consume_promotion(self, promotion: Promotion) -> bool:
        """Count one use of *promotion*; False once its usage limit is hit."""
        consumed = await self._promotions.consume(promotion.id)
        if consumed:
            logger.info("Promotion %s used", promotion.code)
        return consumed
