"""
Delivery Pricing Engine  (Strategy Pattern for promotions)
==========================================================

Formula
-------
S     = Base + Distance + Priority + Vehicle + Zone
Total = S x Surcharge - Discount          (rounded half-up to the franc)

* **Distance**  = max(0, km - free_km) x price_per_km
* **Priority**  = Base x (priority_multiplier - 1)
* **Vehicle**   = (Base + Distance) x (vehicle_multiplier - 1)
* **Zone**      = (Base + Distance) x (max(zone(pickup), zone(delivery)) - 1)
* **Surcharge** = night x weekend x traffic x weather x demand, applied in
  that order and capped at ``max_surcharge`` (2.0).

All arithmetic is ``Decimal``.  Only the final total is rounded; the
individual breakdown lines are then distributed to whole francs by the
largest-remainder method so that they always add up to the total.

The engine is a pure function of its inputs: weather and demand are
passed in through :class:`PricingConditions`, the clock through ``now``.

Complexity: O(1) per quote.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Optional
from zoneinfo import ZoneInfo

from wali.config import settings

from .entities import Address, Promotion
from .enums import (
    OrderPriority,
    OrderType,
    PromotionType,
    VehicleType,
    WeatherCondition,
)
from .errors import ValidationError
from .geography import haversine_km, normalize_district
from .validation import coerce_enum, validate_coordinates

ZERO = Decimal("0")
ONE = Decimal("1")


def _d(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ── Tariff ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Tariff:
    base_prices: dict[OrderType, Decimal]
    free_distance_km: Decimal
    price_per_km: Decimal
    max_distance_km: float
    priority_multipliers: dict[OrderPriority, Decimal]
    vehicle_multipliers: dict[VehicleType, Decimal]
    zone_multipliers: dict[str, Decimal]
    weather_multipliers: dict[WeatherCondition, Decimal]
    night_multiplier: Decimal
    weekend_multiplier: Decimal
    rush_hour_multiplier: Decimal
    lunch_multiplier: Decimal
    surge_medium_multiplier: Decimal
    surge_high_multiplier: Decimal
    max_surcharge: Decimal
    vehicle_speeds_kmh: dict[VehicleType, int]
    handling_minutes: int
    timezone: str = "Africa/Abidjan"

    @classmethod
    def from_settings(cls, s=settings) -> "Tariff":
        return cls(
            base_prices={
                OrderType.DELIVERY: _d(s.base_price_delivery),
                OrderType.FOOD: _d(s.base_price_food),
                OrderType.SHOPPING: _d(s.base_price_shopping),
            },
            free_distance_km=_d(s.free_distance_km),
            price_per_km=_d(s.price_per_km),
            max_distance_km=s.max_distance_km,
            priority_multipliers={
                OrderPriority.STANDARD: ONE,
                OrderPriority.EXPRESS: _d(s.express_multiplier),
                OrderPriority.URGENT: _d(s.urgent_multiplier),
            },
            vehicle_multipliers={
                VehicleType(k): _d(v) for k, v in s.vehicle_multipliers.items()
            },
            zone_multipliers={k: _d(v) for k, v in s.zone_multipliers.items()},
            weather_multipliers={
                WeatherCondition(k): _d(v) for k, v in s.weather_multipliers.items()
            },
            night_multiplier=_d(s.night_multiplier),
            weekend_multiplier=_d(s.weekend_multiplier),
            rush_hour_multiplier=_d(s.rush_hour_multiplier),
            lunch_multiplier=_d(s.lunch_multiplier),
            surge_medium_multiplier=_d(s.surge_medium_multiplier),
            surge_high_multiplier=_d(s.surge_high_multiplier),
            max_surcharge=_d(s.max_surcharge_multiplier),
            vehicle_speeds_kmh={
                VehicleType(k): v for k, v in s.vehicle_speeds_kmh.items()
            },
            handling_minutes=s.handling_minutes,
            timezone=s.timezone,
        )

    def zone_multiplier(self, address: Address) -> Decimal:
        district = normalize_district(address.district)
        if district is None:
            return ONE
        return self.zone_multipliers.get(district, ONE)


@dataclass(frozen=True)
class PricingConditions:
    """Market conditions at quote time, measured by the caller."""

    weather: WeatherCondition = WeatherCondition.CLEAR
    pending_orders: int = 0
    available_drivers: int = 0

    @property
    def demand_ratio(self) -> float:
        return self.pending_orders / max(self.available_drivers, 1)


# ── Output ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceLine:
    code: str
    label: str
    amount: int


@dataclass(frozen=True)
class PricingBreakdown:
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
    lines: list[PriceLine] = field(default_factory=list)
    factors: dict[str, float] = field(default_factory=dict)
    promotion_code: Optional[str] = None
    currency: str = "XOF"

    def to_dict(self) -> dict[str, Any]:
        return {
            "distanceKm": self.distance_km,
            "basePrice": self.base_price,
            "distancePrice": self.distance_price,
            "priorityPrice": self.priority_price,
            "vehiclePrice": self.vehicle_price,
            "zonePrice": self.zone_price,
            "surchargePrice": self.surcharge_price,
            "discount": self.discount,
            "totalPrice": self.total_price,
            "estimatedMinutes": self.estimated_minutes,
            "breakdown": [
                {"code": l.code, "label": l.label, "amount": l.amount}
                for l in self.lines
            ],
            "factors": dict(self.factors),
            "promotionCode": self.promotion_code,
            "currency": self.currency,
        }


# ── Promotion strategies ──────────────────────────────────────────────


class DiscountStrategy(ABC):
    @abstractmethod
    def discount(self, amount_before: Decimal, distance_price: Decimal) -> Decimal: ...


class PercentageDiscount(DiscountStrategy):
    def __init__(self, percent: Any, max_discount: Optional[int] = None):
        self.rate = _d(percent) / 100
        self.max_discount = max_discount

    def discount(self, amount_before: Decimal, distance_price: Decimal) -> Decimal:
        value = amount_before * self.rate
        if self.max_discount is not None:
            value = min(value, _d(self.max_discount))
        return value


class FixedAmountDiscount(DiscountStrategy):
    def __init__(self, amount: Any):
        self.amount = _d(amount)

    def discount(self, amount_before: Decimal, distance_price: Decimal) -> Decimal:
        return self.amount


class FreeDeliveryDiscount(DiscountStrategy):
    """Waives the distance component."""

    def discount(self, amount_before: Decimal, distance_price: Decimal) -> Decimal:
        return distance_price


def discount_strategy_for(promotion: Promotion) -> DiscountStrategy:
    if promotion.promotion_type == PromotionType.PERCENTAGE:
        return PercentageDiscount(promotion.value, promotion.max_discount)
    if promotion.promotion_type == PromotionType.FIXED_AMOUNT:
        return FixedAmountDiscount(promotion.value)
    return FreeDeliveryDiscount()


# ── Rounding ──────────────────────────────────────────────────────────


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def allocate_largest_remainder(amounts: list[Decimal], total: int) -> list[int]:
    """Round *amounts* to integers that sum exactly to *total*.

    Each amount is floored, then the units still missing go to the
    largest fractional remainders (ties resolved by position).
    """
    floors = [int(a.to_integral_value(rounding=ROUND_FLOOR)) for a in amounts]
    missing = total - sum(floors)
    if missing < 0 or missing > len(amounts):
        raise ValueError(f"total {total} is not a rounding of {sum(amounts)}")
    order = sorted(
        range(len(amounts)),
        key=lambda i: (-(amounts[i] - floors[i]), i),
    )
    result = list(floors)
    for i in order[:missing]:
        result[i] += 1
    return result


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the order service and the quote endpoint."""

    def __init__(self, tariff: Optional[Tariff] = None):
        self.tariff = tariff or Tariff.from_settings()

    # -- factor tables -------------------------------------------------

    def time_factors(self, moment: datetime) -> list[tuple[str, str, Decimal]]:
        """Night, weekend and traffic factors for *moment* (local time)."""
        t = self.tariff
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        local = moment.astimezone(ZoneInfo(t.timezone))
        hour = local.hour
        weekend = local.weekday() >= 5

        factors: list[tuple[str, str, Decimal]] = []
        if hour >= 22 or hour < 6:
            factors.append(("NIGHT", "Majoration de nuit", t.night_multiplier))
        if weekend:
            factors.append(("WEEKEND", "Majoration week-end", t.weekend_multiplier))
        elif 7 <= hour < 9 or 17 <= hour < 20:
            factors.append(("TRAFFIC", "Heure de pointe", t.rush_hour_multiplier))
        elif 12 <= hour < 14:
            factors.append(("TRAFFIC", "Trafic de midi", t.lunch_multiplier))
        return factors

    def demand_multiplier(self, conditions: PricingConditions) -> Decimal:
        ratio = conditions.demand_ratio
        if ratio >= 5:
            return self.tariff.surge_high_multiplier
        if ratio >= 3:
            return self.tariff.surge_medium_multiplier
        return ONE

    def estimate_minutes(
        self, distance_km: float, vehicle_type: VehicleType, traffic: Decimal = ONE
    ) -> int:
        speed = self.tariff.vehicle_speeds_kmh.get(vehicle_type, 25)
        travel = distance_km / speed * 60 * float(traffic)
        return math.ceil(travel) + self.tariff.handling_minutes

    # -- main entry point ----------------------------------------------

    def calculate_price(
        self,
        pickup: Address,
        delivery: Address,
        vehicle_type: VehicleType | str,
        priority: OrderPriority | str = OrderPriority.STANDARD,
        scheduled_time: Optional[datetime] = None,
        promotion: Optional[Promotion] = None,
        *,
        order_type: OrderType | str = OrderType.DELIVERY,
        conditions: Optional[PricingConditions] = None,
        now: Optional[datetime] = None,
    ) -> PricingBreakdown:
        t = self.tariff

        # 1. Inputs
        if pickup is None or delivery is None:
            raise ValidationError("Adresses de collecte et de livraison requises")
        validate_coordinates(pickup.latitude, pickup.longitude)
        validate_coordinates(delivery.latitude, delivery.longitude)
        vehicle_type = coerce_enum(VehicleType, vehicle_type, "Type de véhicule")
        priority = coerce_enum(OrderPriority, priority, "Priorité")
        order_type = coerce_enum(OrderType, order_type, "Type de commande")
        conditions = conditions or PricingConditions()
        now = now or datetime.now(timezone.utc)
        moment = scheduled_time or now

        # 2. Distance
        distance_km = haversine_km(
            pickup.latitude, pickup.longitude, delivery.latitude, delivery.longitude
        )
        if distance_km > t.max_distance_km:
            raise ValidationError(
                f"Distance trop longue ({distance_km:.1f} km, maximum "
                f"{t.max_distance_km:g} km)"
            )
        km = _d(round(distance_km, 6))

        # 3-7. Subtotal components
        base = t.base_prices[order_type]
        distance = max(ZERO, km - t.free_distance_km) * t.price_per_km
        priority_part = base * (t.priority_multipliers[priority] - ONE)
        carried = base + distance
        vehicle_part = carried * (t.vehicle_multipliers.get(vehicle_type, ONE) - ONE)
        zone = max(t.zone_multiplier(pickup), t.zone_multiplier(delivery))
        zone_part = carried * (zone - ONE)
        subtotal = base + distance + priority_part + vehicle_part + zone_part

        lines: list[tuple[str, str, Decimal]] = [
            ("BASE", f"Tarif de base ({order_type.value})", base),
            ("DISTANCE", "Distance", distance),
            ("PRIORITY", f"Priorité {priority.value}", priority_part),
            ("VEHICLE", f"Véhicule {vehicle_type.value}", vehicle_part),
            ("ZONE", "Zone", zone_part),
        ]

        # 8. Surcharges, sequential and capped
        factors = self.time_factors(moment)
        weather = t.weather_multipliers.get(conditions.weather, ONE)
        if weather != ONE:
            factors.append(
                ("WEATHER", f"Météo ({conditions.weather.value})", weather)
            )
        demand = self.demand_multiplier(conditions)
        if demand != ONE:
            factors.append(("DEMAND", "Forte demande", demand))

        running = ONE
        applied: dict[str, float] = {}
        traffic = ONE
        for code, label, multiplier in factors:
            after = min(running * multiplier, t.max_surcharge)
            applied[code] = float(multiplier)
            if code == "TRAFFIC":
                traffic = multiplier
            if after != running:
                lines.append((code, label, subtotal * (after - running)))
            running = after
        surcharged = subtotal * running

        # 9. Promotion
        discount = ZERO
        promotion_code = None
        if promotion is not None and promotion.is_applicable(surcharged, now):
            strategy = discount_strategy_for(promotion)
            discount = min(strategy.discount(surcharged, distance), surcharged)
            if discount > ZERO:
                promotion_code = promotion.code
                lines.append(("DISCOUNT", f"Code promo {promotion.code}", -discount))
            else:
                discount = ZERO

        # 10. Total
        total = round_half_up(surcharged - discount)

        # 11. Whole-franc lines
        kept = [line for line in lines if line[2] != ZERO or line[0] == "BASE"]
        amounts = allocate_largest_remainder([a for _, _, a in kept], total)
        price_lines = [
            PriceLine(code, label, amount)
            for (code, label, _), amount in zip(kept, amounts)
        ]
        by_code: dict[str, int] = {}
        for line in price_lines:
            by_code[line.code] = by_code.get(line.code, 0) + line.amount
        surcharge_codes = ("NIGHT", "WEEKEND", "TRAFFIC", "WEATHER", "DEMAND")

        return PricingBreakdown(
            distance_km=round(distance_km, 2),
            base_price=by_code.get("BASE", 0),
            distance_price=by_code.get("DISTANCE", 0),
            priority_price=by_code.get("PRIORITY", 0),
            vehicle_price=by_code.get("VEHICLE", 0),
            zone_price=by_code.get("ZONE", 0),
            surcharge_price=sum(by_code.get(c, 0) for c in surcharge_codes),
            discount=-by_code.get("DISCOUNT", 0),
            total_price=total,
            estimated_minutes=self.estimate_minutes(distance_km, vehicle_type, traffic),
            lines=price_lines,
            factors={"zone": float(zone), "surcharge": float(running), **applied},
            promotion_code=promotion_code,
        )
