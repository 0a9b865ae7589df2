"""
Dispatch / availability rules.

A driver may take an order when the order has no preferred vehicle or
prefers exactly the driver's vehicle type.  There is no ranking: the
available list is simply the PENDING orders, oldest first.
"""

from __future__ import annotations

from typing import Optional

from wali.config import settings

from .entities import Order
from .enums import VehicleType


def vehicle_capacity_kg(vehicle_type: VehicleType) -> float:
    return float(settings.vehicle_max_weight_kg.get(vehicle_type.value, 0))


def is_vehicle_compatible(
    order: Order, vehicle_type: Optional[VehicleType]
) -> bool:
    if order.preferred_vehicle_type is None:
        return True
    return vehicle_type == order.preferred_vehicle_type
