"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 clients, 6 drivers (one per vehicle type) and 1 admin in Abidjan
  - 3 promotions: WALI2024, NOUVEAU, LIVRAISON
  - a default address for each client
  - 5 sample orders (PENDING, ACCEPTED, PICKED_UP, DELIVERED, CANCELLED)

Every seeded user gets a printed access token so the API can be tried
straight from ``/docs``.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from wali.api.security import create_access_token
from wali.domain.entities import Address
from wali.domain.enums import (
    OrderPriority,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PromotionType,
    UserRole,
    VehicleType,
)
from wali.domain.geography import ABIDJAN_COMMUNES
from wali.domain.pricing import PricingEngine
from wali.infrastructure.database import async_session_factory, engine
from wali.infrastructure.models import (
    AddressModel,
    OrderItemModel,
    OrderModel,
    PromotionModel,
    StatusHistoryModel,
    UserModel,
)
from wali.services.orders import generate_order_number


CLIENTS = [
    {"name": "Aya Kouassi", "phone": "+2250701020304", "district": "Cocody"},
    {"name": "Koffi N'Guessan", "phone": "+2250505060708", "district": "Yopougon"},
    {"name": "Mariam Traoré", "phone": "+2250102030405", "district": "Marcory"},
    {"name": "Yao Konan", "phone": "+2250707080910", "district": "Plateau"},
]

DRIVERS = [
    {"name": "Ibrahim Coulibaly", "phone": "+2250711111111", "vehicle": VehicleType.MOTO},
    {"name": "Serge Bamba", "phone": "+2250722222222", "vehicle": VehicleType.SCOOTER},
    {"name": "Fatou Diabaté", "phone": "+2250733333333", "vehicle": VehicleType.VELO},
    {"name": "Moussa Ouattara", "phone": "+2250744444444", "vehicle": VehicleType.TRICYCLE},
    {"name": "Jean-Marc Aké", "phone": "+2250755555555", "vehicle": VehicleType.VOITURE},
    {"name": "Adama Sanogo", "phone": "+2250766666666", "vehicle": VehicleType.CAMIONNETTE},
]

ADMIN = {"name": "Admin WALI", "phone": "+2250700000000"}

PROMOTIONS = [
    {
        "code": "WALI2024",
        "description": "10% sur votre livraison",
        "promotion_type": PromotionType.PERCENTAGE,
        "value": 10,
        "max_discount": 1000,
        "min_order_value": 1000,
    },
    {
        "code": "NOUVEAU",
        "description": "500 FCFA offerts pour la première commande",
        "promotion_type": PromotionType.FIXED_AMOUNT,
        "value": 500,
        "min_order_value": 1500,
        "usage_limit": 1000,
    },
    {
        "code": "LIVRAISON",
        "description": "Frais de distance offerts",
        "promotion_type": PromotionType.FREE_DELIVERY,
        "value": 0,
        "min_order_value": 3000,
    },
]

# (client index, pickup, delivery, vehicle, priority, final status, driver index)
ORDERS = [
    (0, "Plateau", "Cocody", VehicleType.MOTO, OrderPriority.EXPRESS, OrderStatus.PENDING, None),
    (1, "Yopougon", "Adjamé", VehicleType.MOTO, OrderPriority.STANDARD, OrderStatus.ACCEPTED, 0),
    (2, "Marcory", "Treichville", VehicleType.SCOOTER, OrderPriority.URGENT, OrderStatus.PICKED_UP, 1),
    (3, "Plateau", "Port-Bouët", VehicleType.VOITURE, OrderPriority.STANDARD, OrderStatus.DELIVERED, 4),
    (0, "Cocody", "Bingerville", VehicleType.MOTO, OrderPriority.STANDARD, OrderStatus.CANCELLED, None),
]

PATHS = {
    OrderStatus.PENDING: [OrderStatus.PENDING],
    OrderStatus.ACCEPTED: [OrderStatus.PENDING, OrderStatus.ACCEPTED],
    OrderStatus.PICKED_UP: [
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.PICKUP_IN_PROGRESS,
        OrderStatus.PICKED_UP,
    ],
    OrderStatus.DELIVERED: [
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.PICKUP_IN_PROGRESS,
        OrderStatus.PICKED_UP,
        OrderStatus.DELIVERY_IN_PROGRESS,
        OrderStatus.DELIVERED,
    ],
    OrderStatus.CANCELLED: [OrderStatus.PENDING, OrderStatus.CANCELLED],
}


def commune_address(commune: str) -> Address:
    lat, lng = ABIDJAN_COMMUNES[commune]
    return Address(
        street=f"Centre de {commune}",
        city="Abidjan",
        district=commune,
        latitude=lat,
        longitude=lng,
    )


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = datetime.now(timezone.utc)

        # ── Users ─────────────────────────────────────────────────────
        clients = [
            UserModel(name=c["name"], phone=c["phone"], role=UserRole.CLIENT)
            for c in CLIENTS
        ]
        drivers = [
            UserModel(
                name=d["name"],
                phone=d["phone"],
                role=UserRole.DRIVER,
                vehicle_type=d["vehicle"],
                is_available=True,
            )
            for d in DRIVERS
        ]
        admin = UserModel(name=ADMIN["name"], phone=ADMIN["phone"], role=UserRole.ADMIN)
        session.add_all([*clients, *drivers, admin])
        await session.flush()
        print(f"  Created {len(clients)} clients, {len(drivers)} drivers, 1 admin")

        # ── Addresses ─────────────────────────────────────────────────
        for model, data in zip(clients, CLIENTS):
            home = commune_address(data["district"])
            session.add(
                AddressModel(
                    user_id=model.id,
                    label="Maison",
                    street=home.street,
                    city=home.city,
                    district=home.district,
                    latitude=home.latitude,
                    longitude=home.longitude,
                    is_default=True,
                    created_at=now,
                )
            )

        # ── Promotions ────────────────────────────────────────────────
        for p in PROMOTIONS:
            session.add(PromotionModel(valid_from=now - timedelta(days=1), **p))
        print(f"  Created {len(PROMOTIONS)} promotions")

        # ── Orders ────────────────────────────────────────────────────
        pricing_engine = PricingEngine()
        for client_idx, src, dst, vehicle, priority, final, driver_idx in ORDERS:
            pickup, delivery = commune_address(src), commune_address(dst)
            breakdown = pricing_engine.calculate_price(
                pickup, delivery, vehicle, priority, now=now
            )
            client = clients[client_idx]
            driver = drivers[driver_idx] if driver_idx is not None else None
            path = PATHS[final]
            created = now - timedelta(minutes=10 * len(path))

            order = OrderModel(
                order_number=generate_order_number(now),
                client_id=client.id,
                driver_id=driver.id if driver else None,
                status=final,
                priority=priority,
                preferred_vehicle_type=vehicle,
                pricing=breakdown.to_dict(),
                total_price=breakdown.total_price,
                payment_method=PaymentMethod.CASH,
                payment_status=(
                    PaymentStatus.PAID if final == OrderStatus.DELIVERED else PaymentStatus.PENDING
                ),
                created_at=created,
                updated_at=created + timedelta(minutes=10 * (len(path) - 1)),
                completed_at=(
                    created + timedelta(minutes=10 * (len(path) - 1))
                    if final in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)
                    else None
                ),
            )
            for prefix, addr in (("pickup", pickup), ("delivery", delivery)):
                for attr in ("street", "city", "district", "latitude", "longitude"):
                    setattr(order, f"{prefix}_{attr}", getattr(addr, attr))
            order.items.append(
                OrderItemModel(name="Colis", quantity=1, weight_kg=2.0, value=5000)
            )
            session.add(order)
            await session.flush()

            for step, status in enumerate(path):
                by = client if status in (OrderStatus.PENDING, OrderStatus.CANCELLED) else driver
                session.add(
                    StatusHistoryModel(
                        order_id=order.id,
                        status=status,
                        timestamp=created + timedelta(minutes=10 * step),
                        updated_by=by.id,
                        updated_by_role=by.role,
                        notes="Commande créée" if step == 0 else None,
                    )
                )
        await session.flush()
        print(f"  Created {len(ORDERS)} orders")

        await session.commit()

        print("\nAccess tokens:")
        for model in [*clients, *drivers, admin]:
            token = create_access_token(model.id, model.role.value)
            print(f"  {model.role.value:<7} {model.name:<20} {token}")
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
