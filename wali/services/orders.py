"""
Order lifecycle service (use cases).

Orchestrates creation, dispatch and status changes of delivery orders.
Receives its repositories through the constructor; the caller owns the
transaction (``get_db`` commits after the request).

Concurrency
-----------
Every status change is a compare-and-set on the status that was read:
``UPDATE orders SET status = :new ... WHERE id = :id AND status = :expected``.
Of two drivers accepting the same order, exactly one update matches a
row; the other gets :class:`ConflictError`.  A history entry is written
only after the update won, so rejected changes leave no trace.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from wali.domain.dispatch import is_vehicle_compatible, vehicle_capacity_kg
from wali.domain.entities import Address, Order, OrderItem, StatusHistoryEntry, User
from wali.domain.enums import (
    TERMINAL_ORDER_STATUSES,
    OrderPriority,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    UserRole,
    VehicleType,
)
from wali.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TerminalStateError,
    ValidationError,
)
from wali.domain.notifications import status_notifications
from wali.domain.repositories import IOrderRepository, IUserRepository
from wali.domain.validation import (
    coerce_enum,
    validate_address,
    validate_coordinates,
    validate_items,
)
from wali.infrastructure.notifier import Notifier
from wali.services.pricing import PricingService

logger = logging.getLogger(__name__)

ORDER_CREATORS = {UserRole.CLIENT, UserRole.PARTNER, UserRole.ADMIN}
DEFAULT_PRICING_VEHICLE = VehicleType.MOTO
HISTORY_STEP = timedelta(microseconds=1)
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
EDITABLE_FIELDS = frozenset({"notes", "scheduled_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number(now: datetime) -> str:
    return f"WAL-{now.year}-{secrets.token_hex(3).upper()}"


@dataclass
class OrderDraft:
    """What a client submits to create an order."""

    pickup: Address
    delivery: Address
    items: list[OrderItem] = field(default_factory=list)
    order_type: OrderType = OrderType.DELIVERY
    priority: OrderPriority = OrderPriority.STANDARD
    preferred_vehicle_type: Optional[VehicleType] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = None
    promotion_code: Optional[str] = None
    scheduled_at: Optional[datetime] = None


@dataclass
class OrderPage:
    orders: list[Order]
    total: int
    page: int
    limit: int


class OrderService:
    def __init__(
        self,
        order_repository: IOrderRepository,
        user_repository: IUserRepository,
        pricing_service: PricingService,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._orders = order_repository
        self._users = user_repository
        self._pricing = pricing_service
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_order(self, draft: OrderDraft, client: User) -> Order:
        """Validate, price and persist a new PENDING order.

        Raises:
            PermissionDeniedError: the actor may not place orders.
            ValidationError: items, addresses, weight or distance invalid.
        """
        if client.role not in ORDER_CREATORS:
            raise PermissionDeniedError("Seuls les clients peuvent passer commande")

        items = validate_items(draft.items)
        pickup = validate_address(draft.pickup).snapshot()
        delivery = validate_address(draft.delivery).snapshot()
        order_type = coerce_enum(OrderType, draft.order_type, "Type de commande")
        priority = coerce_enum(OrderPriority, draft.priority, "Priorité")
        vehicle = (
            coerce_enum(VehicleType, draft.preferred_vehicle_type, "Type de véhicule")
            if draft.preferred_vehicle_type is not None
            else None
        )

        total_weight = sum(i.total_weight for i in items)
        capacity = (
            vehicle_capacity_kg(vehicle)
            if vehicle
            else max(vehicle_capacity_kg(v) for v in VehicleType)
        )
        if total_weight > capacity:
            raise ValidationError(
                f"Poids total {total_weight:g} kg supérieur à la capacité "
                f"du véhicule ({capacity:g} kg)",
                code="OVERWEIGHT",
            )

        now = self._clock()
        pricing_vehicle = vehicle or DEFAULT_PRICING_VEHICLE
        promotion = await self._pricing.find_promotion(draft.promotion_code)
        conditions = await self._pricing.current_conditions()

        def price(promo):
            return self._pricing.engine.calculate_price(
                pickup,
                delivery,
                pricing_vehicle,
                priority,
                draft.scheduled_at,
                promo,
                order_type=order_type,
                conditions=conditions,
                now=now,
            )

        breakdown = price(promotion)
        if breakdown.promotion_code and not await self._pricing.consume_promotion(promotion):
            logger.info("Promotion %s exhausted concurrently, repricing", promotion.code)
            breakdown = price(None)

        order = Order(
            order_number=generate_order_number(now),
            client_id=client.id,
            order_type=order_type,
            pickup=pickup,
            delivery=delivery,
            items=items,
            priority=priority,
            preferred_vehicle_type=vehicle,
            status=OrderStatus.PENDING,
            pricing=breakdown.to_dict(),
            total_price=breakdown.total_price,
            payment_method=coerce_enum(PaymentMethod, draft.payment_method, "Moyen de paiement"),
            payment_status=PaymentStatus.PENDING,
            notes=draft.notes,
            promotion_code=breakdown.promotion_code,
            scheduled_at=draft.scheduled_at,
            created_at=now,
            updated_at=now,
        )
        order = await self._orders.add(order)
        await self._orders.add_history(
            StatusHistoryEntry(
                order_id=order.id,
                status=OrderStatus.PENDING,
                timestamp=now,
                updated_by=client.id,
                updated_by_role=client.role,
                notes="Commande créée",
            )
        )
        logger.info(
            "Order %s created by user %s (%s FCFA)",
            order.order_number,
            client.id,
            order.total_price,
        )
        await self._notifier.publish_many(status_notifications(order, OrderStatus.PENDING, client.id))
        return order

    async def accept_order(self, order_id: int, driver: User) -> Order:
        """A driver takes a PENDING order. First come, first served."""
        if driver.role != UserRole.DRIVER:
            raise PermissionDeniedError("Seuls les livreurs peuvent accepter une commande")
        order = await self._get(order_id)
        if order.status != OrderStatus.PENDING and order.driver_id is not None:
            raise ConflictError("Commande déjà prise par un autre livreur", code="ORDER_TAKEN")
        order.check_transition(OrderStatus.ACCEPTED)
        if not is_vehicle_compatible(order, driver.vehicle_type):
            raise ValidationError(
                "Votre véhicule ne correspond pas à celui demandé pour cette commande",
                code="VEHICLE_INCOMPATIBLE",
            )
        return await self._apply(
            order,
            OrderStatus.ACCEPTED,
            driver,
            changes={"driver_id": driver.id},
            conflict_message="Commande déjà prise par un autre livreur",
        )

    async def assign_order(self, order_id: int, driver_id: int, admin: User) -> Order:
        """Admin dispatch: PENDING -> ASSIGNED to a given driver."""
        if not admin.is_admin:
            raise PermissionDeniedError("Affectation réservée aux administrateurs")
        driver = await self._users.get(driver_id)
        if driver is None or driver.role != UserRole.DRIVER:
            raise NotFoundError("Livreur introuvable")
        if not driver.is_active:
            raise ValidationError("Ce livreur est désactivé")
        order = await self._get(order_id)
        order.check_transition(OrderStatus.ASSIGNED)
        if not is_vehicle_compatible(order, driver.vehicle_type):
            raise ValidationError(
                "Le véhicule du livreur ne correspond pas à la commande",
                code="VEHICLE_INCOMPATIBLE",
            )
        return await self._apply(
            order,
            OrderStatus.ASSIGNED,
            admin,
            changes={"driver_id": driver.id},
            conflict_message="Commande déjà prise par un autre livreur",
        )

    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus | str,
        actor: User,
        location: Optional[tuple[float, float]] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Move an order one step along its lifecycle.

        Raises:
            NotFoundError: unknown order.
            PermissionDeniedError: actor is neither admin nor the assigned driver.
            InvalidTransitionError / TerminalStateError: illegal edge.
            ConflictError: the status changed since it was read.
        """
        new_status = coerce_enum(OrderStatus, new_status, "Statut")
        if location is not None:
            validate_coordinates(*location)
        if new_status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, notes or "", actor)

        order = await self._get(order_id)
        if not (actor.is_admin or (actor.is_driver and order.driver_id == actor.id)):
            raise PermissionDeniedError("Seul le livreur affecté peut modifier ce statut")
        order.check_transition(new_status)
        if new_status == OrderStatus.ASSIGNED:
            raise ValidationError("Utilisez l'affectation pour désigner un livreur")
        if new_status == OrderStatus.ACCEPTED and order.driver_id is None:
            raise ValidationError("Utilisez l'acceptation pour prendre une commande")

        changes = {}
        if new_status == OrderStatus.DELIVERED and order.payment_method == PaymentMethod.CASH:
            changes["payment_status"] = PaymentStatus.PAID
        return await self._apply(order, new_status, actor, changes=changes, location=location, notes=notes)

    async def cancel_order(self, order_id: int, reason: str, actor: User) -> Order:
        order = await self._get(order_id)
        if not (actor.is_admin or order.is_participant(actor)):
            raise PermissionDeniedError("Vous ne pouvez pas annuler cette commande")
        order.check_transition(OrderStatus.CANCELLED)
        return await self._apply(
            order, OrderStatus.CANCELLED, actor, notes=reason or "Annulée"
        )

    async def update_order(self, order_id: int, actor: User, **changes) -> Order:
        """Let the client edit the notes or schedule of an open order.

        The price was fixed at creation and is not recomputed.
        """
        if set(changes) - EDITABLE_FIELDS:
            raise ValidationError(
                "Seules les notes et la date de programmation sont modifiables"
            )
        order = await self._get(order_id)
        if order.client_id != actor.id:
            raise PermissionDeniedError("Seul le client peut modifier sa commande")
        if order.is_terminal:
            raise TerminalStateError("Cette commande ne peut plus être modifiée")
        if not changes:
            return order

        updated = await self._orders.update_details(
            order.id, updated_at=self._next_timestamp(order), **changes
        )
        if updated is None:
            raise TerminalStateError("Cette commande ne peut plus être modifiée")
        logger.info(
            "Order %s edited by user %s: %s",
            updated.order_number,
            actor.id,
            ", ".join(sorted(changes)),
        )
        return updated

    async def send_message(self, order_id: int, sender: User, text: str) -> dict:
        """Relay a chat message between the client and the assigned driver."""
        if not text or not text.strip():
            raise ValidationError("Message vide")
        order = await self._get(order_id)
        if not (sender.is_admin or order.is_participant(sender)):
            raise PermissionDeniedError("Vous ne participez pas à cette commande")
        message = {
            "orderId": order.id,
            "senderId": sender.id,
            "senderRole": sender.role.value,
            "text": text.strip()[:1000],
            "sentAt": self._clock().isoformat(),
        }
        await self._notifier.publish_chat(order.id, message)
        return message

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int, actor: User) -> Order:
        order = await self._get(order_id)
        self._check_can_view(order, actor)
        return order

    async def list_orders_for(
        self, actor: User, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> OrderPage:
        """Admins see every order, drivers their deliveries, clients their orders."""
        if page < 1:
            raise ValidationError("Le numéro de page doit être supérieur ou égal à 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"La taille de page doit être comprise entre 1 et {MAX_PAGE_SIZE}"
            )
        scope = {}
        if actor.is_driver:
            scope["driver_id"] = actor.id
        elif not actor.is_admin:
            scope["client_id"] = actor.id
        orders, total = await self._orders.list_page(
            offset=(page - 1) * limit, limit=limit, **scope
        )
        return OrderPage(orders=orders, total=total, page=page, limit=limit)

    async def get_available_orders(self, vehicle_type: Optional[VehicleType]) -> list[Order]:
        return await self._orders.list_available(vehicle_type)

    async def get_status_history(self, order_id: int, actor: User) -> list[StatusHistoryEntry]:
        order = await self._get(order_id)
        self._check_can_view(order, actor)
        return await self._orders.list_history(order_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get(self, order_id: int) -> Order:
        order = await self._orders.get(order_id)
        if order is None:
            raise NotFoundError("Commande introuvable")
        return order

    @staticmethod
    def _check_can_view(order: Order, actor: User) -> None:
        if actor.is_admin or order.is_participant(actor):
            return
        # drivers browse open orders before taking them
        if actor.is_driver and order.status == OrderStatus.PENDING:
            return
        raise PermissionDeniedError("Accès refusé à cette commande")

    def _next_timestamp(self, order: Order) -> datetime:
        now = self._clock()
        if order.updated_at is not None and now <= order.updated_at:
            now = order.updated_at + HISTORY_STEP
        return now

    async def _apply(
        self,
        order: Order,
        new_status: OrderStatus,
        actor: User,
        *,
        changes: Optional[dict] = None,
        location: Optional[tuple[float, float]] = None,
        notes: Optional[str] = None,
        conflict_message: str = "La commande a été modifiée entre-temps, veuillez réessayer",
    ) -> Order:
        previous = order.status
        now = self._next_timestamp(order)
        values = dict(changes or {})
        if new_status in TERMINAL_ORDER_STATUSES:
            values["completed_at"] = now

        updated = await self._orders.compare_and_set_status(
            order.id, previous, new_status, updated_at=now, **values
        )
        if updated is None:
            logger.info(
                "Lost race on order %s: %s -> %s by user %s",
                order.order_number,
                previous.value,
                new_status.value,
                actor.id,
            )
            raise ConflictError(conflict_message, code="CONCURRENT_UPDATE")

        lat, lng = location if location else (None, None)
        await self._orders.add_history(
            StatusHistoryEntry(
                order_id=updated.id,
                status=new_status,
                timestamp=now,
                updated_by=actor.id,
                updated_by_role=actor.role,
                latitude=lat,
                longitude=lng,
                notes=notes,
            )
        )
        logger.info(
            "Order %s: %s -> %s by user %s",
            updated.order_number,
            previous.value,
            new_status.value,
            actor.id,
        )
        await self._notifier.publish_many(status_notifications(updated, new_status, actor.id))
        return updated
