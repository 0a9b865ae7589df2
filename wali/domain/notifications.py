"""Notification value objects and the French message templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .entities import Order
from .enums import NotificationType, OrderStatus

CLIENT_STATUS_MESSAGES = {
    OrderStatus.PENDING: "Votre commande {number} a été créée. Nous recherchons un livreur.",
    OrderStatus.ASSIGNED: "Un livreur a été affecté à votre commande {number}.",
    OrderStatus.ACCEPTED: "Un livreur a accepté votre commande {number}.",
    OrderStatus.PICKUP_IN_PROGRESS: "Le livreur est en route vers le point de collecte.",
    OrderStatus.PICKED_UP: "Votre colis {number} a été récupéré.",
    OrderStatus.DELIVERY_IN_PROGRESS: "Votre colis {number} est en cours de livraison.",
    OrderStatus.DELIVERED: "Votre commande {number} a été livrée. Merci d'avoir choisi WALI !",
    OrderStatus.CANCELLED: "Votre commande {number} a été annulée.",
    OrderStatus.FAILED: "La livraison de la commande {number} a échoué.",
}

DRIVER_STATUS_MESSAGES = {
    OrderStatus.ASSIGNED: "Nouvelle course {number} qui vous est affectée.",
    OrderStatus.CANCELLED: "La course {number} a été annulée.",
}

STATUS_TITLES = {
    OrderStatus.PENDING: "Commande créée",
    OrderStatus.DELIVERED: "Commande livrée",
    OrderStatus.CANCELLED: "Commande annulée",
    OrderStatus.FAILED: "Livraison échouée",
}


@dataclass(frozen=True)
class WaliNotification:
    type: NotificationType
    user_id: int
    title: str
    body: str
    order_id: Optional[int] = None
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "userId": self.user_id,
            "title": self.title,
            "body": self.body,
            "orderId": self.order_id,
            "data": self.data,
            "createdAt": self.created_at.isoformat(),
        }


def status_notifications(
    order: Order, status: OrderStatus, actor_id: Optional[int] = None
) -> list[WaliNotification]:
    """Notifications owed for *order* entering *status*.

    The client always hears about their order; the driver only about the
    changes they did not make themselves.
    """
    number = order.order_number or str(order.id)
    kind = NotificationType.ORDER_CREATED if status == OrderStatus.PENDING else NotificationType.ORDER_STATUS
    title = STATUS_TITLES.get(status, "Suivi de commande")
    data = {"status": status.value, "orderNumber": number}

    out: list[WaliNotification] = []
    if order.client_id:
        body = CLIENT_STATUS_MESSAGES.get(status, f"Statut mis à jour : {status.value}")
        out.append(
            WaliNotification(kind, order.client_id, title, body.format(number=number), order.id, data)
        )
    driver_body = DRIVER_STATUS_MESSAGES.get(status)
    if order.driver_id and order.driver_id != actor_id and driver_body:
        out.append(
            WaliNotification(
                kind, order.driver_id, title, driver_body.format(number=number), order.id, data
            )
        )
    return out
