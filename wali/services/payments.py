"""
Payment orchestration.

A payment attempt is a :class:`PaymentTransaction` that moves
PENDING -> PROCESSING -> COMPLETED / FAILED / EXPIRED / CANCELLED.
Provider specifics live behind the gateway strategies; this service only
creates attempts, applies the outcomes and keeps the order's
``payment_status`` in sync.

There is no automatic retry: a failed attempt stays FAILED and the client
starts a new one.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from wali.config import settings
from wali.domain.entities import PaymentTransaction, User
from wali.domain.enums import (
    MOBILE_MONEY_PROVIDERS,
    PROVIDER_FOR_METHOD,
    NotificationType,
    OrderStatus,
    PaymentMethod,
    PaymentProvider,
    PaymentStatus,
    TransactionStatus,
)
from wali.domain.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ProviderError,
    TerminalStateError,
    ValidationError,
)
from wali.domain.notifications import WaliNotification
from wali.domain.repositories import IOrderRepository, IPaymentRepository
from wali.domain.validation import coerce_enum, validate_phone
from wali.infrastructure.notifier import Notifier
from wali.infrastructure.payment_providers import (
    ChargeRequest,
    ChargeResult,
    PaymentGateway,
    map_flutterwave_status,
    parse_amount,
)

logger = logging.getLogger(__name__)

PROVIDER_ERROR_MESSAGE = (
    "Le service de paiement est momentanément indisponible. Veuillez réessayer."
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentRequest:
    order_id: int
    method: PaymentMethod
    amount: int
    phone_number: Optional[str] = None
    email: Optional[str] = None
    card: Optional[dict[str, Any]] = None
    pin: Optional[str] = None


class PaymentService:
    def __init__(
        self,
        payment_repository: IPaymentRepository,
        order_repository: IOrderRepository,
        gateways: dict[PaymentProvider, PaymentGateway],
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._payments = payment_repository
        self._orders = order_repository
        self._gateways = gateways
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def initiate_payment(
        self, request: PaymentRequest, payer: User
    ) -> PaymentTransaction:
        method = coerce_enum(PaymentMethod, request.method, "Moyen de paiement")
        order = await self._orders.get(request.order_id)
        if order is None:
            raise NotFoundError("Commande introuvable")
        if order.client_id != payer.id:
            raise PermissionDeniedError("Vous ne pouvez payer que vos propres commandes")
        if order.status in (OrderStatus.CANCELLED, OrderStatus.FAILED):
            raise ValidationError("Impossible de payer une commande annulée ou échouée")
        if request.amount != order.total_price:
            raise ValidationError(
                f"Montant incorrect : {order.total_price} FCFA attendus",
                code="AMOUNT_MISMATCH",
            )
        attempts = await self._payments.list_for_order(order.id)
        if order.payment_status == PaymentStatus.PAID or any(
            t.status == TransactionStatus.COMPLETED for t in attempts
        ):
            raise ConflictError("Cette commande est déjà payée", code="ALREADY_PAID")
        open_attempt = next((t for t in attempts if not t.is_terminal), None)
        if open_attempt is not None:
            raise ConflictError(
                f"Un paiement est déjà en cours pour cette commande ({open_attempt.reference}). "
                "Annulez-le avant d'en lancer un autre.",
                code="PAYMENT_IN_PROGRESS",
            )

        provider = PROVIDER_FOR_METHOD[method]
        phone = request.phone_number
        if provider in MOBILE_MONEY_PROVIDERS:
            if not phone:
                raise ValidationError("Numéro de téléphone requis pour le Mobile Money")
            phone = validate_phone(phone)

        now = self._clock()
        # cash is collected at delivery, so it never expires
        expires_at = None
        if provider == PaymentProvider.FLUTTERWAVE:
            expires_at = now + timedelta(minutes=settings.card_payment_expiry_minutes)
        elif provider != PaymentProvider.CASH:
            expires_at = now + timedelta(minutes=settings.payment_expiry_minutes)
        tx = await self._payments.add(
            PaymentTransaction(
                order_id=order.id,
                user_id=payer.id,
                amount=order.total_price,
                provider=provider,
                reference=f"WALI-{order.id}-{secrets.token_hex(4).upper()}",
                status=TransactionStatus.PENDING,
                phone_number=phone,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
        )
        if order.payment_method != method:
            await self._orders.update_fields(order.id, payment_method=method)

        charge = ChargeRequest(
            reference=tx.reference,
            amount=tx.amount,
            provider=provider,
            phone_number=phone,
            email=request.email,
            customer_name=payer.name or "Client WALI",
            description=f"Livraison {order.order_number}",
            card=request.card,
            pin=request.pin,
        )
        result = await self._call(self._gateways[provider].charge(charge), tx)
        logger.info(
            "Payment %s initiated via %s: %s", tx.reference, provider.value, result.status.value
        )
        return await self._apply(tx, result)

    async def authorize_payment(
        self,
        tx_id: int,
        pin: str,
        payer: User,
        card: Optional[dict[str, Any]] = None,
    ) -> PaymentTransaction:
        """Resubmit a card charge with the PIN the provider asked for."""
        tx = await self._get_owned(tx_id, payer)
        if tx.is_terminal:
            raise TerminalStateError(f"Le paiement {tx.reference} est déjà {tx.status.value}")
        if tx.provider != PaymentProvider.FLUTTERWAVE:
            raise ValidationError("Seuls les paiements par carte demandent un code PIN")
        charge = ChargeRequest(
            reference=tx.reference,
            amount=tx.amount,
            provider=tx.provider,
            customer_name=payer.name or "Client WALI",
            card=card,
            pin=pin,
        )
        result = await self._call(self._gateways[tx.provider].authorize(tx, charge), tx)
        return await self._apply(tx, result)

    async def check_status(self, tx_id: int, actor: Optional[User] = None) -> PaymentTransaction:
        tx = await self._get_owned(tx_id, actor) if actor else await self._get(tx_id)
        if tx.is_terminal:
            return tx
        if tx.is_expired(self._clock()):
            return await self._apply(
                tx,
                ChargeResult(
                    success=False,
                    status=TransactionStatus.EXPIRED,
                    message="Le délai de paiement est dépassé",
                    error_code="EXPIRED",
                ),
            )
        try:
            result = await self._gateways[tx.provider].verify(tx)
        except ProviderError:
            logger.warning("Could not verify payment %s, keeping %s", tx.reference, tx.status.value)
            return tx
        return await self._apply(tx, result)

    async def cancel_payment(self, tx_id: int, actor: User) -> PaymentTransaction:
        tx = await self._get_owned(tx_id, actor)
        if tx.is_terminal:
            raise TerminalStateError(f"Le paiement {tx.reference} est déjà {tx.status.value}")
        return await self._apply(
            tx,
            ChargeResult(
                success=False,
                status=TransactionStatus.CANCELLED,
                message="Paiement annulé",
            ),
        )

    async def handle_webhook(
        self, payload: dict[str, Any], signature: Optional[str]
    ) -> Optional[PaymentTransaction]:
        """Apply a Flutterwave ``charge.completed`` callback."""
        expected = settings.flutterwave_webhook_hash
        if expected:
            if not signature or not hmac.compare_digest(signature, expected):
                raise AuthenticationError("Signature de webhook invalide")
        else:
            logger.warning("FLUTTERWAVE_WEBHOOK_HASH not set, webhook signature not checked")

        data = payload.get("data") or {}
        reference = data.get("tx_ref")
        if not reference:
            return None
        tx = await self._payments.get_by_reference(reference)
        if tx is None:
            logger.warning("Webhook for unknown payment reference %s", reference)
            return None
        if tx.is_terminal:
            return tx

        status = map_flutterwave_status(data.get("status"))
        if status == TransactionStatus.COMPLETED and parse_amount(data.get("amount")) < tx.amount:
            logger.error("Webhook amount mismatch for %s: %s", reference, data.get("amount"))
            status = TransactionStatus.FAILED
        result = ChargeResult(
            success=status == TransactionStatus.COMPLETED,
            status=status,
            message="Notification du prestataire reçue",
            provider_transaction_id=str(data["id"]) if data.get("id") else None,
        )
        return await self._apply(tx, result)

    async def expire_stale(self) -> int:
        """Mark every overdue PENDING/PROCESSING attempt EXPIRED."""
        now = self._clock()
        expired = 0
        for tx in await self._payments.list_stale(now):
            expected = tx.status
            tx.transition_to(TransactionStatus.EXPIRED)
            tx.error_code = "EXPIRED"
            tx.message = "Le délai de paiement est dépassé"
            tx.updated_at = now
            if await self._payments.save(tx, expected):
                expired += 1
        return expired

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get(self, tx_id: int) -> PaymentTransaction:
        tx = await self._payments.get(tx_id)
        if tx is None:
            raise NotFoundError("Paiement introuvable")
        return tx

    async def _get_owned(self, tx_id: int, actor: User) -> PaymentTransaction:
        tx = await self._get(tx_id)
        if tx.user_id != actor.id and not actor.is_admin:
            raise NotFoundError("Paiement introuvable")
        return tx

    async def _call(self, coro, tx: PaymentTransaction) -> ChargeResult:
        try:
            return await coro
        except ProviderError:
            logger.exception("Provider error for payment %s", tx.reference)
            return ChargeResult(
                success=False,
                status=TransactionStatus.FAILED,
                message=PROVIDER_ERROR_MESSAGE,
                error_code="PROVIDER_ERROR",
            )

    async def _apply(self, tx: PaymentTransaction, result: ChargeResult) -> PaymentTransaction:
        """Fold *result* into *tx* and persist with a compare-and-set."""
        expected = tx.status
        now = self._clock()
        if result.status != tx.status:
            tx.transition_to(result.status)
        tx.message = result.message
        tx.error_code = result.error_code
        tx.provider_transaction_id = result.provider_transaction_id or tx.provider_transaction_id
        tx.payment_url = result.payment_url or tx.payment_url
        tx.ussd_code = result.ussd_code or tx.ussd_code
        tx.updated_at = now
        if tx.status == TransactionStatus.COMPLETED:
            tx.completed_at = now

        if not await self._payments.save(tx, expected):
            raise ConflictError("Le paiement a été modifié entre-temps", code="CONCURRENT_UPDATE")

        if expected != tx.status:
            logger.info(
                "Payment %s: %s -> %s", tx.reference, expected.value, tx.status.value
            )
        if tx.status == TransactionStatus.COMPLETED:
            await self._orders.update_fields(tx.order_id, payment_status=PaymentStatus.PAID)
            await self._notify(tx, "Paiement confirmé", f"Votre paiement de {tx.amount} FCFA a été reçu.")
        elif tx.status == TransactionStatus.FAILED and expected != TransactionStatus.FAILED:
            await self._orders.update_fields(tx.order_id, payment_status=PaymentStatus.FAILED)
            await self._notify(tx, "Paiement échoué", tx.message or "Le paiement a échoué.")
        return tx

    async def _notify(self, tx: PaymentTransaction, title: str, body: str) -> None:
        await self._notifier.publish(
            WaliNotification(
                type=NotificationType.PAYMENT,
                user_id=tx.user_id,
                title=title,
                body=body,
                order_id=tx.order_id,
                data={"reference": tx.reference, "status": tx.status.value},
            )
        )
