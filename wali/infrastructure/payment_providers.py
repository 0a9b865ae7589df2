"""
Payment gateways  (Strategy Pattern)
====================================

One strategy per way of paying:

* :class:`MobileMoneyGateway` -- Orange Money, MTN MoMo and Wave through
  Flutterwave's ``mobile_money_franco`` charge (USSD push to the phone).
* :class:`CardGateway`        -- Flutterwave hosted payment link, or a
  direct card charge that may ask for the card PIN.
* :class:`CashGateway`        -- pay on delivery, no provider call.

Without ``FLUTTERWAVE_SECRET_KEY`` the Flutterwave client runs in
*simulated* mode and answers locally, so the whole flow can be exercised
in development.

Gateways never leak provider payloads: every outcome is folded into a
:class:`ChargeResult` with a French message.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from wali.config import settings
from wali.domain.entities import PaymentTransaction
from wali.domain.enums import PaymentProvider, TransactionStatus
from wali.domain.errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)

USSD_CODES = {
    PaymentProvider.ORANGE_MONEY: "#144#",
    PaymentProvider.MTN_MOMO: "*133#",
}

FLW_NETWORKS = {
    PaymentProvider.ORANGE_MONEY: "ORANGE",
    PaymentProvider.MTN_MOMO: "MTN",
    PaymentProvider.WAVE: "WAVE",
}

FLW_STATUS = {
    "successful": TransactionStatus.COMPLETED,
    "completed": TransactionStatus.COMPLETED,
    "failed": TransactionStatus.FAILED,
    "cancelled": TransactionStatus.CANCELLED,
    "pending": TransactionStatus.PROCESSING,
}


@dataclass
class ChargeRequest:
    reference: str
    amount: int
    provider: PaymentProvider
    currency: str = "XOF"
    phone_number: Optional[str] = None
    email: Optional[str] = None
    customer_name: str = "Client WALI"
    description: str = ""
    card: Optional[dict[str, Any]] = None
    pin: Optional[str] = None


@dataclass
class ChargeResult:
    success: bool
    status: TransactionStatus
    message: str
    provider_transaction_id: Optional[str] = None
    payment_url: Optional[str] = None
    ussd_code: Optional[str] = None
    error_code: Optional[str] = None


def map_flutterwave_status(raw: Optional[str]) -> TransactionStatus:
    return FLW_STATUS.get((raw or "").lower(), TransactionStatus.PROCESSING)


def parse_amount(raw: Any) -> Decimal:
    """Flutterwave sends amounts as ints, floats or strings such as ``"2865.00"``."""
    if raw is None or raw == "":
        return Decimal(0)
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return Decimal(0)


# ── Flutterwave HTTP client ───────────────────────────────────────────


class FlutterwaveClient:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.secret_key = (
            secret_key if secret_key is not None else settings.flutterwave_secret_key
        )
        self.base_url = (base_url or settings.flutterwave_base_url).rstrip("/")
        self._client = client
        self.timeout = timeout or settings.payment_timeout_seconds

    @property
    def simulated(self) -> bool:
        return not self.secret_key

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(
                    method, url, json=json, params=params, headers=self._headers()
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.request(
                        method, url, json=json, params=params, headers=self._headers()
                    )
            if resp.status_code >= 500:
                raise ProviderError(f"Flutterwave HTTP {resp.status_code}")
            return resp.json()
        except httpx.HTTPError as exc:
            logger.error("Flutterwave network error on %s %s: %s", method, path, exc)
            raise ProviderError() from exc
        except ValueError as exc:
            logger.error("Flutterwave returned non-JSON on %s %s", method, path)
            raise ProviderError() from exc


# ── Strategy hierarchy ────────────────────────────────────────────────


class PaymentGateway(ABC):
    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult: ...

    @abstractmethod
    async def verify(self, tx: PaymentTransaction) -> ChargeResult: ...

    async def authorize(
        self, tx: PaymentTransaction, request: ChargeRequest
    ) -> ChargeResult:
        raise ValidationError("Ce moyen de paiement ne requiert pas d'autorisation")


class _FlutterwaveGateway(PaymentGateway):
    def __init__(self, client: Optional[FlutterwaveClient] = None):
        self.client = client or FlutterwaveClient()

    async def verify(self, tx: PaymentTransaction) -> ChargeResult:
        if self.client.simulated:
            return ChargeResult(
                success=True,
                status=TransactionStatus.COMPLETED,
                message="Paiement confirmé (simulation)",
                provider_transaction_id=tx.provider_transaction_id,
            )
        data = await self.client.request(
            "GET",
            "/transactions/verify_by_reference",
            params={"tx_ref": tx.reference},
        )
        if data.get("status") != "success":
            logger.warning(
                "Flutterwave verify %s: %s", tx.reference, data.get("message")
            )
            return ChargeResult(
                success=False,
                status=tx.status,
                message="Paiement en attente de confirmation",
            )
        body = data.get("data") or {}
        status = map_flutterwave_status(body.get("status"))
        if status == TransactionStatus.COMPLETED and parse_amount(body.get("amount")) < tx.amount:
            logger.error(
                "Flutterwave amount mismatch for %s: got %s, expected %s",
                tx.reference,
                body.get("amount"),
                tx.amount,
            )
            return ChargeResult(
                success=False,
                status=TransactionStatus.FAILED,
                message="Montant reçu incorrect",
                error_code="AMOUNT_MISMATCH",
            )
        return ChargeResult(
            success=status == TransactionStatus.COMPLETED,
            status=status,
            message=_status_message(status),
            provider_transaction_id=str(body["id"]) if body.get("id") else None,
        )


class MobileMoneyGateway(_FlutterwaveGateway):
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        if not request.phone_number:
            raise ValidationError("Numéro de téléphone requis pour le Mobile Money")
        ussd = USSD_CODES.get(request.provider)
        if self.client.simulated:
            logger.warning("Flutterwave non configuré: paiement %s simulé", request.reference)
            return ChargeResult(
                success=True,
                status=TransactionStatus.PROCESSING,
                message=_push_message(request.provider, ussd),
                provider_transaction_id=f"SIM-{request.reference}",
                ussd_code=ussd,
            )

        data = await self.client.request(
            "POST",
            "/charges",
            params={"type": "mobile_money_franco"},
            json={
                "tx_ref": request.reference,
                "amount": request.amount,
                "currency": request.currency,
                "country": "CI",
                "network": FLW_NETWORKS[request.provider],
                "phone_number": request.phone_number,
                "email": request.email or "client@wali-livraison.ci",
                "fullname": request.customer_name,
            },
        )
        if data.get("status") != "success":
            logger.error(
                "Flutterwave mobile money charge %s refused: %s",
                request.reference,
                data.get("message"),
            )
            return ChargeResult(
                success=False,
                status=TransactionStatus.FAILED,
                message="Le paiement Mobile Money a été refusé",
                error_code="PAYMENT_DECLINED",
            )
        body = data.get("data") or {}
        auth = (data.get("meta") or {}).get("authorization") or {}
        return ChargeResult(
            success=True,
            status=TransactionStatus.PROCESSING,
            message=_push_message(request.provider, ussd),
            provider_transaction_id=str(body["id"]) if body.get("id") else None,
            payment_url=auth.get("redirect"),
            ussd_code=ussd,
        )


class CardGateway(_FlutterwaveGateway):
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        if request.card:
            return await self._direct_charge(request)
        if self.client.simulated:
            return ChargeResult(
                success=True,
                status=TransactionStatus.PENDING,
                message="Redirection vers la page de paiement sécurisée",
                payment_url=f"https://checkout.flutterwave.com/simulated/{request.reference}",
            )
        data = await self.client.request(
            "POST",
            "/payments",
            json={
                "tx_ref": request.reference,
                "amount": request.amount,
                "currency": request.currency,
                "redirect_url": settings.payment_redirect_url,
                "payment_options": "card",
                "customer": {
                    "email": request.email or "client@wali-livraison.ci",
                    "phonenumber": request.phone_number,
                    "name": request.customer_name,
                },
                "customizations": {
                    "title": "WALI Livraison",
                    "description": request.description,
                },
            },
        )
        if data.get("status") != "success":
            logger.error(
                "Flutterwave payment link %s refused: %s",
                request.reference,
                data.get("message"),
            )
            return ChargeResult(
                success=False,
                status=TransactionStatus.FAILED,
                message="Impossible de créer le lien de paiement",
                error_code="PAYMENT_DECLINED",
            )
        return ChargeResult(
            success=True,
            status=TransactionStatus.PENDING,
            message="Redirection vers la page de paiement sécurisée",
            payment_url=(data.get("data") or {}).get("link"),
        )

    async def authorize(
        self, tx: PaymentTransaction, request: ChargeRequest
    ) -> ChargeResult:
        if not request.pin:
            raise ValidationError("Code PIN requis")
        if not request.card:
            raise ValidationError("Informations de carte requises")
        return await self._direct_charge(request)

    async def _direct_charge(self, request: ChargeRequest) -> ChargeResult:
        payload: dict[str, Any] = {
            **request.card,
            "tx_ref": request.reference,
            "amount": request.amount,
            "currency": request.currency,
            "email": request.email or "client@wali-livraison.ci",
            "fullname": request.customer_name,
            "redirect_url": settings.payment_redirect_url,
        }
        if request.pin:
            payload["authorization"] = {"mode": "pin", "pin": request.pin}

        if self.client.simulated:
            if not request.pin:
                return _pin_required()
            return ChargeResult(
                success=True,
                status=TransactionStatus.PROCESSING,
                message="Paiement par carte en cours de validation",
                provider_transaction_id=f"SIM-{request.reference}",
            )

        data = await self.client.request(
            "POST", "/charges", params={"type": "card"}, json=payload
        )
        if data.get("status") != "success":
            logger.error(
                "Flutterwave card charge %s refused: %s",
                request.reference,
                data.get("message"),
            )
            return ChargeResult(
                success=False,
                status=TransactionStatus.FAILED,
                message="Le paiement par carte a été refusé",
                error_code="PAYMENT_DECLINED",
            )
        auth = (data.get("meta") or {}).get("authorization") or {}
        if auth.get("mode") == "pin" and not request.pin:
            return _pin_required()
        body = data.get("data") or {}
        return ChargeResult(
            success=True,
            status=map_flutterwave_status(body.get("status")),
            message="Paiement par carte en cours de validation",
            provider_transaction_id=str(body["id"]) if body.get("id") else None,
            payment_url=auth.get("redirect"),
        )


class CashGateway(PaymentGateway):
    async def charge(self, request: ChargeRequest) -> ChargeResult:
        return ChargeResult(
            success=True,
            status=TransactionStatus.PENDING,
            message=f"Paiement de {request.amount} FCFA en espèces à la livraison",
        )

    async def verify(self, tx: PaymentTransaction) -> ChargeResult:
        return ChargeResult(
            success=True,
            status=tx.status,
            message="Paiement en espèces à la livraison",
        )


# ── Helpers ───────────────────────────────────────────────────────────


def _pin_required() -> ChargeResult:
    return ChargeResult(
        success=False,
        status=TransactionStatus.PENDING,
        message="Veuillez saisir le code PIN de votre carte",
        error_code="PIN_REQUIRED",
    )


def _push_message(provider: PaymentProvider, ussd: Optional[str]) -> str:
    if ussd:
        return (
            "Validez le paiement sur votre téléphone "
            f"ou composez {ussd} pour confirmer"
        )
    return "Validez le paiement dans votre application Wave"


def _status_message(status: TransactionStatus) -> str:
    return {
        TransactionStatus.COMPLETED: "Paiement confirmé",
        TransactionStatus.FAILED: "Le paiement a échoué",
        TransactionStatus.CANCELLED: "Le paiement a été annulé",
    }.get(status, "Paiement en attente de confirmation")


def build_gateways(
    client: Optional[FlutterwaveClient] = None,
) -> dict[PaymentProvider, PaymentGateway]:
    client = client or FlutterwaveClient()
    mobile = MobileMoneyGateway(client)
    return {
        PaymentProvider.ORANGE_MONEY: mobile,
        PaymentProvider.MTN_MOMO: mobile,
        PaymentProvider.WAVE: mobile,
        PaymentProvider.FLUTTERWAVE: CardGateway(client),
        PaymentProvider.CASH: CashGateway(),
    }
