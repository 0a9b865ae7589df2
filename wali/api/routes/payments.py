"""
Payment endpoints
=================

POST /api/v1/payments                        -- start a payment for an order
GET  /api/v1/payments/{tx_id}/status         -- poll (verifies with the provider)
POST /api/v1/payments/{tx_id}/authorize      -- submit the card PIN
POST /api/v1/payments/{tx_id}/cancel         -- abandon a pending attempt
POST /api/v1/payments/webhooks/flutterwave   -- provider callback (no auth)
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Header, Request

from wali.api.dependencies import get_current_user, get_payment_service
from wali.api.middleware import DEFAULT_LIMIT, limiter
from wali.api.schemas import AuthorizeRequest, PaymentCreateRequest, PaymentResponse
from wali.domain.entities import User
from wali.services.payments import PaymentRequest, PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "",
    status_code=201,
    response_model=PaymentResponse,
    summary="Initiate a payment",
    description=(
        "Mobile Money returns PROCESSING and the USSD code to confirm on the "
        "phone. Card payments return a hosted payment link, or PENDING with "
        "errorCode PIN_REQUIRED when the card needs its PIN."
    ),
)
@limiter.limit(DEFAULT_LIMIT)
async def create_payment(
    request: Request,
    body: PaymentCreateRequest,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await service.initiate_payment(
        PaymentRequest(
            order_id=body.order_id,
            method=body.method,
            amount=body.amount,
            phone_number=body.phone_number,
            email=body.email,
            card=body.card.model_dump() if body.card else None,
            pin=body.pin,
        ),
        user,
    )


@router.get(
    "/{tx_id}/status", response_model=PaymentResponse, summary="Check a payment's status"
)
@limiter.limit(DEFAULT_LIMIT)
async def payment_status(
    request: Request,
    tx_id: int,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await service.check_status(tx_id, user)


@router.post(
    "/{tx_id}/authorize", response_model=PaymentResponse, summary="Authorize a card payment"
)
@limiter.limit(DEFAULT_LIMIT)
async def authorize_payment(
    request: Request,
    tx_id: int,
    body: AuthorizeRequest,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    card = body.card.model_dump() if body.card else None
    return await service.authorize_payment(tx_id, body.pin, user, card)


@router.post("/{tx_id}/cancel", response_model=PaymentResponse, summary="Cancel a payment")
@limiter.limit(DEFAULT_LIMIT)
async def cancel_payment(
    request: Request,
    tx_id: int,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return await service.cancel_payment(tx_id, user)


@router.post("/webhooks/flutterwave", summary="Flutterwave webhook")
async def flutterwave_webhook(
    payload: dict[str, Any] = Body(...),
    verif_hash: Optional[str] = Header(None, alias="verif-hash"),
    service: PaymentService = Depends(get_payment_service),
):
    tx = await service.handle_webhook(payload, verif_hash)
    return {"status": "ok", "reference": tx.reference if tx else None}
