from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from shirtforge.deps import get_payments
from shirtforge.schemas import ConfirmPaymentRequest, PaymentIntentRequest, PaymentIntentResponse
from shirtforge.security import rate_limited
from shirtforge.services.payments import (
    PaymentConfigurationError,
    PaymentProcessorError,
    PaymentService,
    WebhookVerificationError,
)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, PaymentConfigurationError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    if isinstance(exc, PaymentProcessorError):
        return HTTPException(status_code=exc.status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post(
    "/create-payment-intent",
    response_model=PaymentIntentResponse,
    dependencies=[Depends(rate_limited("payment"))],
)
def create_payment_intent(
    payload: PaymentIntentRequest,
    payments: PaymentService = Depends(get_payments),
) -> dict[str, Any]:
    try:
        return payments.create_payment_intent(
            amount=payload.amount,
            currency=payload.currency,
            metadata=payload.metadata,
        )
    except (PaymentConfigurationError, PaymentProcessorError, ValueError) as exc:
        raise _translate(exc) from exc


@router.post("/confirm-payment", dependencies=[Depends(rate_limited("payment"))])
def confirm_payment(
    payload: ConfirmPaymentRequest,
    payments: PaymentService = Depends(get_payments),
) -> dict[str, Any]:
    if not payload.payment_intent_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment intent ID is required")
    try:
        intent = payments.confirm_payment(payload.payment_intent_id)
    except (PaymentConfigurationError, PaymentProcessorError, ValueError) as exc:
        raise _translate(exc) from exc
    return {"status": intent["status"], "payment_intent": intent}


@router.get("/payment-intent/{payment_intent_id}")
def get_payment_intent(
    payment_intent_id: str,
    payments: PaymentService = Depends(get_payments),
) -> dict[str, Any]:
    try:
        return payments.get_payment_intent(payment_intent_id)
    except (PaymentConfigurationError, PaymentProcessorError, ValueError) as exc:
        raise _translate(exc) from exc


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    payments: PaymentService = Depends(get_payments),
) -> dict[str, bool]:
    payload = await request.body()
    try:
        event = payments.parse_webhook_event(payload, stripe_signature)
    except WebhookVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {exc}") from exc
    payments.handle_webhook_event(event)
    return {"received": True}
