from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import stripe

from shirtforge.config import settings

logger = logging.getLogger(__name__)

MAX_PAYMENT_AMOUNT_CENTS = 1_000_000


class PaymentConfigurationError(RuntimeError):
    pass


class PaymentProcessorError(RuntimeError):
    def __init__(self, message: str, *, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class WebhookVerificationError(ValueError):
    pass


def _intent_summary(intent: Mapping[str, Any], *, include_secret: bool = False) -> dict[str, Any]:
    summary = {
        "id": intent["id"],
        "amount": intent["amount"],
        "currency": intent["currency"],
        "status": intent["status"],
    }
    if include_secret:
        summary["client_secret"] = intent.get("client_secret")
    return summary


class PaymentService:
    """Stripe PaymentIntent wrapper. Amounts are always integer cents."""

    def __init__(self, *, secret_key: str | None = None, webhook_secret: str | None = None) -> None:
        self._secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self._webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    def _require_key(self) -> None:
        if not self._secret_key:
            raise PaymentConfigurationError("Stripe not configured")
        stripe.api_key = self._secret_key

    def create_payment_intent(
        self,
        *,
        amount: float,
        currency: str = "usd",
        metadata: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        self._require_key()
        if not amount or amount <= 0:
            raise ValueError("Valid amount is required")
        amount_cents = int(round(amount))
        if amount_cents > MAX_PAYMENT_AMOUNT_CENTS:
            raise ValueError("Amount exceeds the maximum allowed")
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency.lower(),
                metadata=dict(metadata or {}),
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe payment intent creation failed", extra={"amount": amount_cents})
            raise PaymentProcessorError(str(exc.user_message or exc)) from exc
        logger.info("Created payment intent", extra={"payment_intent_id": intent["id"], "amount": amount_cents})
        return _intent_summary(intent, include_secret=True)

    def get_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        self._require_key()
        if not payment_intent_id:
            raise ValueError("Payment intent ID is required")
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.InvalidRequestError as exc:
            raise PaymentProcessorError(str(exc.user_message or exc), status_code=404) from exc
        except stripe.StripeError as exc:
            raise PaymentProcessorError(str(exc.user_message or exc)) from exc
        return _intent_summary(intent)

    def confirm_payment(self, payment_intent_id: str) -> dict[str, Any]:
        """Read back the processor-owned status; the browser performs the actual confirmation."""
        return self.get_payment_intent(payment_intent_id)

    def parse_webhook_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if self._webhook_secret:
            if not signature:
                raise WebhookVerificationError("Missing Stripe signature header.")
            try:
                stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
            except stripe.SignatureVerificationError as exc:
                raise WebhookVerificationError("Invalid Stripe signature.") from exc
            except ValueError as exc:
                raise WebhookVerificationError("Invalid webhook payload.") from exc
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookVerificationError("Invalid webhook payload.") from exc
        if not isinstance(event, dict):
            raise WebhookVerificationError("Webhook payload must be a JSON object.")
        return event

    def handle_webhook_event(self, event: Mapping[str, Any]) -> str:
        event_type = str(event.get("type") or "")
        data = event.get("data") or {}
        intent = data.get("object") if isinstance(data, Mapping) else None
        intent_id = intent.get("id") if isinstance(intent, Mapping) else None
        if event_type == "payment_intent.succeeded":
            logger.info("Payment succeeded", extra={"payment_intent_id": intent_id})
        elif event_type == "payment_intent.payment_failed":
            logger.warning("Payment failed", extra={"payment_intent_id": intent_id})
        else:
            logger.info("Unhandled Stripe event type", extra={"event_type": event_type})
        return event_type
