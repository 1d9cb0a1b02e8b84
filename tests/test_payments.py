from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest
import stripe

from shirtforge.services.payments import (
    PaymentConfigurationError,
    PaymentProcessorError,
    PaymentService,
    WebhookVerificationError,
)


def _signature(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_create_payment_intent_sends_cents_and_automatic_methods(monkeypatch):
    captured: dict = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {
            "id": "pi_123",
            "client_secret": "pi_123_secret",
            "amount": kwargs["amount"],
            "currency": kwargs["currency"],
            "status": "requires_payment_method",
        }

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    service = PaymentService(secret_key="sk_test_123", webhook_secret="")

    intent = service.create_payment_intent(amount=4998, currency="USD", metadata={"shirts": "2"})

    assert captured["amount"] == 4998
    assert captured["currency"] == "usd"
    assert captured["metadata"] == {"shirts": "2"}
    assert captured["automatic_payment_methods"] == {"enabled": True}
    assert intent == {
        "id": "pi_123",
        "client_secret": "pi_123_secret",
        "amount": 4998,
        "currency": "usd",
        "status": "requires_payment_method",
    }


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_are_rejected(amount):
    service = PaymentService(secret_key="sk_test_123", webhook_secret="")

    with pytest.raises(ValueError, match="Valid amount is required"):
        service.create_payment_intent(amount=amount)


def test_amount_above_ceiling_is_rejected():
    service = PaymentService(secret_key="sk_test_123", webhook_secret="")

    with pytest.raises(ValueError, match="exceeds"):
        service.create_payment_intent(amount=1_000_001)


def test_missing_secret_key_is_a_configuration_error():
    service = PaymentService(secret_key="", webhook_secret="")

    with pytest.raises(PaymentConfigurationError, match="Stripe not configured"):
        service.create_payment_intent(amount=2499)


def test_stripe_errors_become_processor_errors(monkeypatch):
    def fake_create(**kwargs):
        raise stripe.CardError("Your card was declined.", param=None, code="card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    service = PaymentService(secret_key="sk_test_123", webhook_secret="")

    with pytest.raises(PaymentProcessorError, match="declined"):
        service.create_payment_intent(amount=2499)


def test_confirm_payment_reports_processor_status(monkeypatch):
    def fake_retrieve(payment_intent_id):
        return {"id": payment_intent_id, "amount": 2499, "currency": "usd", "status": "succeeded"}

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)
    service = PaymentService(secret_key="sk_test_123", webhook_secret="")

    assert service.confirm_payment("pi_1")["status"] == "succeeded"


def test_webhook_without_secret_trusts_raw_body():
    service = PaymentService(secret_key="sk_test_123", webhook_secret="")
    payload = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}).encode()

    event = service.parse_webhook_event(payload, None)

    assert service.handle_webhook_event(event) == "payment_intent.succeeded"


def test_webhook_with_secret_requires_a_valid_signature():
    service = PaymentService(secret_key="sk_test_123", webhook_secret="whsec_test")
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.payment_failed", "data": {"object": {}}}).encode()

    with pytest.raises(WebhookVerificationError, match="Invalid Stripe signature"):
        service.parse_webhook_event(payload, "t=1,v1=deadbeef")
    with pytest.raises(WebhookVerificationError, match="Missing"):
        service.parse_webhook_event(payload, None)

    event = service.parse_webhook_event(payload, _signature(payload, "whsec_test"))
    assert event["type"] == "payment_intent.payment_failed"
