# Overview: Payment gateway adapter (hosted checkout, session lookup, webhook verification).

"""
Payment Gateway

The order core talks to the card processor only through PaymentGateway.
StripeGateway is the production implementation; the instance is built once
in create_app() and stored in app.extensions["payment_gateway"], so tests
can hand in their own.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import stripe
from flask import current_app

from ..errors import GatewaySignatureError, PaymentGatewayError


@dataclass(frozen=True)
class CheckoutLineItem:
    name: str
    unit_amount_cents: int
    quantity: int


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(frozen=True)
class GatewaySession:
    session_id: str
    payment_status: str
    metadata: dict = field(default_factory=dict)
    payment_intent_id: str | None = None


def _plain_dict(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class PaymentGateway:
    """Contract consumed by the order core."""

    def create_checkout_session(
        self,
        line_items: list[CheckoutLineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> CheckoutSession:
        raise NotImplementedError

    def retrieve_session(self, session_id: str) -> GatewaySession:
        raise NotImplementedError

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify a webhook payload and return the decoded event."""
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    def __init__(self, secret_key: str, webhook_secret: str, currency: str = "usd"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    @classmethod
    def from_config(cls, config) -> "StripeGateway":
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY", ""),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
            currency=config.get("CURRENCY", "usd"),
        )

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata):
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "unit_amount": item.unit_amount_cents,
                            "product_data": {"name": item.name},
                        },
                        "quantity": item.quantity,
                    }
                    for item in line_items
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                # payment_intent.* events carry the intent's own metadata
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as exc:
            current_app.logger.exception("Stripe checkout session creation failed")
            raise PaymentGatewayError("Payment gateway unavailable") from exc

        return CheckoutSession(session_id=session.id, url=session.url)

    def retrieve_session(self, session_id):
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        except stripe.StripeError as exc:
            current_app.logger.exception("Stripe session lookup failed for %s", session_id)
            raise PaymentGatewayError("Payment gateway unavailable") from exc

        intent = getattr(session, "payment_intent", None)
        if intent is not None and not isinstance(intent, str):
            intent = getattr(intent, "id", None)

        return GatewaySession(
            session_id=session.id,
            payment_status=getattr(session, "payment_status", None) or "unpaid",
            metadata=_plain_dict(getattr(session, "metadata", None)),
            payment_intent_id=intent,
        )

    def construct_event(self, payload, signature):
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as exc:
            raise GatewaySignatureError("Webhook payload is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            current_app.logger.warning("Webhook verification failed: %s", exc)
            raise GatewaySignatureError("Webhook signature verification failed") from exc

        try:
            return json.loads(text)
        except ValueError as exc:
            raise GatewaySignatureError("Webhook payload is not valid JSON") from exc


def get_gateway() -> PaymentGateway:
    return current_app.extensions["payment_gateway"]
