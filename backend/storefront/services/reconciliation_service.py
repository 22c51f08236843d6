# Overview: Payment reconciliation; return-URL checks and gateway webhooks.

"""
Payment Reconciliation

Two independent triggers report the outcome of a card checkout:
- the customer's browser returning to the success/cancel URL, and
- the gateway's signed webhook (at-least-once, possibly out of order).

Both converge on confirm_payment() / fail_payment(), which only act on a
payment that is still Pending. That state guard, together with restock()
only returning shipped lines, makes replayed or late events harmless.

Webhook events that reference an order or payment we do not know are
logged and acknowledged, never treated as errors, so the gateway stops
retrying them.
"""

from flask import current_app

from ..extensions import db
from ..errors import ForbiddenError, GatewaySignatureError, ValidationError
from ..models import Order, Payment, User
from ..models.orders import (
    CANCEL_REASON_EXPIRED,
    CANCEL_REASON_PAYMENT_FAILED,
    CANCEL_REASON_USER,
    ORDER_CONFIRMED,
    ORDER_PENDING,
    ORDER_TERMINAL_STATUSES,
    PAYMENT_CANCELLED,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
)
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .gateway import get_gateway
from .order_service import apply_cancellation, get_order, get_order_details, get_order_for_user


EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"
EVENT_CHECKOUT_EXPIRED = "checkout.session.expired"

FAILURE_REASONS = {
    EVENT_PAYMENT_FAILED: CANCEL_REASON_PAYMENT_FAILED,
    EVENT_CHECKOUT_EXPIRED: CANCEL_REASON_EXPIRED,
}

GATEWAY_STATUS_PAID = "paid"


# =============================================================================
# SHARED TRANSITIONS
# =============================================================================

def confirm_payment(order: Order, payment: Payment, payment_intent_id: str | None = None) -> bool:
    """
    Pending payment -> Paid; Pending order -> Confirmed.

    An order that already moved on (e.g. shipped cash-free before the
    webhook arrived) keeps its status. Returns False if nothing changed.
    """
    if payment.status != PAYMENT_PENDING:
        return False

    payment.status = PAYMENT_PAID
    payment.paid_at = utcnow()
    if payment_intent_id:
        payment.payment_intent_id = payment_intent_id

    if order.status == ORDER_PENDING:
        order.status = ORDER_CONFIRMED

    current_app.logger.info("Payment %s for order %s marked Paid", payment.id, order.id)
    return True


def fail_payment(order: Order, payment: Payment | None, reason: str) -> bool:
    """
    Cancel an open order whose payment did not go through, and restock.

    Returns False (no change) if the order is already terminal or its
    payment is no longer Pending.
    """
    if order.status in ORDER_TERMINAL_STATUSES:
        return False
    if payment is not None and payment.status != PAYMENT_PENDING:
        return False

    apply_cancellation(order, reason, PAYMENT_FAILED)
    return True


def _order_id_from_metadata(metadata: dict | None) -> int | None:
    raw = (metadata or {}).get("orderId")
    if raw is None:
        return None
    try:
        return int(str(raw))
    except ValueError:
        return None


def _ensure_session_owner(order: Order, user: User | None) -> None:
    if user is not None and not user.is_admin and order.user_id != user.id:
        raise ForbiddenError("Unauthorized")


# =============================================================================
# RETURN-URL RECONCILIATION
# =============================================================================

def verify_payment_success(session_id: str | None, user: User | None = None) -> dict:
    """
    Customer returned from checkout. Reports the gateway's payment status
    and, when it says paid, applies the same confirmation as the webhook.

    Raises:
        ValidationError: no session id, or the session carries no order
        NotFoundError: order does not exist
        ForbiddenError: order belongs to another user
    """
    if not session_id:
        raise ValidationError("Session ID is required")

    session = get_gateway().retrieve_session(session_id)
    order_id = _order_id_from_metadata(session.metadata)
    if order_id is None:
        raise ValidationError("Invalid session - no order info")

    def _op():
        order = get_order(order_id, lock=True)
        _ensure_session_owner(order, user)

        if session.payment_status == GATEWAY_STATUS_PAID:
            payment = lock_for_update(db.session.query(Payment).filter_by(order_id=order.id)).first()
            if payment:
                confirm_payment(order, payment, session.payment_intent_id)

        db.session.commit()
        return {
            "payment_status": session.payment_status,
            "order": get_order_details(order),
        }

    return run_with_retry(_op)


def verify_payment_cancelled(session_id: str | None, user: User | None = None) -> dict:
    """
    Customer abandoned checkout. A still-Pending order is cancelled
    (UserCancelled), its payment Cancelled and its stock restocked.
    """
    if not session_id:
        raise ValidationError("Session ID is required")

    session = get_gateway().retrieve_session(session_id)
    order_id = _order_id_from_metadata(session.metadata)
    if order_id is None:
        return {"message": "No order linked to this session"}

    def _op():
        order = get_order(order_id, lock=True)
        _ensure_session_owner(order, user)

        if session.payment_status == GATEWAY_STATUS_PAID:
            return {"message": "Payment already completed", "order_id": order.id, "status": order.status}

        if order.status == ORDER_PENDING:
            apply_cancellation(order, CANCEL_REASON_USER, PAYMENT_CANCELLED)
            db.session.commit()

        return {"message": "Order cancelled successfully", "order_id": order.id, "status": order.status}

    return run_with_retry(_op)


def get_payment_status(order_id: int, user: User) -> dict:
    order = get_order_for_user(order_id, user)
    payment = order.payment
    return {
        "order_status": order.status,
        "payment_status": payment.status if payment else "Not Found",
        "order": get_order_details(order),
    }


# =============================================================================
# WEBHOOK
# =============================================================================

def handle_webhook(payload: bytes, signature: str | None) -> dict:
    """
    Verify and apply one gateway event. All mutations for the event commit
    together.

    Raises:
        GatewaySignatureError: missing or bad signature (nothing is read
            or written)
        ValidationError: completed-session metadata names a different user
    """
    if not signature:
        raise GatewaySignatureError("Missing stripe signature")

    event = get_gateway().construct_event(payload, signature)
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    current_app.logger.info("Received webhook: %s (%s)", event_type, event.get("id"))

    if event_type == EVENT_CHECKOUT_COMPLETED:
        return _handle_checkout_completed(obj)
    if event_type in FAILURE_REASONS:
        return _handle_payment_failure(obj, FAILURE_REASONS[event_type])

    current_app.logger.info("Ignoring event type: %s", event_type)
    return {"received": True, "processed": False}


def _handle_checkout_completed(obj: dict) -> dict:
    metadata = obj.get("metadata") or {}
    order_id = _order_id_from_metadata(metadata)
    user_id = metadata.get("userId")
    if order_id is None or user_id is None:
        current_app.logger.warning("Missing metadata in session %s", obj.get("id"))
        return {"received": True, "processed": False}

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            current_app.logger.warning("Order %s not found, skipping", order_id)
            return {"received": True, "processed": False}

        if str(order.user_id) != str(user_id):
            raise ValidationError("Order user mismatch")

        payment = lock_for_update(db.session.query(Payment).filter_by(order_id=order.id)).first()
        if not payment:
            current_app.logger.warning("Payment record for order %s not found", order_id)
            return {"received": True, "processed": False}

        changed = confirm_payment(order, payment, obj.get("payment_intent"))
        db.session.commit()
        return {"received": True, "processed": changed, "order": get_order_details(order)}

    return run_with_retry(_op)


def _handle_payment_failure(obj: dict, reason: str) -> dict:
    order_id = _order_id_from_metadata(obj.get("metadata"))
    if order_id is None:
        current_app.logger.warning("No orderId in metadata of %s, skipping", obj.get("id"))
        return {"received": True, "processed": False}

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            current_app.logger.warning("Order %s not found, skipping", order_id)
            return {"received": True, "processed": False}

        payment = lock_for_update(db.session.query(Payment).filter_by(order_id=order.id)).first()
        changed = fail_payment(order, payment, reason)
        db.session.commit()
        return {"received": True, "processed": changed, "order_id": order.id, "status": order.status}

    return run_with_retry(_op)
