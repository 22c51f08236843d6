# Overview: Flask API routes for checkout return URLs and payment webhooks.

"""
Payment API Routes

The hosted checkout redirects the customer back to the storefront, which
calls /success or /cancel with the checkout session id. The gateway also
posts signed events to /api/webhook. Either path may arrive first; the
reconciliation service makes them converge.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError, error_response, server_error_response
from ..decorators import optional_auth
from ..services import reconciliation_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payment")
webhook_bp = Blueprint("webhook", __name__, url_prefix="/api/webhook")


def _session_id() -> str | None:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    return request.args.get("session_id") or payload.get("session_id") or payload.get("sessionId")


@payments_bp.route("/success", methods=["GET", "POST"])
@optional_auth
def payment_success_route():
    """
    Customer returned from a completed checkout.

    Query params / body:
    - session_id: Checkout session id
    """
    try:
        data = reconciliation_service.verify_payment_success(_session_id(), g.current_user)
        return jsonify({"success": True, "data": data}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return server_error_response()


@payments_bp.route("/cancel", methods=["GET", "POST"])
@optional_auth
def payment_cancel_route():
    """Customer abandoned the checkout; a still-Pending order is cancelled."""
    try:
        data = reconciliation_service.verify_payment_cancelled(_session_id(), g.current_user)
        return jsonify({"success": True, "data": data}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment cancellation")
        return server_error_response()


@webhook_bp.post("")
def webhook_route():
    """
    Gateway event receiver.

    The raw body is verified against the Stripe-Signature header before
    anything is parsed.

    Returns:
        200: Event applied, ignored or acknowledged
        400: Bad signature or inconsistent event
    """
    try:
        data = reconciliation_service.handle_webhook(
            request.get_data(),
            request.headers.get("Stripe-Signature"),
        )
        return jsonify(data), 200
    except StorefrontError as e:
        current_app.logger.warning("Webhook rejected: %s", e.message)
        return error_response(e)
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return server_error_response()
