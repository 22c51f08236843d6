# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

- Customers price and place orders, follow them and cancel them while
  they are still Pending.
- Card orders are handed to the hosted checkout right after they are
  written; the checkout session id is stored on the payment.
- Admins list every order and advance Store Pickup orders (which have no
  delivery record).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError, PaymentGatewayError, error_response, server_error_response
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_SUPERADMIN
from ..models.orders import PAYMENT_METHOD_CARD
from ..services import order_service, pricing_service, reconciliation_service
from ..services.gateway import CheckoutLineItem, get_gateway
from ..services.pricing_service import PricedOrder
from ..validation import CreateOrderRequest, StatusUpdateRequest, coerce_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/order")


def _checkout_line_items(priced: PricedOrder) -> list[CheckoutLineItem]:
    items = [
        CheckoutLineItem(
            name=line.variant_name or f"Item {line.variant_id}",
            unit_amount_cents=line.unit_price_cents,
            quantity=line.quantity,
        )
        for line in priced.ordered_items
    ]
    if priced.delivery_charge_cents > 0:
        items.append(CheckoutLineItem(
            name="Delivery charge",
            unit_amount_cents=priced.delivery_charge_cents,
            quantity=1,
        ))
    return items


def _start_checkout(order, priced: PricedOrder, user_id: int):
    frontend_url = current_app.config["FRONTEND_URL"].rstrip("/")
    session = get_gateway().create_checkout_session(
        line_items=_checkout_line_items(priced),
        success_url=f"{frontend_url}/order/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{frontend_url}/order/cancel?session_id={{CHECKOUT_SESSION_ID}}",
        metadata={"orderId": str(order.id), "userId": str(user_id)},
    )
    order_service.attach_checkout_session(order.id, session.session_id)
    return session


# =============================================================================
# ORDER CREATION
# =============================================================================

@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Price and place an order.

    Request body:
    {
        "items": [{"variantId": 1, "quantity": 2}],
        "deliveryMode": "Standard Delivery" | "Store Pickup",
        "paymentMethod": "Card" | "CashOnDelivery",
        "deliveryAddressId": 3  (Standard Delivery; default address otherwise)
    }

    Returns:
        201: Order created (Card orders include the checkout URL)
        400: Invalid input
        404: Unknown item or address
        502: Checkout could not be started (order is cancelled)
    """
    user = g.current_user
    order = None
    try:
        req = CreateOrderRequest.from_json(request.get_json(silent=True))

        priced = pricing_service.price_order(
            items=req.items,
            delivery_mode=req.delivery_mode,
            payment_method=req.payment_method,
            address_id=req.delivery_address_id,
            user_id=user.id,
        )
        order = order_service.create_order(priced, user.id, req.delivery_mode, req.payment_method)

        data = {}
        if req.payment_method == PAYMENT_METHOD_CARD:
            session = _start_checkout(order, priced, user.id)
            data["checkout_url"] = session.url
            data["session_id"] = session.session_id
        data["order"] = order_service.get_order_details(order)

        return jsonify({"success": True, "data": data}), 201

    except PaymentGatewayError as e:
        if order is not None:
            current_app.logger.warning("Checkout failed for order %s: %s", order.id, e.message)
            try:
                order_service.abandon_order(order.id)
            except Exception:
                current_app.logger.exception("Failed to cancel order %s after checkout failure", order.id)
        return error_response(e)
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return server_error_response()


# =============================================================================
# ORDER QUERIES
# =============================================================================

@orders_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def list_orders_route():
    """
    List orders, newest first.

    Query params:
    - status: Filter by order status
    - limit: Max results
    """
    try:
        status = request.args.get("status")
        limit = request.args.get("limit")
        limit = coerce_int(limit, "limit", minimum=1) if limit is not None else None

        orders = order_service.list_orders(status=status, limit=limit)
        return jsonify({"success": True, "data": [o.to_dict() for o in orders]}), 200

    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return server_error_response()


@orders_bp.get("/user")
@require_auth
def list_user_orders_route():
    try:
        orders = order_service.list_user_orders(g.current_user.id)
        return jsonify({"success": True, "data": [o.to_dict() for o in orders]}), 200
    except Exception:
        current_app.logger.exception("Failed to list user orders")
        return server_error_response()


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_for_user(order_id, g.current_user)
        return jsonify({"success": True, "data": order_service.get_order_details(order)}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_id)
        return server_error_response()


@orders_bp.get("/<int:order_id>/status")
@require_auth
def get_order_status_route(order_id: int):
    try:
        data = order_service.get_order_status(order_id, g.current_user)
        return jsonify({"success": True, "data": data}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load status for order %s", order_id)
        return server_error_response()


@orders_bp.get("/<int:order_id>/payment-status")
@require_auth
def get_payment_status_route(order_id: int):
    try:
        data = reconciliation_service.get_payment_status(order_id, g.current_user)
        return jsonify({"success": True, "data": data}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load payment status for order %s", order_id)
        return server_error_response()


# =============================================================================
# ORDER LIFECYCLE
# =============================================================================

@orders_bp.patch("/cancel/<int:order_id>")
@require_auth
def cancel_order_route(order_id: int):
    """
    Cancel a Pending order. Stock shipped for it is returned.

    Returns:
        200: Order cancelled
        400: Order is no longer Pending
        403: Not the caller's order
        404: Unknown order
    """
    try:
        order = order_service.cancel_order(order_id, g.current_user)
        return jsonify({
            "success": True,
            "message": "Order cancelled successfully",
            "data": order_service.get_order_details(order),
        }), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return server_error_response()


@orders_bp.patch("/update/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def update_pickup_order_route(order_id: int):
    """
    Advance a Store Pickup order.

    Request body:
    {
        "newStatus": "Shipped" | "Delivered"
    }
    """
    try:
        req = StatusUpdateRequest.from_json(request.get_json(silent=True))
        order = order_service.advance_pickup_order(order_id, req.new_status)
        return jsonify({"success": True, "data": order_service.get_order_details(order)}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order %s", order_id)
        return server_error_response()
