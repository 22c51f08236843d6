# Overview: Flask API routes for deliveries; staff assignment, status updates and COD collection.

"""
Delivery API Routes

- Admins list deliveries and assign delivery staff.
- Delivery staff (or admins) move a delivery forward; shipping takes the
  order's stock off the shelf, delivering requires a paid order.
- Delivery staff record cash collected for Cash on Delivery orders.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError, error_response, server_error_response
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_DELIVERY_STAFF, ROLE_SUPERADMIN
from ..services import delivery_service
from ..validation import AssignStaffRequest, CodPaymentRequest, StatusUpdateRequest


delivery_bp = Blueprint("delivery", __name__, url_prefix="/api/delivery")


@delivery_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def list_deliveries_route():
    """
    List deliveries, newest first.

    Query params:
    - status: Filter by delivery status
    """
    try:
        deliveries = delivery_service.list_deliveries(status=request.args.get("status"))
        return jsonify({"success": True, "data": [d.to_dict() for d in deliveries]}), 200
    except Exception:
        current_app.logger.exception("Failed to list deliveries")
        return server_error_response()


@delivery_bp.get("/assigned")
@require_auth
@require_role(ROLE_DELIVERY_STAFF)
def list_assigned_deliveries_route():
    try:
        deliveries = delivery_service.list_staff_deliveries(g.current_user.id)
        return jsonify({"success": True, "data": [d.to_dict() for d in deliveries]}), 200
    except Exception:
        current_app.logger.exception("Failed to list assigned deliveries")
        return server_error_response()


@delivery_bp.patch("/<int:delivery_id>/assignStaff")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def assign_staff_route(delivery_id: int):
    """
    Assign delivery staff; the delivery becomes Confirmed.

    Request body:
    {
        "staffId": 7
    }
    """
    try:
        req = AssignStaffRequest.from_json(request.get_json(silent=True))
        delivery = delivery_service.assign_staff(delivery_id, req.staff_id)
        return jsonify({"success": True, "data": delivery.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign staff to delivery %s", delivery_id)
        return server_error_response()


@delivery_bp.patch("/<int:delivery_id>/status")
@require_auth
@require_role(ROLE_DELIVERY_STAFF, ROLE_ADMIN, ROLE_SUPERADMIN)
def update_delivery_status_route(delivery_id: int):
    """
    Advance a delivery.

    Request body:
    {
        "newStatus": "Shipped" | "Delivered" | "Failed"
    }

    Returns:
        200: Delivery updated
        400: Invalid transition, stock short at shipping, or order unpaid
        403: Delivery assigned to someone else
        404: Unknown delivery
    """
    try:
        req = StatusUpdateRequest.from_json(request.get_json(silent=True))
        delivery = delivery_service.update_status(delivery_id, req.new_status, g.current_user)
        return jsonify({"success": True, "data": delivery.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update delivery %s", delivery_id)
        return server_error_response()


@delivery_bp.post("/<int:delivery_id>/cod-payment")
@require_auth
@require_role(ROLE_DELIVERY_STAFF)
def record_cod_payment_route(delivery_id: int):
    """
    Record cash collected at the door.

    Request body:
    {
        "amountCents": 12598
    }
    """
    try:
        req = CodPaymentRequest.from_json(request.get_json(silent=True))
        payment = delivery_service.record_cash_on_delivery_payment(delivery_id, req.amount_cents, g.current_user)
        return jsonify({"success": True, "data": payment.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record COD payment for delivery %s", delivery_id)
        return server_error_response()
