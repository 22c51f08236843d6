# Overview: Flask API routes for variant stock; read, adjust and inspect backorders.

from flask import Blueprint, request, jsonify, current_app

from ..errors import StorefrontError, error_response, server_error_response
from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_SUPERADMIN
from ..services import stock_service
from ..validation import StockChangeRequest


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/variant")


@inventory_bp.get("/<int:variant_id>/stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def get_stock_route(variant_id: int):
    try:
        variant = stock_service.get_stock(variant_id)
        return jsonify({"success": True, "data": variant.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock for variant %s", variant_id)
        return server_error_response()


@inventory_bp.patch("/<int:variant_id>/stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def update_stock_route(variant_id: int):
    """
    Apply a stock correction or receipt.

    Request body:
    {
        "qnt": 10  (negative to write stock down)
    }

    Positive changes are allocated to waiting backorders, oldest first.

    Returns:
        200: Stock updated (with the lines allocated from backorder)
        400: Zero change or stock would go below 0
        404: Unknown variant
    """
    try:
        req = StockChangeRequest.from_json(request.get_json(silent=True))
        variant, allocated = stock_service.receive_stock(variant_id, req.quantity_change)
        current_app.logger.info(
            "Stock for variant %s changed by %s (now %s, %s backorder lines allocated)",
            variant_id, req.quantity_change, variant.stock_qnt, len(allocated),
        )
        return jsonify({
            "success": True,
            "data": {
                "variant": variant.to_dict(),
                "allocated_lines": [line.to_dict() for line in allocated],
            },
        }), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update stock for variant %s", variant_id)
        return server_error_response()


@inventory_bp.get("/<int:variant_id>/backorders")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SUPERADMIN)
def list_backorders_route(variant_id: int):
    try:
        stock_service.get_stock(variant_id)
        lines = stock_service.list_backordered_lines(variant_id)
        return jsonify({"success": True, "data": [line.to_dict() for line in lines]}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list backorders for variant %s", variant_id)
        return server_error_response()
