# Overview: Closed set of domain errors and their JSON error responses.

"""
Storefront error taxonomy.

Every business-rule failure raised by the service layer is one of the
classes below. Each carries the HTTP status it maps to, so routes can turn
any of them into the same ``{"success": false, "message": ...}`` body.

Database faults are NOT part of this taxonomy: they propagate as-is, the
session is rolled back, and the route answers with a generic 500.
"""

from flask import jsonify


class StorefrontError(Exception):
    """Base class for errors surfaced directly to API callers."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(StorefrontError):
    """Missing/invalid fields, invalid transition, disallowed combination."""
    status_code = 400


class AuthenticationError(StorefrontError):
    """Missing, invalid, expired or revoked bearer token."""
    status_code = 401


class ForbiddenError(StorefrontError):
    """Caller may not act on this resource."""
    status_code = 403


class NotFoundError(StorefrontError):
    status_code = 404


class InsufficientStockError(StorefrontError):
    """A line's demand exceeds available stock at shipping time."""
    status_code = 400


class UnpaidOrderError(StorefrontError):
    """Delivery cannot complete while the payment is not Paid."""
    status_code = 400


class GatewaySignatureError(StorefrontError):
    """Webhook payload failed signature verification."""
    status_code = 400


class PaymentGatewayError(StorefrontError):
    """The payment gateway could not be reached or refused the request."""
    status_code = 502


def error_response(exc: StorefrontError):
    body = {"success": False, "message": exc.message}
    if exc.details:
        body["details"] = exc.details
    return jsonify(body), exc.status_code


def server_error_response():
    return jsonify({"success": False, "message": "Internal server error"}), 500
