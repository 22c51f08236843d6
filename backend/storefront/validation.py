# Overview: Typed request inputs, validated at the HTTP boundary.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import ValidationError
from .models.orders import VALID_DELIVERY_MODES, VALID_PAYMENT_METHODS


def _require_dict(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return result


def _optional_str(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class OrderItemInput:
    variant_id: int
    quantity: int


@dataclass(frozen=True)
class CreateOrderRequest:
    items: tuple[OrderItemInput, ...]
    delivery_mode: str
    payment_method: str
    delivery_address_id: int | None = None

    @classmethod
    def from_json(cls, payload: Any) -> "CreateOrderRequest":
        payload = _require_dict(payload)

        raw_items = payload.get("items")
        if not raw_items or not isinstance(raw_items, list):
            raise ValidationError("Ordered items are required")

        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                raise ValidationError("Invalid item data")
            if raw.get("variantId") is None or raw.get("quantity") is None:
                raise ValidationError("Invalid item data")
            items.append(OrderItemInput(
                variant_id=coerce_int(raw.get("variantId"), "variantId", minimum=1),
                quantity=coerce_int(raw.get("quantity"), "quantity", minimum=1),
            ))

        delivery_mode = _optional_str(payload.get("deliveryMode"), "deliveryMode")
        payment_method = _optional_str(payload.get("paymentMethod"), "paymentMethod")
        if not delivery_mode or not payment_method:
            raise ValidationError("Delivery mode and payment method are required")
        if delivery_mode not in VALID_DELIVERY_MODES:
            raise ValidationError(f"Invalid delivery mode: {delivery_mode}")
        if payment_method not in VALID_PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {payment_method}")

        address_id = payload.get("deliveryAddressId")
        return cls(
            items=tuple(items),
            delivery_mode=delivery_mode,
            payment_method=payment_method,
            delivery_address_id=coerce_int(address_id, "deliveryAddressId", minimum=1) if address_id is not None else None,
        )


@dataclass(frozen=True)
class AssignStaffRequest:
    staff_id: int

    @classmethod
    def from_json(cls, payload: Any) -> "AssignStaffRequest":
        payload = _require_dict(payload)
        if payload.get("staffId") is None:
            raise ValidationError("staffId is required")
        return cls(staff_id=coerce_int(payload["staffId"], "staffId", minimum=1))


@dataclass(frozen=True)
class StatusUpdateRequest:
    new_status: str

    @classmethod
    def from_json(cls, payload: Any) -> "StatusUpdateRequest":
        payload = _require_dict(payload)
        status = _optional_str(payload.get("newStatus") or payload.get("status"), "newStatus")
        if not status:
            raise ValidationError("newStatus is required")
        return cls(new_status=status)


@dataclass(frozen=True)
class CodPaymentRequest:
    amount_cents: int

    @classmethod
    def from_json(cls, payload: Any) -> "CodPaymentRequest":
        payload = _require_dict(payload)
        if payload.get("amountCents") is None:
            raise ValidationError("amountCents is required")
        return cls(amount_cents=coerce_int(payload["amountCents"], "amountCents", minimum=0))


@dataclass(frozen=True)
class StockChangeRequest:
    quantity_change: int

    @classmethod
    def from_json(cls, payload: Any) -> "StockChangeRequest":
        payload = _require_dict(payload)
        if payload.get("qnt") is None:
            raise ValidationError("qnt is required")
        return cls(quantity_change=coerce_int(payload["qnt"], "qnt"))
