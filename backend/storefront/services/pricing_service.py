# Overview: Order pricing engine; prices a cart, computes delivery charge and ETA.

"""
Order Pricing Engine

Turns requested (variant, quantity) pairs into a priced order without
writing anything. Prices and stock are read at call time; the resulting
PricedOrder is what the order writer persists.

BACKORDER POLICY: quantities above free stock (stock_qnt minus units already
promised to open orders) are accepted and the line is flagged backordered
(the ETA is pushed out). Stock is only enforced when the order ships, where
a shortfall fails the shipment.

DELIVERY CHARGE (cents):
    Store Pickup                     0
    Main city   subtotal <= 100.00   5.99
                subtotal <= 500.00   3.99
                above                free
    Other city  subtotal <= 100.00   9.99
                subtotal <= 500.00   6.99
                above                3.99
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Address, City, ProductVariant
from ..models.orders import (
    DELIVERY_MODE_PICKUP,
    DELIVERY_MODE_STANDARD,
    PAYMENT_METHOD_COD,
    VALID_DELIVERY_MODES,
    VALID_PAYMENT_METHODS,
)
from ..validation import OrderItemInput
from . import stock_service
from storefront.time_utils import add_days, utcnow


SMALL_ORDER_LIMIT_CENTS = 10_000
MEDIUM_ORDER_LIMIT_CENTS = 50_000

MAIN_CITY_CHARGES = (599, 399, 0)
OTHER_CITY_CHARGES = (999, 699, 399)


@dataclass(frozen=True)
class PricedLine:
    variant_id: int
    product_id: int
    variant_name: str | None
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    backordered: bool


@dataclass(frozen=True)
class PricedOrder:
    total_price_cents: int
    delivery_charge_cents: int
    delivery_date: datetime
    final_address: str | None
    ordered_items: list[PricedLine] = field(default_factory=list)

    @property
    def has_backorders(self) -> bool:
        return any(line.backordered for line in self.ordered_items)

    @property
    def amount_due_cents(self) -> int:
        return self.total_price_cents + self.delivery_charge_cents


def get_city_classification(city_id: int) -> dict:
    city = db.session.get(City, city_id)
    if not city:
        raise NotFoundError("City not found")
    return {"is_main_city": bool(city.is_main_city)}


def calculate_delivery_charge(subtotal_cents: int, delivery_mode: str, is_main_city: bool) -> int:
    if delivery_mode == DELIVERY_MODE_PICKUP:
        return 0

    small, medium, large = MAIN_CITY_CHARGES if is_main_city else OTHER_CITY_CHARGES
    if subtotal_cents <= SMALL_ORDER_LIMIT_CENTS:
        return small
    if subtotal_cents <= MEDIUM_ORDER_LIMIT_CENTS:
        return medium
    return large


def estimate_delivery_date(
    delivery_mode: str,
    is_main_city: bool,
    has_backorders: bool,
    now: datetime | None = None,
) -> datetime:
    config = current_app.config
    if delivery_mode == DELIVERY_MODE_PICKUP:
        days = config["PICKUP_READY_DAYS"]
    elif is_main_city:
        days = config["DELIVERY_DAYS_MAIN_CITY"]
    else:
        days = config["DELIVERY_DAYS_OTHER_CITY"]

    if has_backorders:
        days += config["BACKORDER_EXTRA_DAYS"]

    return add_days(now or utcnow(), days)


def _resolve_address(address_id: int | None, user_id: int) -> Address:
    if address_id is None:
        address = db.session.query(Address).filter_by(user_id=user_id, is_default=True).first()
        if not address:
            raise ValidationError("Delivery address is required for Standard Delivery")
        return address

    address = db.session.get(Address, address_id)
    if not address or address.user_id != user_id:
        raise ValidationError("Invalid delivery address")
    return address


def price_order(
    items: Sequence[OrderItemInput],
    delivery_mode: str,
    payment_method: str,
    address_id: int | None,
    user_id: int,
    now: datetime | None = None,
) -> PricedOrder:
    """
    Price a cart.

    Raises:
        ValidationError: empty cart, missing/unknown mode or method,
            Store Pickup with cash on delivery, bad address
        NotFoundError: a variant does not exist
    """
    if not items:
        raise ValidationError("No items provided")
    if not delivery_mode or not payment_method:
        raise ValidationError("Delivery mode and payment method are required")
    if delivery_mode not in VALID_DELIVERY_MODES:
        raise ValidationError(f"Invalid delivery mode: {delivery_mode}")
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")
    if delivery_mode == DELIVERY_MODE_PICKUP and payment_method == PAYMENT_METHOD_COD:
        raise ValidationError("Invalid payment method")

    lines: list[PricedLine] = []
    subtotal = 0
    free_stock: dict[int, int] = {}
    for item in items:
        if item.quantity <= 0:
            raise ValidationError("Invalid item data")

        variant = db.session.get(ProductVariant, item.variant_id)
        if not variant:
            raise NotFoundError("Item not found")

        if variant.id not in free_stock:
            free_stock[variant.id] = variant.stock_qnt - stock_service.reserved_quantity(variant.id)
        backordered = free_stock[variant.id] < item.quantity
        if not backordered:
            free_stock[variant.id] -= item.quantity

        line_total = variant.price_cents * item.quantity
        subtotal += line_total
        lines.append(PricedLine(
            variant_id=variant.id,
            product_id=variant.product_id,
            variant_name=variant.variant_name,
            quantity=item.quantity,
            unit_price_cents=variant.price_cents,
            total_price_cents=line_total,
            backordered=backordered,
        ))

    is_main_city = False
    final_address = None
    if delivery_mode == DELIVERY_MODE_STANDARD:
        address = _resolve_address(address_id, user_id)
        is_main_city = get_city_classification(address.city_id)["is_main_city"]
        final_address = address.formatted()

    has_backorders = any(line.backordered for line in lines)
    return PricedOrder(
        total_price_cents=subtotal,
        delivery_charge_cents=calculate_delivery_charge(subtotal, delivery_mode, is_main_city),
        delivery_date=estimate_delivery_date(delivery_mode, is_main_city, has_backorders, now=now),
        final_address=final_address,
        ordered_items=lines,
    )
