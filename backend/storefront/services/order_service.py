# Overview: Order/payment writer plus order queries, cancellation and pickup flow.

"""
Order Service

WHY: An order is only meaningful together with its lines, its payment and
(for Standard Delivery) its delivery record. They are written in ONE
transaction so a caller never sees a partial order.

DESIGN PRINCIPLES:
- Exactly one Payment per Order, created Pending with
  amount = lines total + delivery charge.
- No stock is touched at creation; stock leaves the shelf when the order
  ships (delivery_service.ship_order_lines).
- The writer never talks to the payment gateway; the HTTP layer opens the
  hosted checkout and records its session id afterwards.
- Cancellation always runs the compensating restock, which is a no-op
  for orders that never shipped.
"""

from flask import current_app

from ..extensions import db
from ..errors import ForbiddenError, NotFoundError, UnpaidOrderError, ValidationError
from ..models import Delivery, Order, OrderLine, Payment, User
from ..models.orders import (
    CANCEL_REASON_PAYMENT_FAILED,
    CANCEL_REASON_USER,
    DELIVERY_MODE_PICKUP,
    DELIVERY_MODE_STANDARD,
    DELIVERY_PENDING,
    DELIVERY_RETURNED,
    DELIVERY_TERMINAL_STATUSES,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_SHIPPED,
    PAYMENT_CANCELLED,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
)
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .pricing_service import PricedOrder
from . import stock_service


ORDER_FLOW = [ORDER_PENDING, ORDER_CONFIRMED, ORDER_SHIPPED, ORDER_DELIVERED]


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order(
    priced: PricedOrder,
    user_id: int,
    delivery_mode: str,
    payment_method: str,
) -> Order:
    """
    Persist a priced order with its lines, payment and delivery.

    Returns:
        The committed Order

    Raises:
        ValidationError: priced order has no lines
        Any database error, after the whole transaction is rolled back
    """
    def _op():
        if not priced.ordered_items:
            raise ValidationError("No items provided")

        order = Order(
            user_id=user_id,
            order_date=utcnow(),
            delivery_mode=delivery_mode,
            delivery_address=priced.final_address,
            estimated_delivery_date=priced.delivery_date,
            total_price_cents=priced.total_price_cents,
            delivery_charge_cents=priced.delivery_charge_cents,
            payment_method=payment_method,
            status=ORDER_PENDING,
        )
        db.session.add(order)
        db.session.flush()  # Get order ID

        for item in priced.ordered_items:
            db.session.add(OrderLine(
                order_id=order.id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                total_price_cents=item.total_price_cents,
                backordered=item.backordered,
                stock_committed=False,
            ))

        db.session.add(Payment(
            order_id=order.id,
            user_id=user_id,
            amount_cents=priced.amount_due_cents,
            payment_method=payment_method,
            status=PAYMENT_PENDING,
        ))

        if delivery_mode == DELIVERY_MODE_STANDARD:
            db.session.add(Delivery(order_id=order.id, status=DELIVERY_PENDING))

        db.session.commit()

        current_app.logger.info(
            "Order %s created for user %s (%s, %s, %s lines, backorders=%s)",
            order.id, user_id, delivery_mode, payment_method,
            len(priced.ordered_items), priced.has_backorders,
        )
        return order

    return run_with_retry(_op)


def attach_checkout_session(order_id: int, session_id: str) -> Payment:
    """Record the hosted checkout session opened for an order's payment."""
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(order_id=order_id)).first()
        if not payment:
            raise NotFoundError("Payment not found")
        payment.checkout_session_id = session_id
        db.session.commit()
        return payment

    return run_with_retry(_op)


def abandon_order(order_id: int) -> Order:
    """
    Cancel an order whose checkout could not be started.

    Used when the gateway fails right after the order was written.
    """
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if not order:
            raise NotFoundError("Order not found")
        if order.status == ORDER_PENDING:
            apply_cancellation(order, CANCEL_REASON_PAYMENT_FAILED, PAYMENT_FAILED)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def ensure_can_view(order: Order, user: User) -> None:
    if user.is_admin:
        return
    if order.user_id != user.id:
        raise ForbiddenError("Forbidden access")


def get_order_for_user(order_id: int, user: User) -> Order:
    order = get_order(order_id)
    ensure_can_view(order, user)
    return order


def get_order_details(order: Order) -> dict:
    """Order header with its lines, payment and delivery."""
    data = order.to_dict()
    data["amount_due_cents"] = order.amount_due_cents
    data["items"] = [line.to_dict() for line in order.lines]
    data["payment"] = order.payment.to_dict() if order.payment else None
    data["delivery"] = order.delivery.to_dict() if order.delivery else None
    return data


def list_orders(status: str | None = None, limit: int | None = None) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    query = query.order_by(Order.order_date.desc(), Order.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def list_user_orders(user_id: int) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=user_id)
        .order_by(Order.order_date.desc(), Order.id.desc())
        .all()
    )


def get_order_status(order_id: int, user: User) -> dict:
    """
    Tracking view. Terminal orders only report their status; open
    Standard Delivery orders also report destination and ETA.
    """
    order = get_order_for_user(order_id, user)
    result = {"id": order.id, "status": order.status}
    if order.status == ORDER_CANCELLED:
        result["cancel_reason"] = order.cancel_reason
        return result
    if order.status == ORDER_DELIVERED:
        return result

    if order.delivery_mode == DELIVERY_MODE_STANDARD:
        result["delivery_address"] = order.delivery_address
        result["estimated_delivery_date"] = order.to_dict()["estimated_delivery_date"]
        if order.delivery:
            result["delivery_status"] = order.delivery.status
    return result


# =============================================================================
# CANCELLATION
# =============================================================================

def apply_cancellation(order: Order, reason: str, payment_status: str) -> int:
    """
    Move an order to Cancelled and undo its side effects.

    - Order -> Cancelled with the given reason
    - Pending payment -> payment_status (Failed or Cancelled)
    - Open delivery -> Returned
    - Shipped lines -> back to stock

    Runs inside the caller's transaction. Returns units restocked.
    """
    order.status = ORDER_CANCELLED
    order.cancel_reason = reason

    payment = order.payment
    if payment and payment.status == PAYMENT_PENDING:
        payment.status = payment_status

    delivery = order.delivery
    if delivery and delivery.status not in DELIVERY_TERMINAL_STATUSES:
        delivery.status = DELIVERY_RETURNED

    units = stock_service.restock(order.id)

    current_app.logger.info(
        "Order %s cancelled (%s); payment %s; %s units restocked",
        order.id, reason, payment.status if payment else None, units,
    )
    return units


def cancel_order(order_id: int, actor: User) -> Order:
    """
    Self-service cancellation of an order that has not progressed.

    Raises:
        NotFoundError: unknown order
        ForbiddenError: customer cancelling someone else's order
        ValidationError: order is no longer Pending
    """
    def _op():
        order = get_order(order_id, lock=True)
        ensure_can_view(order, actor)

        if order.status != ORDER_PENDING:
            raise ValidationError("Order confirmed, shipped or delivered cannot be cancelled")

        apply_cancellation(order, CANCEL_REASON_USER, PAYMENT_CANCELLED)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# STORE PICKUP
# =============================================================================

def advance_pickup_order(order_id: int, new_status: str) -> Order:
    """
    Advance a Store Pickup order, which has no delivery record.

    Shipped (ready for pickup) takes stock off the shelf all-or-nothing;
    Delivered (collected) requires a Paid payment.

    Raises:
        NotFoundError: unknown order
        ValidationError: not a pickup order, or not a forward transition
        InsufficientStockError: stock does not cover the order at Shipped
        UnpaidOrderError: Delivered while payment is not Paid
    """
    def _op():
        from .delivery_service import ship_order_lines

        order = get_order(order_id, lock=True)
        if order.delivery_mode != DELIVERY_MODE_PICKUP:
            raise ValidationError("Standard Delivery orders advance through their delivery")

        if new_status not in (ORDER_SHIPPED, ORDER_DELIVERED):
            raise ValidationError(f"Invalid status: {new_status}")
        if order.status == ORDER_CANCELLED:
            raise ValidationError("Cancelled orders cannot be updated")
        if ORDER_FLOW.index(new_status) <= ORDER_FLOW.index(order.status):
            raise ValidationError(f"Invalid update from {order.status} to {new_status}")

        if new_status == ORDER_SHIPPED:
            ship_order_lines(order)
        else:
            if order.status != ORDER_SHIPPED:
                raise ValidationError(f"Invalid update from {order.status} to {new_status}")
            payment = order.payment
            if not payment or payment.status != PAYMENT_PAID:
                raise UnpaidOrderError("Order is not paid")
            order.delivered_date = utcnow()

        order.status = new_status
        db.session.commit()

        current_app.logger.info("Pickup order %s -> %s", order.id, new_status)
        return order

    return run_with_retry(_op)
