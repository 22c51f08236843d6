# Overview: Delivery orchestration; staff assignment, shipment state machine and COD collection.

"""
Delivery Orchestrator

STATE MACHINE (forward only):
    Pending   -> Confirmed (staff assigned), Failed
    Confirmed -> Shipped, Failed
    Shipped   -> Delivered, Failed
    Delivered, Failed, Returned are terminal (Returned is set by order
    cancellation, never requested directly).

SHIPPED is the single point where stock leaves the shelf:
    1. Load every line of the order.
    2. Check stock covers the total demand per variant; any shortfall aborts
       the whole transition (no partial decrement).
    3. adjust_stock(variant, -quantity) per line.
    4. Lines become fulfilled: backordered cleared, stock_committed set.
    5. Delivery and order move to Shipped.

DELIVERED requires the order's payment to be Paid.

FAILED cancels the order (reason DeliveryFailed): a Pending payment becomes
Cancelled and any shipped lines go back to stock. A Paid payment is left as
is.
"""

from flask import current_app

from ..extensions import db
from ..errors import (
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    UnpaidOrderError,
    ValidationError,
)
from ..models import Delivery, Order, OrderLine, Payment, ProductVariant, User
from ..models.auth import ROLE_DELIVERY_STAFF
from ..models.orders import (
    CANCEL_REASON_DELIVERY_FAILED,
    DELIVERY_CONFIRMED,
    DELIVERY_DELIVERED,
    DELIVERY_FAILED,
    DELIVERY_PENDING,
    DELIVERY_SHIPPED,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_SHIPPED,
    ORDER_TERMINAL_STATUSES,
    PAYMENT_CANCELLED,
    PAYMENT_METHOD_COD,
    PAYMENT_PAID,
    PAYMENT_PENDING,
)
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from . import order_service, stock_service


DELIVERY_TRANSITIONS = {
    DELIVERY_PENDING: {DELIVERY_CONFIRMED, DELIVERY_FAILED},
    DELIVERY_CONFIRMED: {DELIVERY_SHIPPED, DELIVERY_FAILED},
    DELIVERY_SHIPPED: {DELIVERY_DELIVERED, DELIVERY_FAILED},
}

# Statuses a caller may request through update_status()
REQUESTABLE_STATUSES = (DELIVERY_SHIPPED, DELIVERY_DELIVERED, DELIVERY_FAILED)

SHIPPABLE_ORDER_STATUSES = (ORDER_PENDING, ORDER_CONFIRMED)


def is_valid_transition(current: str, new: str) -> bool:
    return new in DELIVERY_TRANSITIONS.get(current, set())


def _get_delivery_locked(delivery_id: int) -> Delivery:
    delivery = lock_for_update(db.session.query(Delivery).filter_by(id=delivery_id)).first()
    if not delivery:
        raise NotFoundError("Delivery not found")
    return delivery


def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


# =============================================================================
# SHIPMENT
# =============================================================================

def ship_order_lines(order: Order) -> list[OrderLine]:
    """
    Take an order's stock off the shelf, all-or-nothing.

    Runs inside the caller's transaction; on failure the caller's rollback
    discards any decrement already applied.

    Raises:
        InsufficientStockError: some variant cannot cover its demand
    """
    lines = (
        db.session.query(OrderLine)
        .filter_by(order_id=order.id)
        .order_by(OrderLine.id)
        .all()
    )
    if not lines:
        raise ValidationError("Order has no items")

    demand: dict[int, int] = {}
    for line in lines:
        if line.stock_committed:
            continue
        demand[line.variant_id] = demand.get(line.variant_id, 0) + line.quantity

    shortages = []
    for variant_id, quantity in sorted(demand.items()):
        variant = lock_for_update(db.session.query(ProductVariant).filter_by(id=variant_id)).first()
        if not variant:
            raise NotFoundError(f"Variant {variant_id} not found")
        if variant.stock_qnt < quantity:
            shortages.append({
                "variant_id": variant_id,
                "requested_quantity": quantity,
                "stock_qnt": variant.stock_qnt,
            })

    if shortages:
        raise InsufficientStockError(
            "Out of stock items are present",
            details={"items": shortages},
        )

    shipped = []
    for line in lines:
        if line.stock_committed:
            continue
        # Another shipment may have taken the stock since the check above
        if not stock_service.adjust_stock(line.variant_id, -line.quantity):
            raise InsufficientStockError(
                "Out of stock items are present",
                details={"items": [{"variant_id": line.variant_id, "requested_quantity": line.quantity}]},
            )
        line.stock_committed = True
        shipped.append(line)

    stock_service.mark_lines_fulfilled([line.id for line in lines if line.backordered])
    return shipped


# =============================================================================
# STAFF ASSIGNMENT
# =============================================================================

def assign_staff(delivery_id: int, staff_id: int) -> Delivery:
    """
    Assign delivery staff and confirm the delivery.

    Reassignment is allowed until the delivery ships.

    Raises:
        NotFoundError: unknown delivery, or staff is not delivery staff
        ValidationError: delivery already shipped or finished
    """
    def _op():
        delivery = _get_delivery_locked(delivery_id)

        staff = db.session.get(User, staff_id)
        if not staff or staff.role != ROLE_DELIVERY_STAFF or not staff.is_active:
            raise NotFoundError("Staff not found")

        if delivery.status not in (DELIVERY_PENDING, DELIVERY_CONFIRMED):
            raise ValidationError(f"Cannot assign staff to a {delivery.status} delivery")

        order = _get_order_locked(delivery.order_id)
        if order.status == ORDER_CANCELLED:
            raise ValidationError("Cannot assign staff to a cancelled order")

        delivery.staff_id = staff.id
        delivery.status = DELIVERY_CONFIRMED
        delivery.assigned_date = utcnow()
        db.session.commit()

        current_app.logger.info("Delivery %s assigned to staff %s", delivery.id, staff.id)
        return delivery

    return run_with_retry(_op)


# =============================================================================
# STATUS UPDATES
# =============================================================================

def update_status(delivery_id: int, new_status: str, actor: User) -> Delivery:
    """
    Advance a delivery (and its order) through the state machine.

    Raises:
        NotFoundError: unknown delivery
        ForbiddenError: delivery staff acting on someone else's delivery
        ValidationError: unknown status or not an allowed transition
        InsufficientStockError: shipping with stock short (nothing changes)
        UnpaidOrderError: delivering while the payment is not Paid
    """
    def _op():
        delivery = _get_delivery_locked(delivery_id)

        if actor.role == ROLE_DELIVERY_STAFF and delivery.staff_id != actor.id:
            raise ForbiddenError("Forbidden access")

        if new_status not in REQUESTABLE_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}")
        if not is_valid_transition(delivery.status, new_status):
            raise ValidationError(f"Invalid update from {delivery.status} to {new_status}")

        order = _get_order_locked(delivery.order_id)

        if new_status == DELIVERY_SHIPPED:
            if order.status not in SHIPPABLE_ORDER_STATUSES:
                raise ValidationError(f"Cannot ship a {order.status} order")
            ship_order_lines(order)
            delivery.status = DELIVERY_SHIPPED
            order.status = ORDER_SHIPPED

        elif new_status == DELIVERY_DELIVERED:
            payment = db.session.query(Payment).filter_by(order_id=order.id).first()
            if not payment or payment.status != PAYMENT_PAID:
                raise UnpaidOrderError("Order is not paid")
            now = utcnow()
            delivery.status = DELIVERY_DELIVERED
            delivery.delivery_date = now
            order.status = ORDER_DELIVERED
            order.delivered_date = now

        else:
            # Terminal before cancelling so the delivery stays Failed, not Returned
            delivery.status = DELIVERY_FAILED
            if order.status not in ORDER_TERMINAL_STATUSES:
                order_service.apply_cancellation(order, CANCEL_REASON_DELIVERY_FAILED, PAYMENT_CANCELLED)

        db.session.commit()

        current_app.logger.info(
            "Delivery %s -> %s (order %s now %s)",
            delivery.id, new_status, order.id, order.status,
        )
        return delivery

    return run_with_retry(_op)


# =============================================================================
# CASH ON DELIVERY
# =============================================================================

def record_cash_on_delivery_payment(delivery_id: int, amount_cents: int, staff: User) -> Payment:
    """
    Record cash collected at the door and complete the delivery.

    Raises:
        NotFoundError: unknown delivery or payment
        ForbiddenError: staff is not the assigned staff
        ValidationError: not a pending COD payment, wrong amount, or the
            delivery has not shipped
    """
    def _op():
        delivery = _get_delivery_locked(delivery_id)

        if delivery.staff_id is None or delivery.staff_id != staff.id:
            raise ForbiddenError("Forbidden access")

        payment = lock_for_update(db.session.query(Payment).filter_by(order_id=delivery.order_id)).first()
        if not payment:
            raise NotFoundError("Payment not found")

        if payment.payment_method != PAYMENT_METHOD_COD:
            raise ValidationError("Order is not cash on delivery")
        if payment.status != PAYMENT_PENDING:
            raise ValidationError(f"Payment is already {payment.status}")
        if amount_cents != payment.amount_cents:
            raise ValidationError("Invalid payment amount")
        if delivery.status != DELIVERY_SHIPPED:
            raise ValidationError("Delivery has not been shipped")

        order = _get_order_locked(delivery.order_id)

        now = utcnow()
        payment.status = PAYMENT_PAID
        payment.paid_at = now
        delivery.status = DELIVERY_DELIVERED
        delivery.delivery_date = now
        order.status = ORDER_DELIVERED
        order.delivered_date = now

        db.session.commit()

        current_app.logger.info(
            "COD payment of %s cents collected for order %s by staff %s",
            amount_cents, order.id, staff.id,
        )
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_deliveries(status: str | None = None) -> list[Delivery]:
    query = db.session.query(Delivery)
    if status:
        query = query.filter(Delivery.status == status)
    return query.order_by(Delivery.id.desc()).all()


def list_staff_deliveries(staff_id: int) -> list[Delivery]:
    return (
        db.session.query(Delivery)
        .filter_by(staff_id=staff_id)
        .order_by(Delivery.id.desc())
        .all()
    )
