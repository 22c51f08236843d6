from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


# =============================================================================
# STATUS VOCABULARY
# =============================================================================

DELIVERY_MODE_STANDARD = "Standard Delivery"
DELIVERY_MODE_PICKUP = "Store Pickup"
VALID_DELIVERY_MODES = [DELIVERY_MODE_STANDARD, DELIVERY_MODE_PICKUP]

PAYMENT_METHOD_CARD = "Card"
PAYMENT_METHOD_COD = "CashOnDelivery"
VALID_PAYMENT_METHODS = [PAYMENT_METHOD_CARD, PAYMENT_METHOD_COD]

ORDER_PENDING = "Pending"
ORDER_CONFIRMED = "Confirmed"
ORDER_SHIPPED = "Shipped"
ORDER_DELIVERED = "Delivered"
ORDER_CANCELLED = "Cancelled"
ORDER_TERMINAL_STATUSES = (ORDER_CANCELLED, ORDER_DELIVERED)

CANCEL_REASON_USER = "UserCancelled"
CANCEL_REASON_PAYMENT_FAILED = "PaymentFailed"
CANCEL_REASON_EXPIRED = "Expired"
CANCEL_REASON_DELIVERY_FAILED = "DeliveryFailed"

PAYMENT_PENDING = "Pending"
PAYMENT_PAID = "Paid"
PAYMENT_FAILED = "Failed"
PAYMENT_CANCELLED = "Cancelled"

DELIVERY_PENDING = "Pending"
DELIVERY_CONFIRMED = "Confirmed"
DELIVERY_SHIPPED = "Shipped"
DELIVERY_DELIVERED = "Delivered"
DELIVERY_RETURNED = "Returned"
DELIVERY_FAILED = "Failed"
DELIVERY_TERMINAL_STATUSES = (DELIVERY_DELIVERED, DELIVERY_RETURNED, DELIVERY_FAILED)


class Order(db.Model):
    """
    Order header.

    total_price_cents covers the lines only; the amount charged is
    total_price_cents + delivery_charge_cents (see Payment.amount_cents).

    STATUS: Pending -> Confirmed -> Shipped -> Delivered, with Cancelled as
    the alternate terminal state. Cash-on-delivery orders skip Confirmed.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_status", "user_id", "status"),
        db.CheckConstraint("total_price_cents >= 0", name="ck_orders_total_nonneg"),
        db.CheckConstraint("delivery_charge_cents >= 0", name="ck_orders_delivery_charge_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    delivery_mode = db.Column(db.String(32), nullable=False)
    # Denormalized snapshot of the destination at order time
    delivery_address = db.Column(db.String(512), nullable=True)
    estimated_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_date = db.Column(db.DateTime(timezone=True), nullable=True)

    total_price_cents = db.Column(db.Integer, nullable=False)
    delivery_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    cancel_reason = db.Column(db.String(32), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_due_cents(self) -> int:
        return self.total_price_cents + (self.delivery_charge_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_date": to_utc_z(self.order_date),
            "delivery_mode": self.delivery_mode,
            "delivery_address": self.delivery_address,
            "estimated_delivery_date": to_utc_z(self.estimated_delivery_date),
            "delivered_date": to_utc_z(self.delivered_date),
            "total_price_cents": self.total_price_cents,
            "delivery_charge_cents": self.delivery_charge_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "cancel_reason": self.cancel_reason,
        }


class OrderLine(db.Model):
    """
    Immutable purchase snapshot for one variant on an order.

    backordered: accepted while stock was short; cleared when stock is
    allocated to it or when the order ships.
    stock_committed: shipping decremented stock for this line and nothing
    has given it back yet. restock() only returns committed lines.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        db.Index("ix_order_items_variant_backordered", "variant_id", "backordered"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    backordered = db.Column(db.Boolean, nullable=False, default=False)
    stock_committed = db.Column(db.Boolean, nullable=False, default=False)

    order = db.relationship("Order", backref=db.backref("lines", lazy=True, order_by="OrderLine.id"))
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "variant_id": self.variant_id,
            "sku": self.variant.sku if self.variant else None,
            "variant_name": self.variant.variant_name if self.variant else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "backordered": self.backordered,
            "stock_committed": self.stock_committed,
        }


class Payment(db.Model):
    """
    The single payment record of an order (1:1).

    Created Pending with the order; only payment reconciliation and
    cash-on-delivery collection change its status afterwards.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)

    # Gateway references (card payments only)
    checkout_session_id = db.Column(db.String(255), nullable=True, unique=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payment", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "checkout_session_id": self.checkout_session_id,
            "payment_intent_id": self.payment_intent_id,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
        }


class Delivery(db.Model):
    """
    Shipment record for Standard Delivery orders (1:1 with the order).

    STATUS: Pending -> Confirmed (staff assigned) -> Shipped -> Delivered,
    with Failed and Returned as alternate terminal states.
    """
    __tablename__ = "deliveries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=DELIVERY_PENDING, index=True)
    assigned_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("delivery", uselist=False, lazy=True))
    staff = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "staff_id": self.staff_id,
            "status": self.status,
            "assigned_date": to_utc_z(self.assigned_date),
            "delivery_date": to_utc_z(self.delivery_date),
            "remarks": self.remarks,
        }
