"""
Delivery orchestration tests.

Verifies:
- Staff assignment and the forward-only delivery state machine
- Shipping takes stock all-or-nothing
- Delivered requires a Paid payment
- A failed delivery cancels the order and returns shipped stock
- Cash on delivery collection
"""

import pytest

from storefront.errors import (
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    UnpaidOrderError,
    ValidationError,
)
from storefront.extensions import db
from storefront.models import Delivery, Order, OrderLine, Payment, ProductVariant
from storefront.models.orders import PAYMENT_METHOD_COD
from storefront.services import delivery_service
from storefront.services.reconciliation_service import confirm_payment

from conftest import fresh


@pytest.fixture
def card_order(customer, lamp, address, place_order):
    return place_order(customer, [(lamp, 2)], address=address)


@pytest.fixture
def cod_order(customer, lamp, address, place_order):
    return place_order(customer, [(lamp, 2)], address=address, method=PAYMENT_METHOD_COD)


class TestStateMachine:

    @pytest.mark.parametrize(
        "current,new,allowed",
        [
            ("Pending", "Confirmed", True),
            ("Confirmed", "Shipped", True),
            ("Shipped", "Delivered", True),
            ("Shipped", "Failed", True),
            ("Pending", "Shipped", False),
            ("Shipped", "Confirmed", False),
            ("Delivered", "Failed", False),
            ("Returned", "Shipped", False),
        ],
    )
    def test_transitions(self, current, new, allowed):
        assert delivery_service.is_valid_transition(current, new) is allowed


class TestAssignStaff:

    def test_assign_confirms_delivery(self, db_session, card_order, staff):
        delivery = delivery_service.assign_staff(card_order.delivery.id, staff.id)
        assert delivery.status == "Confirmed"
        assert delivery.staff_id == staff.id
        assert delivery.assigned_date is not None

    def test_non_staff_user_rejected(self, db_session, card_order, customer):
        with pytest.raises(NotFoundError, match="Staff not found"):
            delivery_service.assign_staff(card_order.delivery.id, customer.id)

    def test_unknown_delivery(self, db_session, staff):
        with pytest.raises(NotFoundError):
            delivery_service.assign_staff(999, staff.id)

    def test_cannot_reassign_after_shipping(self, db_session, card_order, staff, other_staff):
        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Shipped", staff)
        with pytest.raises(ValidationError):
            delivery_service.assign_staff(delivery_id, other_staff.id)


class TestShipping:

    def test_ship_decrements_stock_and_moves_order(self, db_session, card_order, staff, lamp):
        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Shipped", staff)

        assert fresh(ProductVariant, lamp.id).stock_qnt == 8
        assert fresh(Delivery, delivery_id).status == "Shipped"
        assert fresh(Order, card_order.id).status == "Shipped"
        assert all(line.stock_committed for line in fresh(Order, card_order.id).lines)

    def test_insufficient_stock_changes_nothing(self, db_session, customer, staff, lamp, bulb, address, place_order):
        order = place_order(customer, [(lamp, 2), (bulb, 3)], address=address)
        delivery_id = order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)

        with pytest.raises(InsufficientStockError) as exc_info:
            delivery_service.update_status(delivery_id, "Shipped", staff)

        assert exc_info.value.details["items"][0]["variant_id"] == bulb.id
        assert fresh(ProductVariant, lamp.id).stock_qnt == 10
        assert fresh(ProductVariant, bulb.id).stock_qnt == 2
        assert fresh(Delivery, delivery_id).status == "Confirmed"
        assert fresh(Order, order.id).status == "Pending"

    def test_shipping_clears_backorder_flag(self, db_session, customer, staff, bulb, address, place_order):
        order = place_order(customer, [(bulb, 3)], address=address)
        line_id = order.lines[0].id
        delivery_id = order.delivery.id
        db.session.query(ProductVariant).filter_by(id=bulb.id).update({"stock_qnt": 5})
        db.session.commit()

        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Shipped", staff)

        line = fresh(OrderLine, line_id)
        assert line.backordered is False
        assert line.stock_committed is True
        assert fresh(ProductVariant, bulb.id).stock_qnt == 2

    def test_unassigned_delivery_cannot_ship(self, db_session, card_order, admin):
        with pytest.raises(ValidationError):
            delivery_service.update_status(card_order.delivery.id, "Shipped", admin)

    def test_other_staff_forbidden(self, db_session, card_order, staff, other_staff):
        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        with pytest.raises(ForbiddenError):
            delivery_service.update_status(delivery_id, "Shipped", other_staff)

    def test_cancelled_order_cannot_ship(self, db_session, card_order, customer, staff):
        from storefront.services import order_service

        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        order_service.cancel_order(card_order.id, customer)

        with pytest.raises(ValidationError):
            delivery_service.update_status(delivery_id, "Shipped", staff)


class TestDelivered:

    @pytest.mark.parametrize("payment_status", ["Pending", "Failed", "Cancelled"])
    @pytest.mark.parametrize("delivery_status", ["Pending", "Confirmed", "Shipped"])
    def test_requires_paid(self, db_session, card_order, staff, admin, lamp, delivery_status, payment_status):
        delivery_id = card_order.delivery.id
        if delivery_status != "Pending":
            delivery_service.assign_staff(delivery_id, staff.id)
        if delivery_status == "Shipped":
            delivery_service.update_status(delivery_id, "Shipped", staff)
        db.session.query(Payment).filter_by(order_id=card_order.id).update({"status": payment_status})
        db.session.commit()
        order_status = fresh(Order, card_order.id).status
        stock = fresh(ProductVariant, lamp.id).stock_qnt

        expected = UnpaidOrderError if delivery_status == "Shipped" else ValidationError
        with pytest.raises(expected):
            delivery_service.update_status(delivery_id, "Delivered", admin)

        order = fresh(Order, card_order.id)
        assert order.delivery.status == delivery_status
        assert order.delivery.delivery_date is None
        assert order.status == order_status
        assert order.delivered_date is None
        assert order.payment.status == payment_status
        assert fresh(ProductVariant, lamp.id).stock_qnt == stock

    def test_paid_order_delivers(self, db_session, card_order, staff):
        confirm_payment(card_order, card_order.payment, "pi_ok")
        db.session.commit()
        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Shipped", staff)
        delivery_service.update_status(delivery_id, "Delivered", staff)

        order = fresh(Order, card_order.id)
        assert order.status == "Delivered"
        assert order.delivered_date is not None
        assert order.delivery.delivery_date is not None

    def test_failed_before_shipping_cancels_order(self, db_session, card_order, staff, lamp):
        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Failed", staff)

        order = fresh(Order, card_order.id)
        assert order.delivery.status == "Failed"
        assert order.status == "Cancelled"
        assert order.cancel_reason == "DeliveryFailed"
        assert order.payment.status == "Cancelled"
        assert fresh(ProductVariant, lamp.id).stock_qnt == 10

    def test_failed_after_paid_keeps_payment(self, db_session, card_order, staff, lamp):
        confirm_payment(card_order, card_order.payment, "pi_ok")
        db.session.commit()
        delivery_id = card_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Shipped", staff)
        delivery_service.update_status(delivery_id, "Failed", staff)

        order = fresh(Order, card_order.id)
        assert order.status == "Cancelled"
        assert order.payment.status == "Paid"
        assert fresh(ProductVariant, lamp.id).stock_qnt == 10


class TestCashOnDelivery:

    def _ship(self, order, staff):
        delivery_id = order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)
        delivery_service.update_status(delivery_id, "Shipped", staff)
        return delivery_id

    def test_collect_exact_amount(self, db_session, cod_order, staff):
        amount = cod_order.payment.amount_cents
        delivery_id = self._ship(cod_order, staff)

        delivery_service.record_cash_on_delivery_payment(delivery_id, amount, staff)

        order = fresh(Order, cod_order.id)
        assert order.payment.status == "Paid"
        assert order.payment.paid_at is not None
        assert order.delivery.status == "Delivered"
        assert order.status == "Delivered"

    def test_wrong_amount(self, db_session, cod_order, staff):
        amount = cod_order.payment.amount_cents
        delivery_id = self._ship(cod_order, staff)

        with pytest.raises(ValidationError, match="Invalid payment amount"):
            delivery_service.record_cash_on_delivery_payment(delivery_id, amount - 1, staff)
        assert fresh(Payment, cod_order.payment.id).status == "Pending"

    def test_only_assigned_staff(self, db_session, cod_order, staff, other_staff):
        amount = cod_order.payment.amount_cents
        delivery_id = self._ship(cod_order, staff)

        with pytest.raises(ForbiddenError):
            delivery_service.record_cash_on_delivery_payment(delivery_id, amount, other_staff)

    def test_card_order_rejected(self, db_session, card_order, staff):
        amount = card_order.payment.amount_cents
        delivery_id = self._ship(card_order, staff)

        with pytest.raises(ValidationError):
            delivery_service.record_cash_on_delivery_payment(delivery_id, amount, staff)

    def test_not_before_shipping(self, db_session, cod_order, staff):
        delivery_id = cod_order.delivery.id
        delivery_service.assign_staff(delivery_id, staff.id)

        with pytest.raises(ValidationError):
            delivery_service.record_cash_on_delivery_payment(delivery_id, cod_order.payment.amount_cents, staff)

    def test_failed_after_shipping_restocks(self, db_session, cod_order, staff, lamp):
        delivery_id = self._ship(cod_order, staff)
        assert fresh(ProductVariant, lamp.id).stock_qnt == 8

        delivery_service.update_status(delivery_id, "Failed", staff)

        order = fresh(Order, cod_order.id)
        assert fresh(ProductVariant, lamp.id).stock_qnt == 10
        assert order.status == "Cancelled"
        assert order.cancel_reason == "DeliveryFailed"
        assert order.payment.status == "Cancelled"
        assert order.delivery.status == "Failed"
        assert not any(line.stock_committed for line in order.lines)

        # The failed delivery is terminal; nothing is restocked twice
        with pytest.raises(ValidationError):
            delivery_service.update_status(delivery_id, "Failed", staff)
        assert fresh(ProductVariant, lamp.id).stock_qnt == 10
