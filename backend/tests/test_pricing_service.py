"""
Order pricing tests: delivery charge table, ETA, free stock and cart validation.
"""

from datetime import datetime

import pytest

from storefront.errors import NotFoundError, ValidationError
from storefront.models.orders import (
    DELIVERY_MODE_PICKUP,
    DELIVERY_MODE_STANDARD,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_COD,
)
from storefront.services import pricing_service
from storefront.validation import OrderItemInput


NOW = datetime(2026, 3, 2, 9, 30)


class TestDeliveryCharge:

    @pytest.mark.parametrize(
        "subtotal,is_main,expected",
        [
            (5_000, True, 599),
            (10_000, True, 599),
            (10_001, True, 399),
            (50_000, True, 399),
            (50_001, True, 0),
            (5_000, False, 999),
            (20_000, False, 699),
            (75_000, False, 399),
        ],
    )
    def test_standard_delivery_table(self, subtotal, is_main, expected):
        assert pricing_service.calculate_delivery_charge(subtotal, DELIVERY_MODE_STANDARD, is_main) == expected

    def test_pickup_is_free(self):
        assert pricing_service.calculate_delivery_charge(100, DELIVERY_MODE_PICKUP, False) == 0


class TestDeliveryEstimate:

    def test_main_city(self, app):
        eta = pricing_service.estimate_delivery_date(DELIVERY_MODE_STANDARD, True, False, now=NOW)
        assert eta == datetime(2026, 3, 7, 9, 30)

    def test_other_city_with_backorders(self, app):
        eta = pricing_service.estimate_delivery_date(DELIVERY_MODE_STANDARD, False, True, now=NOW)
        assert eta == datetime(2026, 3, 12, 9, 30)

    def test_pickup(self, app):
        eta = pricing_service.estimate_delivery_date(DELIVERY_MODE_PICKUP, False, False, now=NOW)
        assert eta == datetime(2026, 3, 3, 9, 30)


class TestPriceOrder:

    def test_prices_lines_and_delivery(self, db_session, customer, lamp, bulb, address):
        priced = pricing_service.price_order(
            items=[OrderItemInput(lamp.id, 2), OrderItemInput(bulb.id, 1)],
            delivery_mode=DELIVERY_MODE_STANDARD,
            payment_method=PAYMENT_METHOD_CARD,
            address_id=address.id,
            user_id=customer.id,
            now=NOW,
        )
        assert priced.total_price_cents == 5400
        assert priced.delivery_charge_cents == 599
        assert priced.amount_due_cents == 5999
        assert priced.has_backorders is False
        assert priced.final_address == "12 Galle Road, Colombo, 00300"
        assert priced.delivery_date == datetime(2026, 3, 7, 9, 30)
        assert [line.unit_price_cents for line in priced.ordered_items] == [2500, 400]

    def test_short_stock_is_backordered(self, db_session, customer, bulb, far_address):
        priced = pricing_service.price_order(
            items=[OrderItemInput(bulb.id, 3)],
            delivery_mode=DELIVERY_MODE_STANDARD,
            payment_method=PAYMENT_METHOD_COD,
            address_id=far_address.id,
            user_id=customer.id,
            now=NOW,
        )
        assert priced.ordered_items[0].backordered is True
        assert priced.delivery_charge_cents == 999
        assert priced.delivery_date == datetime(2026, 3, 12, 9, 30)

    def test_default_address_used_when_omitted(self, db_session, customer, lamp, address):
        priced = pricing_service.price_order(
            [OrderItemInput(lamp.id, 1)], DELIVERY_MODE_STANDARD, PAYMENT_METHOD_CARD, None, customer.id,
        )
        assert priced.final_address.startswith("12 Galle Road")

    def test_pickup_has_no_address_or_charge(self, db_session, customer, lamp):
        priced = pricing_service.price_order(
            [OrderItemInput(lamp.id, 1)], DELIVERY_MODE_PICKUP, PAYMENT_METHOD_CARD, None, customer.id,
        )
        assert priced.final_address is None
        assert priced.delivery_charge_cents == 0

    def test_pickup_with_cash_on_delivery_rejected(self, db_session, customer, lamp):
        with pytest.raises(ValidationError, match="Invalid payment method"):
            pricing_service.price_order(
                [OrderItemInput(lamp.id, 1)], DELIVERY_MODE_PICKUP, PAYMENT_METHOD_COD, None, customer.id,
            )

    def test_unknown_item(self, db_session, customer, address):
        with pytest.raises(NotFoundError, match="Item not found"):
            pricing_service.price_order(
                [OrderItemInput(777, 1)], DELIVERY_MODE_STANDARD, PAYMENT_METHOD_CARD, address.id, customer.id,
            )

    def test_empty_cart(self, db_session, customer):
        with pytest.raises(ValidationError):
            pricing_service.price_order([], DELIVERY_MODE_PICKUP, PAYMENT_METHOD_CARD, None, customer.id)

    def test_someone_elses_address(self, db_session, other_customer, lamp, address):
        with pytest.raises(ValidationError, match="Invalid delivery address"):
            pricing_service.price_order(
                [OrderItemInput(lamp.id, 1)], DELIVERY_MODE_STANDARD, PAYMENT_METHOD_CARD, address.id, other_customer.id,
            )

    def test_standard_without_any_address(self, db_session, other_customer, lamp):
        with pytest.raises(ValidationError, match="address is required"):
            pricing_service.price_order(
                [OrderItemInput(lamp.id, 1)], DELIVERY_MODE_STANDARD, PAYMENT_METHOD_CARD, None, other_customer.id,
            )

    def test_units_promised_to_open_orders_are_not_free(self, db_session, customer, other_customer, bulb, address, place_order):
        # bulb has 2 in stock; the first order takes both
        first = place_order(customer, [(bulb, 2)], address=address)
        assert first.lines[0].backordered is False

        priced = pricing_service.price_order(
            [OrderItemInput(bulb.id, 2)], DELIVERY_MODE_PICKUP, PAYMENT_METHOD_CARD, None, other_customer.id,
        )
        assert priced.ordered_items[0].backordered is True
        assert priced.has_backorders is True

    def test_cancelled_order_frees_its_units(self, db_session, customer, bulb, address, place_order):
        from storefront.services import order_service

        first = place_order(customer, [(bulb, 2)], address=address)
        order_service.cancel_order(first.id, customer)

        priced = pricing_service.price_order(
            [OrderItemInput(bulb.id, 2)], DELIVERY_MODE_PICKUP, PAYMENT_METHOD_CARD, None, customer.id,
        )
        assert priced.ordered_items[0].backordered is False

    def test_repeated_variant_in_one_cart(self, db_session, customer, bulb):
        priced = pricing_service.price_order(
            [OrderItemInput(bulb.id, 2), OrderItemInput(bulb.id, 1)],
            DELIVERY_MODE_PICKUP, PAYMENT_METHOD_CARD, None, customer.id,
        )
        assert [line.backordered for line in priced.ordered_items] == [False, True]
