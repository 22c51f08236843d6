"""
Pytest fixtures for storefront backend tests.

Provides test database setup, a fake payment gateway, seed data and a
test client.
"""

import json

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.errors import GatewaySignatureError, PaymentGatewayError
from storefront.models import Address, City, Product, ProductVariant, User
from storefront.models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_DELIVERY_STAFF
from storefront.services.gateway import CheckoutSession, GatewaySession, PaymentGateway
from storefront.services.session_service import create_session


VALID_SIGNATURE = "valid-signature"


class FakeGateway(PaymentGateway):
    """
    In-memory stand-in for the hosted checkout.

    Sessions are recorded on creation; tests flip their payment_status
    with mark_paid(). Webhook payloads verify only with VALID_SIGNATURE.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.sessions = {}
        self.created = []
        self.fail_next_create = False

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata):
        if self.fail_next_create:
            self.fail_next_create = False
            raise PaymentGatewayError("Payment gateway unavailable")

        session_id = f"cs_test_{len(self.created) + 1}"
        self.sessions[session_id] = GatewaySession(
            session_id=session_id,
            payment_status="unpaid",
            metadata=dict(metadata),
        )
        self.created.append({
            "session_id": session_id,
            "line_items": list(line_items),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
        })
        return CheckoutSession(session_id=session_id, url=f"https://checkout.test/{session_id}")

    def mark_paid(self, session_id, payment_intent_id="pi_test_1"):
        session = self.sessions[session_id]
        self.sessions[session_id] = GatewaySession(
            session_id=session_id,
            payment_status="paid",
            metadata=session.metadata,
            payment_intent_id=payment_intent_id,
        )

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise PaymentGatewayError("Payment gateway unavailable")
        return self.sessions[session_id]

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise GatewaySignatureError("Webhook signature verification failed")
        return json.loads(payload)


def webhook_event(event_type, metadata, **extra):
    """Build a raw webhook body for the given event type."""
    obj = {"id": "obj_test", "metadata": metadata}
    obj.update(extra)
    return json.dumps({"id": "evt_test", "type": event_type, "data": {"object": obj}})


@pytest.fixture(scope='session')
def gateway():
    return FakeGateway()


@pytest.fixture(scope='session')
def app(gateway):
    """Create application for testing."""
    app = create_app(
        config_overrides={
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'FRONTEND_URL': 'http://shop.test',
        },
        gateway=gateway,
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, gateway):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        gateway.reset()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, name, email, role):
    user = User(name=name, email=email, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "Cathy Customer", "cathy@shop.test", ROLE_CUSTOMER)


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, "Oscar Other", "oscar@shop.test", ROLE_CUSTOMER)


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "Ada Admin", "ada@shop.test", ROLE_ADMIN)


@pytest.fixture(scope='function')
def staff(db_session):
    return _make_user(db_session, "Sam Staff", "sam@shop.test", ROLE_DELIVERY_STAFF)


@pytest.fixture(scope='function')
def other_staff(db_session):
    return _make_user(db_session, "Stella Staff", "stella@shop.test", ROLE_DELIVERY_STAFF)


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a user."""
    _, token = create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture(scope='function')
def staff_headers(staff):
    return auth_headers(staff)


@pytest.fixture(scope='function')
def main_city(db_session):
    city = City(name="Colombo", is_main_city=True)
    db_session.add(city)
    db_session.commit()
    return city


@pytest.fixture(scope='function')
def other_city(db_session):
    city = City(name="Jaffna", is_main_city=False)
    db_session.add(city)
    db_session.commit()
    return city


@pytest.fixture(scope='function')
def address(db_session, customer, main_city):
    """Customer's default address in a main city."""
    addr = Address(user_id=customer.id, line1="12 Galle Road", city_id=main_city.id, postal_code="00300", is_default=True)
    db_session.add(addr)
    db_session.commit()
    return addr


@pytest.fixture(scope='function')
def far_address(db_session, customer, other_city):
    addr = Address(user_id=customer.id, line1="4 Hospital Road", city_id=other_city.id, is_default=False)
    db_session.add(addr)
    db_session.commit()
    return addr


@pytest.fixture(scope='function')
def product(db_session):
    product = Product(name="Desk Lamp", brand="Lumen")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def lamp(db_session, product):
    """Variant priced 25.00 with 10 in stock."""
    variant = ProductVariant(product_id=product.id, sku="LAMP-BLK", variant_name="Desk Lamp Black", price_cents=2500, stock_qnt=10)
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def bulb(db_session, product):
    """Variant priced 4.00 with 2 in stock."""
    variant = ProductVariant(product_id=product.id, sku="BULB-E27", variant_name="LED Bulb", price_cents=400, stock_qnt=2)
    db_session.add(variant)
    db_session.commit()
    return variant


def fresh(model, ident):
    """Reload a row from the database, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(model, ident)


@pytest.fixture(scope='function')
def place_order(db_session):
    """
    Factory: price and write an order for a user.

    place_order(user, [(variant, qty), ...], mode=..., method=..., address=None)
    """
    from storefront.models.orders import DELIVERY_MODE_STANDARD, PAYMENT_METHOD_CARD
    from storefront.services import order_service, pricing_service
    from storefront.validation import OrderItemInput

    def _place(user, items, mode=DELIVERY_MODE_STANDARD, method=PAYMENT_METHOD_CARD, address=None):
        priced = pricing_service.price_order(
            items=[OrderItemInput(variant_id=v.id, quantity=q) for v, q in items],
            delivery_mode=mode,
            payment_method=method,
            address_id=address.id if address is not None else None,
            user_id=user.id,
        )
        return order_service.create_order(priced, user.id, mode, method)

    return _place
