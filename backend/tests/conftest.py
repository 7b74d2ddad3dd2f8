"""
Pytest fixtures for back-office backend tests.

Provides the test app on in-memory SQLite, per-test table wipes, engine
services on a controllable clock, and catalog/customer factories.
"""

from datetime import datetime, timedelta

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import (
    Branch,
    CartItem,
    Coupon,
    Customer,
    CustomerAddress,
    Product,
    ProductVariant,
)
from backoffice.services import build_services


class FrozenClock:
    """Deterministic stand-in for utcnow(); advance() moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event_type, payload):
        self.events.append((event_type, payload))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def clock():
    return FrozenClock(datetime(2026, 3, 10, 12, 0, 0))


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='function')
def services(db_session, clock, notifier):
    """Engine services wired like the app's, on the frozen clock."""
    return build_services(db_session, notifier=notifier, clock=clock)


@pytest.fixture(scope='function')
def branch(db_session):
    b = Branch(name="Downtown", kind="store", is_active=True)
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def other_branch(db_session):
    b = Branch(name="Online", kind="site", is_active=True)
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(full_name="Ana Souza", email="ana@example.com", is_active=True)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def address(db_session, customer):
    a = CustomerAddress(
        customer_id=customer.id,
        label="home",
        street="Rua das Flores, 10",
        city="Campinas",
        state="SP",
        postal_code="13000-000",
    )
    db_session.add(a)
    db_session.commit()
    return a


@pytest.fixture(scope='function')
def make_variant(db_session, branch):
    """Factory: product + one variant."""
    counter = {"n": 0}

    def _make(price_cents=20000, stock=10, min_stock=0, discount_cents=None, discount_bps=None):
        counter["n"] += 1
        product = Product(
            branch_id=branch.id,
            sku=f"SKU-{counter['n']:03d}",
            name=f"Dress {counter['n']}",
            price_cents=price_cents,
            discount_cents=discount_cents,
            discount_bps=discount_bps,
            is_active=True,
        )
        db_session.add(product)
        db_session.flush()
        variant = ProductVariant(
            product_id=product.id,
            size="M",
            color="black",
            stock=stock,
            min_stock=min_stock,
            is_active=True,
        )
        db_session.add(variant)
        db_session.commit()
        return variant

    return _make


@pytest.fixture(scope='function')
def variant(make_variant):
    return make_variant()


@pytest.fixture(scope='function')
def add_to_cart(db_session, customer):
    def _add(variant, quantity=1, for_customer=None):
        item = CartItem(
            customer_id=(for_customer or customer).id,
            variant_id=variant.id,
            quantity=quantity,
        )
        db_session.add(item)
        db_session.commit()
        return item

    return _add


@pytest.fixture(scope='function')
def make_coupon(db_session):
    def _make(code="WELCOME10", percent_bps=None, amount_cents=None, quantity_total=1, quantity_used=0,
              starts_on=None, ends_on=None, is_active=True):
        coupon = Coupon(
            code=code,
            percent_bps=percent_bps,
            amount_cents=amount_cents,
            quantity_total=quantity_total,
            quantity_used=quantity_used,
            starts_on=starts_on,
            ends_on=ends_on,
            is_active=is_active,
        )
        db_session.add(coupon)
        db_session.commit()
        return coupon

    return _make
