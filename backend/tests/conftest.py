"""
Pytest fixtures for RetailOps backend tests.

Provides test database setup, factories for users / riders / variants /
vendors / orders, and the test client.
"""

import itertools

import pytest

from retailops import create_app
from retailops.actors import Actor
from retailops.extensions import db
from retailops.models import Order, OrderItem, Rider, User, Variant, Vendor
from retailops.services.sequence_service import ensure_sequences


_counter = itertools.count(1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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
        ensure_sequences()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# -- Factories --

def make_user(role="operator", username=None, is_active=True) -> User:
    user = User(
        username=username or f"{role}_{next(_counter)}",
        name=role.title(),
        role=role,
        is_active=is_active,
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_rider(user=None, *, status="active", is_available=True, max_daily_orders=20) -> Rider:
    user = user or make_user("rider")
    rider = Rider(
        user_id=user.id,
        name=f"Rider {user.username}",
        status=status,
        is_available=is_available,
        max_daily_orders=max_daily_orders,
    )
    db.session.add(rider)
    db.session.commit()
    return rider


def make_variant(stock=0, reserved=0, *, sku=None, cost=100) -> Variant:
    variant = Variant(
        sku=sku or f"SKU-{next(_counter)}",
        name="Test Variant",
        cost_price=cost,
        selling_price=cost * 2,
        current_stock=stock,
        reserved_stock=reserved,
    )
    db.session.add(variant)
    db.session.commit()
    return variant


def make_vendor(name=None) -> Vendor:
    vendor = Vendor(name=name or f"Vendor {next(_counter)}")
    db.session.add(vendor)
    db.session.commit()
    return vendor


def make_order(
    *,
    fulfillment_type="self_delivery",
    status="intake",
    stock_state="none",
    items=(),
    rider=None,
    courier_partner=None,
) -> Order:
    """
    Insert an order directly in any state (test setup only).

    items: iterable of (variant, quantity)
    """
    order = Order(
        order_number=f"ORD-T{next(_counter):05d}",
        customer_name="Test Customer",
        customer_phone="9800000000",
        status=status,
        fulfillment_type=fulfillment_type,
        stock_state=stock_state,
        assigned_rider_id=rider.id if rider else None,
        courier_partner=courier_partner,
    )
    db.session.add(order)
    db.session.flush()
    for variant, quantity in items:
        db.session.add(OrderItem(order_id=order.id, variant_id=variant.id, quantity=quantity, unit_price=100))
    db.session.commit()
    return order


def actor_for(user) -> Actor:
    return Actor.from_user(user)


def headers_for(user) -> dict:
    """Headers the auth gateway would forward for this user."""
    return {'X-Actor-Id': str(user.id)}


def reload(model, pk):
    """Fresh copy from the database, bypassing the identity map."""
    db.session.expire_all()
    return db.session.get(model, pk)


# -- Common actors --

@pytest.fixture
def admin(db_session):
    return make_user("admin")


@pytest.fixture
def manager(db_session):
    return make_user("manager")


@pytest.fixture
def operator(db_session):
    return make_user("operator")


@pytest.fixture
def viewer(db_session):
    return make_user("viewer")


@pytest.fixture
def vendor(db_session):
    return make_vendor()
