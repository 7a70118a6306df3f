"""
Pytest fixtures for storeledger backend tests.

Provides an in-memory application, a per-test clean database, a test client
and seed rows (customer, tracked units, product).
"""

import pytest
from storeledger import create_app
from storeledger.extensions import db
from storeledger.models import Customer, TrackedUnit, Product, StockStatus


@pytest.fixture(scope='session')
def app():
    """Create application for testing; the schema guard builds the schema."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SCHEMA_GUARD_ON_STARTUP': True,
        'CURRENCY_GRANULARITY': 100000,
        'INSTALLMENT_TOLERANCE_FLOOR': 200000,
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (core deletes bypass the ledger's
        # immutability hooks)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(full_name="Sara Ahmadi", phone_number="09120000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def other_customer(db_session):
    customer = Customer(full_name="Reza Karimi", phone_number="09120000002")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def phone(db_session):
    """A sellable tracked unit."""
    unit = TrackedUnit(
        model="Galaxy A54",
        imei="356789012345671",
        purchase_price=8_000_000,
        sale_price=9_000_000,
        status=StockStatus.IN_STOCK.value,
    )
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def second_phone(db_session):
    unit = TrackedUnit(
        model="iPhone 13",
        imei="356789012345689",
        purchase_price=30_000_000,
        sale_price=33_000_000,
        status=StockStatus.IN_STOCK.value,
    )
    db_session.add(unit)
    db_session.commit()
    return unit


@pytest.fixture(scope='function')
def charger(db_session):
    """Fungible product with five on hand."""
    product = Product(name="USB-C charger", purchase_price=30_000, sale_price=50_000, stock_quantity=5)
    db_session.add(product)
    db_session.commit()
    return product
