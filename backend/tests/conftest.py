"""
Pytest fixtures for back-office core tests.

Provides test database setup, store/product factories, and test client.
"""

import pytest
from backoffice import create_app
from backoffice.extensions import db
from backoffice.services import order_service, product_service, tenant_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_BACKOFF': 0.01,
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
def store(db_session):
    """Create Store A."""
    return tenant_service.create_store("Store A", code="A1")


@pytest.fixture(scope='function')
def other_store(db_session):
    """Create Store B (second tenant)."""
    return tenant_service.create_store("Store B", code="B1")


@pytest.fixture(scope='function')
def plain_product(store):
    """Product with aggregate stock only."""
    return product_service.create_product(
        store_id=store.id,
        name="Plain Mug",
        sku="MUG-001",
        base_price_cents=1200,
        stock=10,
    )


@pytest.fixture(scope='function')
def combo_product(store):
    """Product with materialized color combinations (red: 5, blue: 4)."""
    return product_service.create_product(
        store_id=store.id,
        name="Combo Shirt",
        sku="SHIRT-001",
        base_price_cents=2500,
        stock=9,
        attributes=[
            {"id": "color", "name": "Color", "variants": [
                {"id": "red", "name": "Red", "stock": 5},
                {"id": "blue", "name": "Blue", "stock": 4},
            ]},
        ],
        combinations=[
            {"id": "c-red", "selections": {"color": "red"}, "stock": 5},
            {"id": "c-blue", "selections": {"color": "blue"}, "stock": 4},
        ],
    )


@pytest.fixture(scope='function')
def variant_product(store):
    """Product with two independent attribute pools and no combinations."""
    return product_service.create_product(
        store_id=store.id,
        name="Variant Cap",
        sku="CAP-001",
        base_price_cents=1500,
        stock=10,
        attributes=[
            {"id": "color", "name": "Color", "variants": [
                {"id": "red", "name": "Red", "stock": 5},
                {"id": "blue", "name": "Blue", "stock": 5},
            ]},
            {"id": "size", "name": "Size", "variants": [
                {"id": "s", "name": "S", "stock": 3},
                {"id": "m", "name": "M", "stock": 3},
            ]},
        ],
    )


def red_item(product, quantity=2):
    """Order line selecting color=red."""
    return {
        "product_id": product.id,
        "quantity": quantity,
        "selected_variants": [{"attribute_id": "color", "variant_id": "red"}],
    }


def make_order(store, items, total_cents=5000, **fields):
    """Create a pending order through the service layer."""
    return order_service.create_order(store.id, items, total_cents, **fields)


def stock_of(product):
    """Fresh stock snapshot of a product."""
    db.session.expire_all()
    return product_service.get_product_stock(product.id, product.store_id)
