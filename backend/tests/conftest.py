"""
Pytest fixtures for GroceryMart backend tests.

Provides an in-memory database, a test client, and factories for accounts,
products, sessions and delivered orders.
"""

import itertools

import pytest
from grocerymart import create_app
from grocerymart.extensions import db
from grocerymart.models import Account, Product
from grocerymart.models.accounts import ROLE_USER, ROLE_ADMIN
from grocerymart.services import auth_service, ledger_service, session_service, order_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_LOG_ROUNDS': 4,
    'PURCHASE_COOLDOWN_DAYS': 0,
    'RETURN_REFUND_TO_CREDITS': True,
    'REFERRAL_PAY_BOTH_BONUSES_TO_SOLE_ANCESTOR': False,
}

DEFAULT_PASSWORD = "Password123"

_sequence = itertools.count(1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
    """Fresh database for each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def make_account(db_session):
    """Register an account through the real registration path."""
    def _make(name=None, email=None, password=DEFAULT_PASSWORD, referral_code=None,
              role=ROLE_USER, credits_cents=0) -> Account:
        n = next(_sequence)
        account = auth_service.register_account(
            name=name or f"Shopper {n}",
            email=email or f"shopper{n}@example.com",
            password=password,
            referral_code=referral_code,
            role=role,
        )
        if credits_cents:
            ledger_service.add_credits(account.id, credits_cents, "Test seed credits")
        return account

    return _make


@pytest.fixture(scope='function')
def make_admin(make_account):
    def _make(**kwargs) -> Account:
        return make_account(role=ROLE_ADMIN, **kwargs)

    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(price_cents=20000, stock=10, name=None, sku=None, is_active=True) -> Product:
        n = next(_sequence)
        product = Product(
            sku=sku or f"SKU-{n}",
            name=name or f"Product {n}",
            price_cents=price_cents,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Authorization header for an account (fresh session token)."""
    def _headers(account: Account) -> dict:
        _session, token = session_service.create_session(account.id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture(scope='function')
def delivered_order(make_account, make_admin, make_product):
    """
    A delivered order for a fresh customer: 3 x 200.00 and 1 x 50.00, paid in cash.
    Returns (customer, order, (product_a, product_b), admin).
    """
    customer = make_account()
    admin = make_admin()
    product_a = make_product(price_cents=20000, stock=10)
    product_b = make_product(price_cents=5000, stock=10)

    order = order_service.checkout(
        customer.id,
        [
            {"product_id": product_a.id, "quantity": 3},
            {"product_id": product_b.id, "quantity": 1},
        ],
    )
    for status in ("confirmed", "processing", "shipped", "delivered"):
        order = order_service.update_order_status(order.id, status, admin.id)
    return customer, order, (product_a, product_b), admin
