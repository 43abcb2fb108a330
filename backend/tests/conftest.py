"""
Pytest fixtures for storefront backend tests.

Provides an in-memory database, a fake payment gateway, accounts with
bearer tokens, and product/inventory factories.
"""

import itertools

import pytest

from storefront import create_app
from storefront.errors import PaymentGatewayError
from storefront.extensions import db
from storefront.models import InventoryRecord, Product, User
from storefront.services.auth_service import hash_password
from storefront.services.payment_gateway import INTENT_SUCCEEDED
from storefront.services.session_service import create_session


PASSWORD = "Password123"


class FakePaymentGateway:
    """
    In-process stand-in for the payment processor.

    Intents start as requires_payment_method; tests flip them with
    succeed() the way a customer completing checkout would.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.intents = {}
        self.error = None
        self._ids = itertools.count(1)

    def create_intent(self, amount_cents, currency, metadata):
        if self.error:
            raise PaymentGatewayError(self.error)
        intent_id = f"pi_test_{next(self._ids)}"
        self.intents[intent_id] = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "status": "requires_payment_method",
            "amount": amount_cents,
            "currency": currency,
            "metadata": dict(metadata),
        }
        return dict(self.intents[intent_id])

    def retrieve_intent(self, reference):
        if self.error:
            raise PaymentGatewayError(self.error)
        intent = self.intents.get(reference)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {reference}", details={"gateway_status": 404})
        return {
            "id": intent["id"],
            "status": intent["status"],
            "amount": intent["amount"],
            "metadata": dict(intent["metadata"]),
        }

    def succeed(self, intent_id, amount=None):
        self.intents[intent_id]["status"] = INTENT_SUCCEEDED
        if amount is not None:
            self.intents[intent_id]["amount"] = amount


@pytest.fixture(scope='session')
def fake_gateway():
    return FakePaymentGateway()


@pytest.fixture(scope='session')
def app(fake_gateway):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SHIPPING_COST_CENTS': 500,
        'PAYMENT_GATEWAY': fake_gateway,
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
def gateway(fake_gateway):
    fake_gateway.reset()
    return fake_gateway


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


def _make_user(db_session, password_hash, *, name, email, role, code):
    user = User(
        name=name,
        email=email,
        password_hash=password_hash,
        role=role,
        customer_code=code,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session, password_hash):
    return _make_user(
        db_session, password_hash,
        name="Casey Customer", email="casey@example.com", role="customer", code="CASEY01",
    )


@pytest.fixture(scope='function')
def other_customer(db_session, password_hash):
    return _make_user(
        db_session, password_hash,
        name="Olive Other", email="olive@example.com", role="customer", code="OLIVE01",
    )


@pytest.fixture(scope='function')
def admin(db_session, password_hash):
    return _make_user(
        db_session, password_hash,
        name="Ada Admin", email="ada@example.com", role="admin", code="ADMIN01",
    )


def bearer(user):
    _, token = create_session(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture(scope='function')
def other_headers(other_customer):
    return bearer(other_customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory: make_product(name, price_cents=1000, stock=10, record=False, ...)

    record=True also creates a linked InventoryRecord holding the same
    balance (no opening movement).
    """
    counter = itertools.count(1)

    def _make(name="Test Product", *, price_cents=1000, stock=10, threshold=2,
              record=False, cost_price_cents=None, **fields):
        sku = fields.pop("sku", None) or f"TST{next(counter):04d}"
        product = Product(
            sku=sku,
            name=name,
            price_cents=price_cents,
            stock=stock,
            threshold=threshold,
            **fields,
        )
        db_session.add(product)
        if record:
            db_session.add(InventoryRecord(
                sku=sku,
                name=name,
                product=product,
                stock=stock,
                threshold=threshold,
                cost_price_cents=cost_price_cents,
            ))
        db_session.commit()
        return product

    return _make
