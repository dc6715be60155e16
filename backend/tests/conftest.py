"""
Pytest fixtures for AgroFlow backend tests.

The app runs against a temporary SQLite file (not :memory:) so that the
concurrency tests can open independent connections to the same database.
"""

import itertools

import pytest

from agroflow import create_app
from agroflow.config import TestConfig
from agroflow.extensions import db
from agroflow.models import Customer, Product
from agroflow.services import sales_service, session_service
from agroflow.services.auth_service import create_user
from agroflow.services.gateway_service import HmacPaymentGateway
from agroflow.validation import CreditDetails, SaleItemRequest, SaleRequest


_seq = itertools.count(1)


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("agroflow") / "agroflow-test.sqlite3"

    class _FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{db_path}"

    app = create_app(_FileConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh data for each test: clear all rows but keep the schema."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions.pop("agroflow_gateway", None)

    yield db.session

    db.session.rollback()
    app.extensions.pop("agroflow_gateway", None)


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory for committed customers. Limits are in minor units."""
    def _make(credit_limit_cents=100_000, name=None, code=None, **kwargs):
        n = next(_seq)
        customer = Customer(
            name=name or f"Farmer {n}",
            code=code or f"CUST-{n:04d}",
            credit_limit_cents=credit_limit_cents,
            credit_balance_cents=0,
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for committed products."""
    def _make(price_cents=1250, quantity=10, name=None, sku=None, **kwargs):
        n = next(_seq)
        product = Product(
            sku=sku or f"SKU-{n:04d}",
            name=name or f"Urea 50kg #{n}",
            price_cents=price_cents,
            quantity=quantity,
            stock_threshold=kwargs.pop("stock_threshold", 2),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def build_sale_request():
    """Build a SaleRequest from (product_id, quantity) pairs."""
    def _build(customer_id, *lines, payment_type="credit", due_date=None):
        credit_details = None
        if payment_type == "credit":
            credit_details = CreditDetails(due_date=due_date, interest_rate_bps=0)
        return SaleRequest(
            customer_id=customer_id,
            items=tuple(SaleItemRequest(product_id=pid, quantity=qty) for pid, qty in lines),
            payment_type=payment_type,
            credit_details=credit_details,
        )
    return _build


@pytest.fixture(scope='function')
def make_sale(build_sale_request):
    """Post a sale through the real posting service."""
    def _make(customer_id, *lines, payment_type="credit", due_date=None):
        request = build_sale_request(customer_id, *lines, payment_type=payment_type, due_date=due_date)
        return sales_service.post_sale(request)
    return _make


@pytest.fixture(scope='function')
def gateway(app):
    """Deterministic gateway installed as the app's gateway."""
    gw = HmacPaymentGateway(key_id="rzp_test_key", key_secret="test-gateway-secret")
    app.extensions["agroflow_gateway"] = gw
    return gw


@pytest.fixture(scope='function')
def make_user(db_session):
    def _make(role="staff", customer_id=None, username=None, password="Password123"):
        return create_user(
            username or f"{role}-{next(_seq)}",
            password,
            role=role,
            customer_id=customer_id,
        )
    return _make


@pytest.fixture(scope='function')
def login_headers(make_user):
    """Authorization headers for a fresh user of the given role."""
    def _headers(role="staff", customer_id=None):
        user = make_user(role=role, customer_id=customer_id)
        _session, token = session_service.create_session(user.id)
        return auth_headers(token)
    return _headers


@pytest.fixture(scope='function')
def admin_headers(login_headers):
    return login_headers("admin")


@pytest.fixture(scope='function')
def staff_headers(login_headers):
    return login_headers("staff")


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
