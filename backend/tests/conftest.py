"""
Pytest fixtures for retailcore tests.

Provides an in-memory database per test, two tenants with stores, products,
tenant contexts and a test client.
"""

import pytest

from retailcore import create_app
from retailcore.extensions import db
from retailcore.models import Product, Store, Tenant
from retailcore.services.inventory_service import receive_stock
from retailcore.services.pricing import CartLine, PaymentMethod, PaymentTender
from retailcore.services.sales_service import CreateSaleInput, create_sale
from retailcore.services.tenant_service import TenantContext


CASHIER_ID = 101
OTHER_CASHIER_ID = 102


@pytest.fixture(scope='function')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TRANSACTION_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Tenant A - Acme Corp", code="ACME", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Tenant B - Beta Inc", code="BETA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def store_a(db_session, tenant_a):
    """Create Store A1 in Tenant A."""
    store = Store(tenant_id=tenant_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, tenant_a):
    """Create a second store in Tenant A (transfers)."""
    store = Store(tenant_id=tenant_a.id, name="Store A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, tenant_b):
    """Create Store B1 in Tenant B."""
    store = Store(tenant_id=tenant_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def ctx_a(tenant_a, store_a):
    return TenantContext(tenant_id=tenant_a.id, user_id=CASHIER_ID, store_id=store_a.id)


@pytest.fixture(scope='function')
def ctx_b(tenant_b, store_b):
    return TenantContext(tenant_id=tenant_b.id, user_id=CASHIER_ID, store_id=store_b.id)


def _make_product(db_session, tenant, sku, **overrides):
    values = dict(
        tenant_id=tenant.id,
        sku=sku,
        name=f"Product {sku}",
        price_cents=1000,
        cost_cents=400,
        tax_rate_bps=1000,
        track_inventory=True,
        allow_negative_stock=False,
        is_active=True,
    )
    values.update(overrides)
    product = Product(**values)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a):
    """$10.00 item, 10% tax, $4.00 cost, stock tracked."""
    return _make_product(db_session, tenant_a, "WIDGET-A")


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    return _make_product(db_session, tenant_b, "WIDGET-B")


@pytest.fixture(scope='function')
def service_product(db_session, tenant_a):
    """Untracked item (services, gift wrap)."""
    return _make_product(db_session, tenant_a, "GIFT-WRAP", price_cents=500, tax_rate_bps=0, track_inventory=False)


@pytest.fixture(scope='function')
def make_product(db_session, tenant_a):
    def _factory(sku, **overrides):
        return _make_product(db_session, tenant_a, sku, **overrides)
    return _factory


@pytest.fixture(scope='function')
def stocked_product(ctx_a, store_a, product_a):
    """product_a with 10 units on hand in store_a."""
    receive_stock(ctx_a, store_id=store_a.id, product_id=product_a.id, quantity=10, unit_cost_cents=400)
    return product_a


@pytest.fixture(scope='function')
def sell(ctx_a, store_a):
    """Ring up a simple cash sale for ctx_a in store_a."""
    def _sell(product, quantity=1, cash_cents=None, ctx=None, **kwargs):
        ctx = ctx or ctx_a
        payments = kwargs.pop("payments", None)
        if payments is None:
            amount = cash_cents if cash_cents is not None else 100000
            payments = [PaymentTender(method=PaymentMethod.CASH, amount_cents=amount)]
        return create_sale(
            ctx,
            CreateSaleInput(
                store_id=kwargs.pop("store_id", store_a.id),
                lines=[CartLine(product_id=product.id, quantity=quantity)],
                payments=payments,
                **kwargs,
            ),
        )
    return _sell


@pytest.fixture(scope='function')
def tenant_headers():
    """Build the X-Tenant-Id / X-User-Id / X-Store-Id request headers."""
    def _headers(tenant, store=None, user_id=CASHIER_ID):
        headers = {"X-Tenant-Id": str(tenant.id), "X-User-Id": str(user_id)}
        if store is not None:
            headers["X-Store-Id"] = str(store.id)
        return headers
    return _headers
