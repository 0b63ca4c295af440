# Overview: Pytest coverage for catalog lookup and product creation.

import pytest

from retailcore.errors import ConflictError, NotFoundError, ValidationError
from retailcore.models import StockLedgerEntry
from retailcore.services.catalog_service import (
    CATALOG_EXTENSION_KEY,
    CatalogItem,
    CatalogLookup,
    create_product,
    get_catalog,
)


class FixedCatalog(CatalogLookup):
    """Catalog backed by a dict, as an external product service would be."""

    def __init__(self, items):
        self.items = {item.product_id: item for item in items}

    def lookup(self, ctx, product_id):
        try:
            return self.items[product_id]
        except KeyError:
            raise NotFoundError("Product not found", details={"product_id": product_id})


class TestSqlCatalog:

    def test_lookup(self, db_session, ctx_a, product_a):
        item = get_catalog().lookup(ctx_a, product_a.id)

        assert item.sku == "WIDGET-A"
        assert item.price_cents == 1000
        assert item.cost_cents == 400
        assert item.tax_rate_bps == 1000
        assert item.track_inventory is True

    def test_other_tenant_product_not_found(self, db_session, ctx_a, product_b):
        with pytest.raises(NotFoundError):
            get_catalog().lookup(ctx_a, product_b.id)

    def test_inactive_product_rejected(self, db_session, ctx_a, make_product):
        product = make_product("RETIRED", is_active=False)
        with pytest.raises(ValidationError):
            get_catalog().lookup(ctx_a, product.id)


class TestCreateProduct:

    def test_create(self, db_session, tenant_a):
        product = create_product(tenant_a.id, sku=" TEA-1 ", name="Green tea", price_cents=450, tax_rate_bps=500)
        assert product.sku == "TEA-1"
        assert product.is_active

    def test_duplicate_sku_conflicts(self, db_session, tenant_a, tenant_b):
        create_product(tenant_a.id, sku="TEA-1", name="Green tea", price_cents=450)
        create_product(tenant_b.id, sku="TEA-1", name="Green tea", price_cents=450)

        with pytest.raises(ConflictError):
            create_product(tenant_a.id, sku="TEA-1", name="Other tea", price_cents=500)

    def test_bad_tax_rate(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            create_product(tenant_a.id, sku="X", name="X", price_cents=1, tax_rate_bps=10001)


class TestReplacementCatalog:

    def test_sale_priced_from_replacement_catalog(self, app, db_session, ctx_a, store_a, sell):
        item = CatalogItem(
            product_id=4242, sku="EXT-1", name="External item", price_cents=2500,
            cost_cents=1000, tax_rate_bps=0, track_inventory=False,
        )
        app.extensions[CATALOG_EXTENSION_KEY] = FixedCatalog([item])

        class _Product:
            id = 4242

        receipt = sell(_Product)

        assert receipt.total_cents == 2500
        assert receipt.lines[0].sku == "EXT-1"
        assert db_session.query(StockLedgerEntry).count() == 0
