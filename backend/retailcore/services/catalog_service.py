"""
Catalog lookup boundary.

The sale engine only needs a read-only view of a product at the moment it is
rung up. CatalogLookup is that seam; SqlCatalogLookup reads the local products
table and is the default. An app can install another implementation under
app.extensions["retailcore.catalog"] (e.g. a remote catalog client).
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from .tenant_service import TenantContext


CATALOG_EXTENSION_KEY = "retailcore.catalog"


@dataclass(frozen=True)
class CatalogItem:
    product_id: int
    sku: str
    name: str
    price_cents: int
    cost_cents: int
    tax_rate_bps: int
    track_inventory: bool = True
    allow_negative_stock: bool = False


class CatalogLookup:
    """Resolve a product id to a CatalogItem, scoped to the caller's tenant."""

    def lookup(self, ctx: TenantContext, product_id: int) -> CatalogItem:
        raise NotImplementedError


class SqlCatalogLookup(CatalogLookup):

    def lookup(self, ctx: TenantContext, product_id: int) -> CatalogItem:
        product = (
            db.session.query(Product)
            .filter_by(id=product_id, tenant_id=ctx.tenant_id)
            .first()
        )
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        if not product.is_active:
            raise ValidationError("Product is inactive", details={"product_id": product_id})

        return CatalogItem(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            price_cents=product.price_cents,
            cost_cents=product.cost_cents or 0,
            tax_rate_bps=product.tax_rate_bps or 0,
            track_inventory=bool(product.track_inventory),
            allow_negative_stock=bool(product.allow_negative_stock),
        )


def get_catalog() -> CatalogLookup:
    catalog = current_app.extensions.get(CATALOG_EXTENSION_KEY)
    if catalog is None:
        catalog = SqlCatalogLookup()
        current_app.extensions[CATALOG_EXTENSION_KEY] = catalog
    return catalog


def create_product(
    tenant_id: int,
    *,
    sku: str,
    name: str,
    price_cents: int,
    cost_cents: int = 0,
    tax_rate_bps: int = 0,
    track_inventory: bool = True,
    allow_negative_stock: bool = False,
) -> Product:
    """Create a product row. Used by the CLI and fixtures; catalog CRUD lives elsewhere."""
    sku = (sku or "").strip()
    if not sku:
        raise ValidationError("sku is required")
    if not (name or "").strip():
        raise ValidationError("name is required")
    if price_cents is None or price_cents < 0:
        raise ValidationError("price_cents must be >= 0")
    if cost_cents is None or cost_cents < 0:
        raise ValidationError("cost_cents must be >= 0")
    if tax_rate_bps is None or not (0 <= tax_rate_bps <= 10000):
        raise ValidationError("tax_rate_bps must be between 0 and 10000")

    existing = db.session.query(Product).filter_by(tenant_id=tenant_id, sku=sku).first()
    if existing:
        raise ConflictError("SKU already exists", details={"sku": sku})

    product = Product(
        tenant_id=tenant_id,
        sku=sku,
        name=name.strip(),
        price_cents=price_cents,
        cost_cents=cost_cents,
        tax_rate_bps=tax_rate_bps,
        track_inventory=track_inventory,
        allow_negative_stock=allow_negative_stock,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product
