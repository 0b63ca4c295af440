# Overview: Park, recall, list and purge held carts. Parking has no stock or shift effect.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import ParkedSale
from ..time_utils import utcnow
from .catalog_service import get_catalog
from .concurrency import lock_for_update, run_in_transaction
from .pricing import CartLine, cart_line_to_dict, compute_line_discount, parse_cart_line
from .sinks import ACTION_SALE_PARKED, ACTION_SALE_RECALLED, AuditEvent, emit
from .tenant_service import TenantContext, require_store_in_tenant


DEFAULT_PARKED_NAME = "Parked Sale"


def park_sale(
    ctx: TenantContext,
    *,
    store_id: int,
    items: list[CartLine],
    customer_id: int | None = None,
    name: str | None = None,
    notes: str | None = None,
) -> ParkedSale:
    """Snapshot a cart for later recall. Subtotal/discount are informational."""
    if not items:
        raise ValidationError("Cannot park an empty cart")
    require_store_in_tenant(ctx, store_id)

    catalog = get_catalog()
    subtotal = 0
    discount = 0
    for line in items:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )
        unit_price = line.unit_price_cents
        if unit_price is None:
            unit_price = catalog.lookup(ctx, line.product_id).price_cents
        gross = line.quantity * unit_price
        subtotal += gross
        discount += compute_line_discount(gross, line.discount)

    ttl_hours = current_app.config.get("PARKED_SALE_TTL_HOURS", 24)
    now = utcnow()

    def _op():
        parked = ParkedSale(
            tenant_id=ctx.tenant_id,
            store_id=store_id,
            cashier_id=ctx.user_id,
            customer_id=customer_id,
            name=(name or "").strip() or DEFAULT_PARKED_NAME,
            items=[cart_line_to_dict(line) for line in items],
            subtotal_cents=subtotal,
            discount_cents=discount,
            notes=notes,
            parked_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )
        db.session.add(parked)
        db.session.flush()
        return parked

    parked = run_in_transaction(_op)
    current_app.logger.info("Cart parked as %s in store %s by user %s", parked.id, store_id, ctx.user_id)
    emit(ctx, AuditEvent(ACTION_SALE_PARKED, "parked_sale", parked.id, store_id=store_id, after_data=parked.to_dict()))
    return parked


def recall_sale(ctx: TenantContext, parked_sale_id: int) -> dict:
    """
    Return the parked cart and delete the parked row.

    The returned "items" are CartLine objects ready for create_sale.
    """
    def _op():
        parked = lock_for_update(
            db.session.query(ParkedSale).filter(
                ParkedSale.id == parked_sale_id,
                ParkedSale.tenant_id == ctx.tenant_id,
                ParkedSale.expires_at > utcnow(),
            )
        ).first()
        if parked is None:
            raise NotFoundError("Parked sale not found or expired", details={"parked_sale_id": parked_sale_id})
        data = parked.to_dict()
        db.session.delete(parked)
        return data

    data = run_in_transaction(_op)
    current_app.logger.info("Parked sale %s recalled by user %s", parked_sale_id, ctx.user_id)
    emit(ctx, AuditEvent(ACTION_SALE_RECALLED, "parked_sale", parked_sale_id, store_id=data["store_id"], before_data=data))

    data["items"] = [parse_cart_line(item) for item in data["items"]]
    return data


def list_parked_sales(ctx: TenantContext, store_id: int | None = None) -> list[ParkedSale]:
    """Unexpired parked carts, newest first."""
    query = db.session.query(ParkedSale).filter(
        ParkedSale.tenant_id == ctx.tenant_id,
        ParkedSale.expires_at > utcnow(),
    )
    if store_id is not None:
        require_store_in_tenant(ctx, store_id)
        query = query.filter(ParkedSale.store_id == store_id)
    return query.order_by(ParkedSale.parked_at.desc(), ParkedSale.id.desc()).all()


def purge_expired_parked_sales(now=None) -> int:
    """Delete expired parked carts across all tenants. Returns rows removed."""
    cutoff = now or utcnow()

    def _op():
        return (
            db.session.query(ParkedSale)
            .filter(ParkedSale.expires_at <= cutoff)
            .delete(synchronize_session=False)
        )

    count = run_in_transaction(_op)
    if count:
        current_app.logger.info("Purged %s expired parked sale(s)", count)
    return count
