"""
Tenant context and scoping helpers.

Every core call receives an explicit, immutable TenantContext instead of
reading ambient request state. Store ids coming from client input must be
validated against ctx.tenant_id before use; a store owned by another tenant
is reported exactly like a missing one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Store


@dataclass(frozen=True)
class TenantContext:
    """Who is acting, on behalf of which tenant."""
    tenant_id: int
    user_id: int
    store_id: int | None = None
    permissions: frozenset = field(default_factory=frozenset)

    def __post_init__(self):
        if not self.tenant_id:
            raise ValidationError("tenant_id is required")
        if not self.user_id:
            raise ValidationError("user_id is required")


def require_store_in_tenant(ctx: TenantContext, store_id: int) -> Store:
    """
    Validate that a store belongs to the caller's tenant.

    Raises NotFoundError if the store doesn't exist or belongs to another
    tenant. Cross-tenant attempts are logged.
    """
    if not store_id:
        raise ValidationError("store_id is required")

    store = db.session.query(Store).filter_by(id=store_id).first()
    if store is None:
        raise NotFoundError("Store not found", details={"store_id": store_id})

    if store.tenant_id != ctx.tenant_id:
        current_app.logger.warning(
            "Cross-tenant store access denied: user %s tenant %s store %s (tenant %s)",
            ctx.user_id, ctx.tenant_id, store_id, store.tenant_id,
        )
        raise NotFoundError("Store not found", details={"store_id": store_id})

    return store


def get_tenant_stores(ctx: TenantContext) -> list[Store]:
    return db.session.query(Store).filter_by(tenant_id=ctx.tenant_id).order_by(Store.id).all()
