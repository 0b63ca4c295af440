from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .guards import register_append_only


# Reference types carried by ledger entries
REF_SALE = "SALE"
REF_RETURN = "RETURN"
REF_VOID = "VOID"
REF_GRN = "GRN"
REF_TRANSFER_OUT = "TRANSFER_OUT"
REF_TRANSFER_IN = "TRANSFER_IN"
REF_ADJUSTMENT = "ADJUSTMENT"
REF_STOCK_COUNT = "STOCK_COUNT"

REFERENCE_TYPES = (
    REF_SALE,
    REF_RETURN,
    REF_VOID,
    REF_GRN,
    REF_TRANSFER_OUT,
    REF_TRANSFER_IN,
    REF_ADJUSTMENT,
    REF_STOCK_COUNT,
)


class StockLevel(db.Model):
    """
    Current on-hand projection, one row per (tenant, store, product).

    INVARIANT: quantity equals the quantity_after of the latest
    StockLedgerEntry for the same key. The row is only ever written by
    inventory_service.post_stock_movement, in the same transaction as the
    ledger entry, while holding a row lock.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "store_id", "product_id", name="uq_stock_levels_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    avg_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    last_received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reserved_quantity": self.reserved_quantity,
            "available_quantity": self.available_quantity,
            "avg_cost_cents": self.avg_cost_cents,
            "last_received_at": to_utc_z(self.last_received_at),
            "last_sold_at": to_utc_z(self.last_sold_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLedgerEntry(db.Model):
    """
    Append-only journal of stock quantity changes.

    IMMUTABLE: no update or delete path exists. The ORM flush and bulk
    UPDATE/DELETE statements against this table raise AppendOnlyError.

    Chain invariant per (tenant, store, product), ordered by id:
    entry[i].quantity_after == entry[i + 1].quantity_before.
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.Index("ix_stock_ledger_key", "tenant_id", "store_id", "product_id", "id"),
        db.Index("ix_stock_ledger_reference", "tenant_id", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    cost_cents = db.Column(db.Integer, nullable=True)

    reference_type = db.Column(db.String(32), nullable=False, index=True)
    reference_id = db.Column(db.String(64), nullable=False)
    reference_line_id = db.Column(db.String(64), nullable=True)

    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity_delta": self.quantity_delta,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "cost_cents": self.cost_cents,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "reference_line_id": self.reference_line_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }


register_append_only(StockLedgerEntry)
