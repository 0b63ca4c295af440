from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


RECEIPT_TYPE_SALE = "sale"
RECEIPT_TYPE_REFUND = "refund"
RECEIPT_TYPE_EXCHANGE = "exchange"

RECEIPT_STATUS_PARKED = "parked"
RECEIPT_STATUS_COMPLETED = "completed"
RECEIPT_STATUS_VOIDED = "voided"
RECEIPT_STATUS_REFUNDED = "refunded"


class Receipt(db.Model):
    """
    Persisted record of one sale or refund transaction.

    INVARIANTS:
    - total_cents = subtotal_cents - discount_cents + tax_cents
    - change_cents = max(0, paid_cents - total_cents)

    Refund receipts store negative quantities and amounts so ledger and shift
    arithmetic stay uniform with sales.

    IMMUTABLE: only status moves after creation
    (completed -> refunded, completed -> voided). Receipts are never deleted.
    """
    __tablename__ = "receipts"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "store_id", "receipt_number", name="uq_receipts_store_number"),
        db.UniqueConstraint("tenant_id", "idempotency_key", name="uq_receipts_tenant_idempotency_key"),
        db.Index("ix_receipts_tenant_store_created", "tenant_id", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    # Human-readable number, e.g. "RCP-20261018-000042"
    receipt_number = db.Column(db.String(64), nullable=False)

    type = db.Column(db.String(16), nullable=False, default=RECEIPT_TYPE_SALE, index=True)
    status = db.Column(db.String(16), nullable=False, default=RECEIPT_STATUS_COMPLETED, index=True)

    # Totals (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    # Detail collections (tagged variants serialized to JSON)
    discount_details = db.Column(db.JSON, nullable=False, default=list)
    tax_details = db.Column(db.JSON, nullable=False, default=list)
    payments = db.Column(db.JSON, nullable=False, default=list)

    original_receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=True, index=True)

    idempotency_key = db.Column(db.String(100), nullable=True)
    offline_created = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    # Void audit trail
    voided_by = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    receipt_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "SaleLine",
        back_populates="receipt",
        order_by="SaleLine.line_number",
        lazy=True,
    )
    original_receipt = db.relationship("Receipt", remote_side=[id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "shift_id": self.shift_id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "receipt_number": self.receipt_number,
            "type": self.type,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "change_cents": self.change_cents,
            "discount_details": self.discount_details or [],
            "tax_details": self.tax_details or [],
            "payments": self.payments or [],
            "original_receipt_id": self.original_receipt_id,
            "idempotency_key": self.idempotency_key,
            "offline_created": self.offline_created,
            "notes": self.notes,
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "receipt_date": to_utc_z(self.receipt_date),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """
    Line item on a receipt.

    INVARIANT: line_total_cents = quantity * unit_price_cents
                                  - discount_cents + tax_cents

    cost_cents is a snapshot copied from the catalog at sale time; reports
    must never re-read live cost for historical lines.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("receipt_id", "line_number", name="uq_sale_lines_receipt_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("receipts.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    discount_type = db.Column(db.String(16), nullable=True)  # percent, fixed
    discount_value = db.Column(db.Integer, nullable=False, default=0)  # bps for percent, cents for fixed
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    line_total_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    promotion_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    # Sale lines: units already refunded. Refund lines: the line they reverse.
    refunded_quantity = db.Column(db.Integer, nullable=False, default=0)
    original_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    receipt = db.relationship("Receipt", back_populates="lines")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
            "cost_cents": self.cost_cents,
            "promotion_id": self.promotion_id,
            "notes": self.notes,
            "refunded_quantity": self.refunded_quantity,
            "original_line_id": self.original_line_id,
        }


class ParkedSale(db.Model):
    """
    Cart snapshot held for later recall.

    No stock or shift effect: nothing is priced or posted until the cart is
    recalled and submitted as a sale. Rows expire after PARKED_SALE_TTL_HOURS.
    """
    __tablename__ = "parked_sales"
    __table_args__ = (
        db.Index("ix_parked_sales_tenant_store_expires", "tenant_id", "store_id", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    cashier_id = db.Column(db.Integer, nullable=False)
    customer_id = db.Column(db.Integer, nullable=True)

    name = db.Column(db.String(100), nullable=False, default="Parked Sale")
    items = db.Column(db.JSON, nullable=False, default=list)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    parked_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "name": self.name,
            "items": self.items or [],
            "item_count": len(self.items or []),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "notes": self.notes,
            "parked_at": to_utc_z(self.parked_at),
            "expires_at": to_utc_z(self.expires_at),
        }
