from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .guards import register_append_only


SHIFT_STATUS_OPEN = "open"
SHIFT_STATUS_CLOSED = "closed"

MOVEMENT_CASH_IN = "cash_in"
MOVEMENT_CASH_OUT = "cash_out"
MOVEMENT_DROP = "drop"
MOVEMENT_PICKUP = "pickup"

# Canonical drawer direction for each movement type
MOVEMENT_TYPES_IN = (MOVEMENT_CASH_IN, MOVEMENT_DROP)
MOVEMENT_TYPES_OUT = (MOVEMENT_CASH_OUT, MOVEMENT_PICKUP)
MOVEMENT_TYPES = MOVEMENT_TYPES_IN + MOVEMENT_TYPES_OUT


class Shift(db.Model):
    """
    A cashier's cash-drawer session.

    LIFECYCLE:
    - open: running totals are incremented by every completed sale/refund
    - closed: terminal; totals frozen, reconciliation fields computed

    At most one open shift per (tenant, cashier). The partial unique index
    makes that hold at commit time even if two opens race past the pre-check.

    expected_cash_cents and cash_difference_cents stay NULL until close.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_open_cashier",
            "tenant_id",
            "cashier_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        db.UniqueConstraint("tenant_id", "store_id", "shift_number", name="uq_shifts_store_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    register_id = db.Column(db.String(50), nullable=True)

    shift_number = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    # Cash tracking (cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    cash_difference_cents = db.Column(db.Integer, nullable=True)

    # Running totals
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_payments_cents = db.Column(db.Integer, nullable=False, default=0)
    total_card_payments_cents = db.Column(db.Integer, nullable=False, default=0)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    movements = db.relationship(
        "ShiftCashMovement",
        back_populates="shift",
        order_by="ShiftCashMovement.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SHIFT_STATUS_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "register_id": self.register_id,
            "shift_number": self.shift_number,
            "status": self.status,
            "opening_cash_cents": self.opening_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_refunds_cents": self.total_refunds_cents,
            "total_cash_payments_cents": self.total_cash_payments_cents,
            "total_card_payments_cents": self.total_card_payments_cents,
            "transaction_count": self.transaction_count,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "closed_by": self.closed_by,
        }


class ShiftCashMovement(db.Model):
    """
    Cash added to or removed from the drawer outside of a sale.

    amount_cents is always positive; the direction comes from the type
    (see MOVEMENT_TYPES_IN / MOVEMENT_TYPES_OUT). Append-only.
    """
    __tablename__ = "shift_cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("Shift", back_populates="movements")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "notes": self.notes,
            "approved_by": self.approved_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


register_append_only(ShiftCashMovement)
