"""
Shift (cash drawer session) management.

DESIGN PRINCIPLES:
- One open shift per (tenant, cashier)
- Shifts are immutable once closed
- Running totals move in the same transaction as the sale/refund that
  caused them
- Expected cash is only computed at close:
      opening + cash payments + (cash_in + drop) - (cash_out + pickup)
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Receipt, Shift, ShiftCashMovement
from ..models.sales import RECEIPT_TYPE_REFUND, RECEIPT_TYPE_SALE
from ..models.shifts import (
    MOVEMENT_TYPES,
    MOVEMENT_TYPES_IN,
    MOVEMENT_TYPES_OUT,
    SHIFT_STATUS_CLOSED,
    SHIFT_STATUS_OPEN,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .document_service import SHIFT_DOCUMENT, next_document_number
from .sinks import (
    ACTION_CASH_MOVEMENT,
    ACTION_SHIFT_CLOSED,
    ACTION_SHIFT_OPENED,
    EVENT_SHIFT_CLOSED,
    AuditEvent,
    QueuedEvent,
    emit,
)
from .tenant_service import TenantContext, require_store_in_tenant


def _require_cents(value, field_name: str, *, positive: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer number of cents", details={field_name: value})
    if positive and value <= 0:
        raise ValidationError(f"{field_name} must be positive", details={field_name: value})
    if not positive and value < 0:
        raise ValidationError(f"{field_name} cannot be negative", details={field_name: value})


# =============================================================================
# Locking / running totals (used inside sale, refund and void transactions)
# =============================================================================

def lock_shift(ctx: TenantContext, shift_id: int) -> Shift:
    shift = lock_for_update(
        db.session.query(Shift).filter_by(id=shift_id, tenant_id=ctx.tenant_id)
    ).first()
    if shift is None:
        raise NotFoundError("Shift not found", details={"shift_id": shift_id})
    return shift


def lock_open_shift(ctx: TenantContext, shift_id: int, store_id: int | None = None) -> Shift:
    """Lock a shift that must be open (and in store_id, when given)."""
    shift = lock_shift(ctx, shift_id)
    if shift.status != SHIFT_STATUS_OPEN:
        raise ConflictError("Shift is not open", details={"shift_id": shift_id, "status": shift.status})
    if store_id is not None and shift.store_id != store_id:
        raise ValidationError(
            "Shift belongs to a different store",
            details={"shift_id": shift_id, "shift_store_id": shift.store_id, "store_id": store_id},
        )
    return shift


def apply_sale_to_shift(shift: Shift, *, total_cents: int, net_cash_cents: int, card_cents: int) -> None:
    shift.total_sales_cents = (shift.total_sales_cents or 0) + total_cents
    shift.total_cash_payments_cents = (shift.total_cash_payments_cents or 0) + net_cash_cents
    shift.total_card_payments_cents = (shift.total_card_payments_cents or 0) + card_cents
    shift.transaction_count = (shift.transaction_count or 0) + 1


def apply_refund_to_shift(shift: Shift, *, refund_cents: int, cash_cents: int, card_cents: int) -> None:
    """refund_cents, cash_cents and card_cents are positive amounts handed back."""
    shift.total_refunds_cents = (shift.total_refunds_cents or 0) + refund_cents
    shift.total_cash_payments_cents = (shift.total_cash_payments_cents or 0) - cash_cents
    shift.total_card_payments_cents = (shift.total_card_payments_cents or 0) - card_cents
    shift.transaction_count = (shift.transaction_count or 0) + 1


def reverse_sale_on_shift(shift: Shift, *, total_cents: int, net_cash_cents: int, card_cents: int) -> None:
    shift.total_sales_cents = (shift.total_sales_cents or 0) - total_cents
    shift.total_cash_payments_cents = (shift.total_cash_payments_cents or 0) - net_cash_cents
    shift.total_card_payments_cents = (shift.total_card_payments_cents or 0) - card_cents
    shift.transaction_count = max(0, (shift.transaction_count or 0) - 1)


def movement_totals(shift_id: int) -> tuple[int, int]:
    """(cash added, cash removed) from the shift's cash movements."""
    rows = (
        db.session.query(ShiftCashMovement.type, func.coalesce(func.sum(ShiftCashMovement.amount_cents), 0))
        .filter(ShiftCashMovement.shift_id == shift_id)
        .group_by(ShiftCashMovement.type)
        .all()
    )
    cash_in = sum(total for mtype, total in rows if mtype in MOVEMENT_TYPES_IN)
    cash_out = sum(total for mtype, total in rows if mtype in MOVEMENT_TYPES_OUT)
    return int(cash_in), int(cash_out)


def compute_expected_cash(shift: Shift) -> int:
    cash_in, cash_out = movement_totals(shift.id)
    return (shift.opening_cash_cents or 0) + (shift.total_cash_payments_cents or 0) + cash_in - cash_out


# =============================================================================
# Shift lifecycle
# =============================================================================

def get_open_shift(ctx: TenantContext) -> Shift | None:
    """The acting cashier's open shift, if any."""
    return (
        db.session.query(Shift)
        .filter_by(tenant_id=ctx.tenant_id, cashier_id=ctx.user_id, status=SHIFT_STATUS_OPEN)
        .first()
    )


def open_shift(
    ctx: TenantContext,
    *,
    store_id: int,
    opening_cash_cents: int,
    register_id: str | None = None,
    notes: str | None = None,
) -> Shift:
    """
    Open a shift for the acting cashier.

    Raises:
        ConflictError: if the cashier already has an open shift
    """
    _require_cents(opening_cash_cents, "opening_cash_cents")
    require_store_in_tenant(ctx, store_id)

    def _op():
        existing = lock_for_update(
            db.session.query(Shift).filter_by(
                tenant_id=ctx.tenant_id, cashier_id=ctx.user_id, status=SHIFT_STATUS_OPEN
            )
        ).first()
        if existing:
            raise ConflictError(
                "Cashier already has an open shift",
                details={"shift_id": existing.id, "shift_number": existing.shift_number},
            )

        shift = Shift(
            tenant_id=ctx.tenant_id,
            store_id=store_id,
            cashier_id=ctx.user_id,
            register_id=register_id,
            shift_number=next_document_number(
                tenant_id=ctx.tenant_id, store_id=store_id, document=SHIFT_DOCUMENT
            ),
            status=SHIFT_STATUS_OPEN,
            opening_cash_cents=opening_cash_cents,
            total_sales_cents=0,
            total_refunds_cents=0,
            total_cash_payments_cents=0,
            total_card_payments_cents=0,
            transaction_count=0,
            notes=notes,
            opened_at=utcnow(),
        )
        db.session.add(shift)
        db.session.flush()
        return shift

    try:
        shift = run_in_transaction(_op)
    except IntegrityError as exc:
        # Lost the race to the open-shift unique index
        raise ConflictError("Cashier already has an open shift") from exc

    current_app.logger.info(
        "Shift %s opened by user %s in store %s", shift.shift_number, ctx.user_id, store_id
    )
    emit(ctx, AuditEvent(ACTION_SHIFT_OPENED, "shift", shift.id, store_id=store_id, after_data=shift.to_dict()))
    return shift


def record_cash_movement(
    ctx: TenantContext,
    *,
    shift_id: int,
    movement_type: str,
    amount_cents: int,
    reason: str | None = None,
    notes: str | None = None,
    approved_by: int | None = None,
) -> ShiftCashMovement:
    """Record cash added to / removed from an open shift's drawer."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            "Invalid cash movement type",
            details={"type": movement_type, "allowed": list(MOVEMENT_TYPES)},
        )
    _require_cents(amount_cents, "amount_cents", positive=True)

    def _op():
        shift = lock_open_shift(ctx, shift_id)
        movement = ShiftCashMovement(
            tenant_id=ctx.tenant_id,
            shift_id=shift.id,
            type=movement_type,
            amount_cents=amount_cents,
            reason=reason,
            notes=notes,
            approved_by=approved_by,
            created_by=ctx.user_id,
        )
        db.session.add(movement)
        db.session.flush()
        return movement

    movement = run_in_transaction(_op)
    current_app.logger.info(
        "Cash movement %s of %s cents on shift %s by user %s", movement_type, amount_cents, shift_id, ctx.user_id
    )
    emit(ctx, AuditEvent(ACTION_CASH_MOVEMENT, "shift", shift_id, after_data=movement.to_dict()))
    return movement


def close_shift(
    ctx: TenantContext,
    *,
    shift_id: int,
    closing_cash_cents: int,
    notes: str | None = None,
) -> Shift:
    """
    Close an open shift and reconcile the drawer.

    expected   = opening + cash payments + cash_in - cash_out
    difference = closing - expected   (negative = short, positive = over)
    """
    if closing_cash_cents is None:
        raise ValidationError("closing_cash_cents is required")
    _require_cents(closing_cash_cents, "closing_cash_cents")

    def _op():
        shift = lock_shift(ctx, shift_id)
        if shift.status == SHIFT_STATUS_CLOSED:
            raise ConflictError("Shift is already closed", details={"shift_id": shift_id})

        before = shift.to_dict()
        expected = compute_expected_cash(shift)

        shift.closing_cash_cents = closing_cash_cents
        shift.expected_cash_cents = expected
        shift.cash_difference_cents = closing_cash_cents - expected
        shift.status = SHIFT_STATUS_CLOSED
        shift.closed_at = utcnow()
        shift.closed_by = ctx.user_id
        if notes:
            shift.notes = f"{shift.notes}\n{notes}" if shift.notes else notes
        db.session.flush()
        return shift, before

    shift, before = run_in_transaction(_op)
    after = shift.to_dict()
    current_app.logger.info(
        "Shift %s closed: expected %s, counted %s, difference %s",
        shift.shift_number, shift.expected_cash_cents, shift.closing_cash_cents, shift.cash_difference_cents,
    )
    emit(
        ctx,
        AuditEvent(ACTION_SHIFT_CLOSED, "shift", shift.id, store_id=shift.store_id, before_data=before, after_data=after),
        QueuedEvent(EVENT_SHIFT_CLOSED, "shift", shift.id, after),
    )
    return shift


# =============================================================================
# Reads
# =============================================================================

def get_shift(ctx: TenantContext, shift_id: int) -> Shift:
    shift = db.session.query(Shift).filter_by(id=shift_id, tenant_id=ctx.tenant_id).first()
    if shift is None:
        raise NotFoundError("Shift not found", details={"shift_id": shift_id})
    return shift


def get_shift_summary(ctx: TenantContext, shift_id: int) -> dict:
    """Shift, its cash movements and receipt counts by type/status."""
    shift = get_shift(ctx, shift_id)

    counts = (
        db.session.query(Receipt.type, Receipt.status, func.count(Receipt.id))
        .filter(Receipt.tenant_id == ctx.tenant_id, Receipt.shift_id == shift.id)
        .group_by(Receipt.type, Receipt.status)
        .all()
    )
    receipt_counts: dict[str, int] = {}
    for rtype, status, count in counts:
        receipt_counts[f"{rtype}:{status}"] = count

    cash_in, cash_out = movement_totals(shift.id)
    expected = shift.expected_cash_cents
    if expected is None:
        expected_so_far = compute_expected_cash(shift)
    else:
        expected_so_far = expected

    return {
        "shift": shift.to_dict(),
        "movements": [m.to_dict() for m in shift.movements],
        "cash_in_cents": cash_in,
        "cash_out_cents": cash_out,
        "expected_cash_so_far_cents": expected_so_far,
        "sale_count": sum(c for (rtype, _s, c) in counts if rtype == RECEIPT_TYPE_SALE),
        "refund_count": sum(c for (rtype, _s, c) in counts if rtype == RECEIPT_TYPE_REFUND),
        "receipt_counts": receipt_counts,
    }
