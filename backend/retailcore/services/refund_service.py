"""
Refund processing against completed sales.

DESIGN PRINCIPLES:
- A refund is a new receipt of type "refund" linked by original_receipt_id;
  its quantities and amounts are negative
- Refunded amounts are the original line's amounts pro rata by quantity,
  rounded on the cumulative refunded quantity, so every part is within a
  cent of pro rata and a line refunded in several parts sums back to the
  original to the cent
- Cumulative refunded quantity is tracked per original line; over-refund is
  a conflict, not a validation error
- Stock comes back through RETURN ledger entries at the original cost
  snapshot, only for lines that were posted to the ledger at sale time
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Receipt, SaleLine, StockLedgerEntry
from ..models.inventory import REF_RETURN, REF_SALE
from ..models.sales import (
    RECEIPT_STATUS_COMPLETED,
    RECEIPT_STATUS_REFUNDED,
    RECEIPT_TYPE_REFUND,
    RECEIPT_TYPE_SALE,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .document_service import RECEIPT_DOCUMENT, next_document_number
from .inventory_service import post_stock_movement
from .pricing import (
    DiscountKind,
    PaymentMethod,
    PaymentTender,
    div_round_half_up,
    payment_to_dict,
    summarize_tenders,
)
from .shift_service import apply_refund_to_shift, lock_open_shift
from .sinks import (
    ACTION_REFUND_ISSUED,
    EVENT_RECEIPT_REFUNDED,
    AuditEvent,
    QueuedEvent,
    emit,
)
from .tenant_service import TenantContext


REFUNDABLE_STATUSES = (RECEIPT_STATUS_COMPLETED, RECEIPT_STATUS_REFUNDED)


@dataclass(frozen=True)
class RefundLineRequest:
    line_id: int
    quantity: int


@dataclass(frozen=True)
class _RefundAmounts:
    original: SaleLine
    quantity: int
    gross_cents: int
    discount_cents: int
    tax_cents: int

    @property
    def total_cents(self) -> int:
        return self.gross_cents - self.discount_cents + self.tax_cents


# =============================================================================
# Helpers
# =============================================================================

def _prior_refunds(ctx: TenantContext, original_receipt_id: int) -> list[Receipt]:
    return (
        db.session.query(Receipt)
        .filter_by(tenant_id=ctx.tenant_id, original_receipt_id=original_receipt_id, type=RECEIPT_TYPE_REFUND)
        .all()
    )


def _ledgered_line_ids(ctx: TenantContext, receipt_id: int) -> set[str]:
    rows = (
        db.session.query(StockLedgerEntry.reference_line_id)
        .filter_by(tenant_id=ctx.tenant_id, reference_type=REF_SALE, reference_id=str(receipt_id))
        .all()
    )
    return {row[0] for row in rows}


def _cumulative_share(amount_cents: int, before: int, after: int, whole: int) -> int:
    """
    The slice of `amount_cents` between cumulative shares before/whole and
    after/whole. Rounding never accumulates: slices of one amount always
    sum to round(amount * after / whole), and to the amount itself once
    after == whole.
    """
    return div_round_half_up(amount_cents * after, whole) - div_round_half_up(amount_cents * before, whole)


def _line_refund_amounts(line: SaleLine, quantity: int) -> _RefundAmounts:
    """Positive refund amounts for `quantity` units of an original line."""
    before = line.refunded_quantity
    after = before + quantity
    gross = quantity * line.unit_price_cents
    discount = _cumulative_share(line.discount_cents, before, after, line.quantity)
    tax = _cumulative_share(line.tax_cents, before, after, line.quantity)

    return _RefundAmounts(
        original=line, quantity=quantity, gross_cents=gross, discount_cents=discount, tax_cents=tax
    )


def _cart_discount_share(
    original: Receipt,
    refunded: list[_RefundAmounts],
    prior_refunds: list[Receipt],
    completes_receipt: bool,
) -> int:
    """The part of the original's cart-level discount this refund gives back."""
    line_discounts = sum(line.discount_cents for line in original.lines)
    cart_discount = original.discount_cents - line_discounts
    if cart_discount <= 0:
        return 0

    if completes_receipt:
        prior_share = 0
        for refund in prior_refunds:
            prior_share -= refund.discount_cents - sum(line.discount_cents for line in refund.lines)
        return cart_discount - prior_share

    base = sum(line.line_total_cents for line in original.lines)
    if base <= 0:
        return 0
    # Refund lines are stored negative
    refunded_before = -sum(line.line_total_cents for refund in prior_refunds for line in refund.lines)
    refunded_after = refunded_before + sum(r.total_cents for r in refunded)
    return _cumulative_share(cart_discount, refunded_before, refunded_after, base)


def _validate_refund_tenders(payments: list[PaymentTender], refund_cents: int) -> list[PaymentTender]:
    if not payments:
        if refund_cents == 0:
            return []
        return [PaymentTender(method=PaymentMethod.CASH, amount_cents=refund_cents)]

    tenders = summarize_tenders(payments)
    if tenders.total_cents != refund_cents:
        raise ValidationError(
            "Refund payments must equal the refund amount",
            details={"refund_cents": refund_cents, "payments_cents": tenders.total_cents},
        )
    return list(payments)


# =============================================================================
# Refund
# =============================================================================

def process_refund(
    ctx: TenantContext,
    original_receipt_id: int,
    lines: list[RefundLineRequest],
    payments: list[PaymentTender] | None = None,
    *,
    shift_id: int | None = None,
    reason: str | None = None,
) -> Receipt:
    """
    Refund some or all units of a completed sale.

    Args:
        original_receipt_id: The sale receipt being refunded
        lines: (original line id, quantity) pairs, quantity > 0
        payments: Tenders handed back, positive amounts summing to the
            refund amount; defaults to cash for the full amount
        shift_id: Open shift to charge the refund to
        reason: Free-text note stored on the refund receipt

    Returns:
        The new refund receipt (negative quantities and amounts)

    Raises:
        NotFoundError: original receipt missing or another tenant's
        ValidationError: bad line ids/quantities or tenders
        ConflictError: voided original, over-refund, shift not open
    """
    if not lines:
        raise ValidationError("A refund requires at least one line")

    seen: set[int] = set()
    for req in lines:
        if isinstance(req.quantity, bool) or not isinstance(req.quantity, int) or req.quantity <= 0:
            raise ValidationError(
                "Refund quantity must be a positive integer",
                details={"line_id": req.line_id, "quantity": req.quantity},
            )
        if req.line_id in seen:
            raise ValidationError("Duplicate refund line", details={"line_id": req.line_id})
        seen.add(req.line_id)

    def _op():
        original = lock_for_update(
            db.session.query(Receipt).filter_by(id=original_receipt_id, tenant_id=ctx.tenant_id)
        ).first()
        if original is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": original_receipt_id})
        if original.type != RECEIPT_TYPE_SALE:
            raise ValidationError("Only sale receipts can be refunded", details={"type": original.type})
        if original.status not in REFUNDABLE_STATUSES:
            raise ConflictError(
                "Receipt cannot be refunded in its current status",
                details={"receipt_id": original.id, "status": original.status},
            )

        original_lines = {
            line.id: line
            for line in lock_for_update(
                db.session.query(SaleLine).filter_by(receipt_id=original.id, tenant_id=ctx.tenant_id)
            ).all()
        }

        refunded: list[_RefundAmounts] = []
        for req in lines:
            line = original_lines.get(req.line_id)
            if line is None:
                raise ValidationError(
                    "Line does not belong to the original receipt",
                    details={"line_id": req.line_id, "receipt_id": original.id},
                )
            if req.quantity > line.quantity:
                raise ValidationError(
                    "Refund quantity exceeds quantity sold",
                    details={"line_id": line.id, "requested": req.quantity, "sold": line.quantity},
                )
            remaining = line.quantity - line.refunded_quantity
            if req.quantity > remaining:
                raise ConflictError(
                    "Refund quantity exceeds quantity remaining",
                    details={
                        "line_id": line.id,
                        "requested": req.quantity,
                        "already_refunded": line.refunded_quantity,
                        "remaining": remaining,
                    },
                )
            refunded.append(_line_refund_amounts(line, req.quantity))

        requested = {r.original.id: r.quantity for r in refunded}
        completes_receipt = all(
            line.refunded_quantity + requested.get(line.id, 0) == line.quantity
            for line in original_lines.values()
        )
        cart_share = _cart_discount_share(
            original, refunded, _prior_refunds(ctx, original.id), completes_receipt
        )

        gross = sum(r.gross_cents for r in refunded)
        line_discount = sum(r.discount_cents for r in refunded)
        tax = sum(r.tax_cents for r in refunded)
        refund_cents = gross - line_discount - cart_share + tax
        tenders = _validate_refund_tenders(payments or [], refund_cents)
        tender_summary = summarize_tenders(tenders)

        discount_details = [
            {
                "kind": DiscountKind.LINE.value,
                "line_number": idx,
                "amount_cents": -r.discount_cents,
            }
            for idx, r in enumerate(refunded, start=1)
            if r.discount_cents
        ]
        if cart_share:
            discount_details.append({
                "kind": DiscountKind.CART.value,
                "amount_cents": -cart_share,
                "description": f"Prorated from {original.receipt_number}",
            })

        tax_by_rate: dict[int, dict] = {}
        for r in refunded:
            bucket = tax_by_rate.setdefault(
                r.original.tax_rate_bps,
                {"tax_rate_bps": r.original.tax_rate_bps, "taxable_cents": 0, "tax_cents": 0},
            )
            bucket["taxable_cents"] -= r.gross_cents - r.discount_cents
            bucket["tax_cents"] -= r.tax_cents

        refund = Receipt(
            tenant_id=ctx.tenant_id,
            store_id=original.store_id,
            shift_id=shift_id,
            cashier_id=ctx.user_id,
            customer_id=original.customer_id,
            receipt_number=next_document_number(
                tenant_id=ctx.tenant_id, store_id=original.store_id, document=RECEIPT_DOCUMENT
            ),
            type=RECEIPT_TYPE_REFUND,
            status=RECEIPT_STATUS_COMPLETED,
            subtotal_cents=-gross,
            discount_cents=-(line_discount + cart_share),
            tax_cents=-tax,
            total_cents=-refund_cents,
            paid_cents=-refund_cents,
            change_cents=0,
            discount_details=discount_details,
            tax_details=[tax_by_rate[rate] for rate in sorted(tax_by_rate)],
            payments=[payment_to_dict(t, sign=-1) for t in tenders],
            original_receipt_id=original.id,
            notes=reason,
            receipt_date=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()

        ledgered = _ledgered_line_ids(ctx, original.id)
        refund_lines = []
        for idx, r in enumerate(refunded, start=1):
            src = r.original
            refund_line = SaleLine(
                tenant_id=ctx.tenant_id,
                receipt_id=refund.id,
                line_number=idx,
                product_id=src.product_id,
                sku=src.sku,
                name=src.name,
                quantity=-r.quantity,
                unit_price_cents=src.unit_price_cents,
                discount_type=src.discount_type,
                discount_value=src.discount_value,
                discount_cents=-r.discount_cents,
                tax_rate_bps=src.tax_rate_bps,
                tax_cents=-r.tax_cents,
                line_total_cents=-r.total_cents,
                cost_cents=src.cost_cents,
                promotion_id=src.promotion_id,
                refunded_quantity=0,
                original_line_id=src.id,
            )
            db.session.add(refund_line)
            refund_lines.append((refund_line, r))
            src.refunded_quantity = src.refunded_quantity + r.quantity
        db.session.flush()

        for refund_line, r in sorted(refund_lines, key=lambda pair: (pair[1].original.product_id, pair[0].line_number)):
            if str(r.original.id) not in ledgered:
                continue
            post_stock_movement(
                ctx,
                store_id=original.store_id,
                product_id=r.original.product_id,
                quantity_delta=r.quantity,
                reference_type=REF_RETURN,
                reference_id=str(refund.id),
                reference_line_id=str(refund_line.id),
                cost_cents=r.original.cost_cents,
                allow_negative=True,
                note=reason,
            )

        original.status = RECEIPT_STATUS_REFUNDED

        if shift_id is not None:
            shift = lock_open_shift(ctx, shift_id, store_id=original.store_id)
            apply_refund_to_shift(
                shift,
                refund_cents=refund_cents,
                cash_cents=tender_summary.cash_cents,
                card_cents=tender_summary.card_cents,
            )

        db.session.flush()
        return refund

    refund = run_in_transaction(_op)
    data = refund.to_dict(include_lines=True)
    current_app.logger.info(
        "Refund %s issued against receipt %s: %s cents",
        refund.receipt_number, original_receipt_id, -refund.total_cents,
    )
    emit(
        ctx,
        AuditEvent(ACTION_REFUND_ISSUED, "receipt", refund.id, store_id=refund.store_id, after_data=data),
        QueuedEvent(EVENT_RECEIPT_REFUNDED, "receipt", refund.id, data),
    )
    return refund
