"""
Sale engine: create, query and void receipts.

A sale is one all-or-nothing unit: receipt header and lines, stock ledger
entries and projection updates, and the shift's running totals are written
in a single transaction. Either all are visible after commit or none are.
Audit and downstream events go out only after that commit.

Idempotency: (tenant_id, idempotency_key) is unique on receipts. The lookup
before the transaction is advisory; the unique constraint is what makes a
concurrent retry of the same submission resolve to one receipt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from flask import current_app

from ..errors import ConflictError, InternalError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Receipt, SaleLine, StockLedgerEntry
from ..models.inventory import REF_SALE, REF_VOID
from ..models.sales import (
    RECEIPT_STATUS_COMPLETED,
    RECEIPT_STATUS_VOIDED,
    RECEIPT_TYPE_REFUND,
    RECEIPT_TYPE_SALE,
)
from ..time_utils import utcnow
from .catalog_service import get_catalog
from .concurrency import lock_for_update, run_in_transaction
from .document_service import RECEIPT_DOCUMENT, next_document_number
from .inventory_service import post_stock_movement
from .pricing import (
    CartDiscount,
    CartLine,
    PaymentMethod,
    PaymentTender,
    compute_totals,
    price_line,
)
from .shift_service import apply_sale_to_shift, lock_open_shift, lock_shift, reverse_sale_on_shift
from .sinks import (
    ACTION_SALE_COMPLETED,
    ACTION_SALE_VOIDED,
    EVENT_SALE_COMPLETED,
    EVENT_SALE_VOIDED,
    AuditEvent,
    QueuedEvent,
    emit,
)
from .tenant_service import TenantContext, require_store_in_tenant


MAX_IDEMPOTENCY_KEY_LENGTH = 100


@dataclass(frozen=True)
class CreateSaleInput:
    store_id: int
    lines: list[CartLine]
    payments: list[PaymentTender]
    shift_id: int | None = None
    customer_id: int | None = None
    cart_discounts: list[CartDiscount] = field(default_factory=list)
    idempotency_key: str | None = None
    offline_created: bool = False
    notes: str | None = None


@dataclass(frozen=True)
class ReceiptSearch:
    store_id: int | None = None
    cashier_id: int | None = None
    customer_id: int | None = None
    shift_id: int | None = None
    status: str | None = None
    type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    limit: int | None = None
    offset: int = 0


def _find_by_idempotency_key(ctx: TenantContext, key: str | None) -> Receipt | None:
    if not key:
        return None
    return (
        db.session.query(Receipt)
        .filter_by(tenant_id=ctx.tenant_id, idempotency_key=key)
        .first()
    )


def _validate_sale_input(sale_input: CreateSaleInput) -> None:
    if not sale_input.lines:
        raise ValidationError("A sale requires at least one line")
    if not sale_input.store_id:
        raise ValidationError("store_id is required")
    key = sale_input.idempotency_key
    if key is not None and (not key.strip() or len(key) > MAX_IDEMPOTENCY_KEY_LENGTH):
        raise ValidationError(
            f"idempotency_key must be 1-{MAX_IDEMPOTENCY_KEY_LENGTH} characters",
            details={"idempotency_key": key},
        )


def _sale_ledger_entries(ctx: TenantContext, receipt_id: int) -> list[StockLedgerEntry]:
    return (
        db.session.query(StockLedgerEntry)
        .filter_by(tenant_id=ctx.tenant_id, reference_type=REF_SALE, reference_id=str(receipt_id))
        .order_by(StockLedgerEntry.id)
        .all()
    )


def _tender_totals(payments: list[dict]) -> tuple[int, int]:
    """(cash, card) totals from a receipt's stored payments."""
    cash = sum(p["amount_cents"] for p in payments or [] if p.get("method") == PaymentMethod.CASH.value)
    card = sum(p["amount_cents"] for p in payments or [] if p.get("method") == PaymentMethod.CARD.value)
    return cash, card


# =============================================================================
# Create
# =============================================================================

def create_sale(ctx: TenantContext, sale_input: CreateSaleInput) -> Receipt:
    """
    Price, persist and post a completed sale.

    Returns the existing receipt unchanged when idempotency_key was already
    used by this tenant.

    Raises:
        ValidationError: invalid cart, discounts or tenders
        NotFoundError: unknown store, product or shift
        ConflictError: insufficient stock, shift not open
        ConcurrencyError: retries exhausted
    """
    _validate_sale_input(sale_input)

    existing = _find_by_idempotency_key(ctx, sale_input.idempotency_key)
    if existing is not None:
        current_app.logger.warning(
            "Idempotent replay of sale %s (key %s)", existing.receipt_number, sale_input.idempotency_key
        )
        return existing

    store_id = sale_input.store_id
    require_store_in_tenant(ctx, store_id)

    catalog = get_catalog()
    priced = [
        price_line(idx, line, catalog.lookup(ctx, line.product_id))
        for idx, line in enumerate(sale_input.lines, start=1)
    ]
    totals = compute_totals(priced, sale_input.cart_discounts, sale_input.payments)

    def _op():
        replay = _find_by_idempotency_key(ctx, sale_input.idempotency_key)
        if replay is not None:
            return replay, False

        receipt = Receipt(
            tenant_id=ctx.tenant_id,
            store_id=store_id,
            shift_id=sale_input.shift_id,
            cashier_id=ctx.user_id,
            customer_id=sale_input.customer_id,
            receipt_number=next_document_number(
                tenant_id=ctx.tenant_id, store_id=store_id, document=RECEIPT_DOCUMENT
            ),
            type=RECEIPT_TYPE_SALE,
            status=RECEIPT_STATUS_COMPLETED,
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            paid_cents=totals.paid_cents,
            change_cents=totals.change_cents,
            discount_details=totals.discount_details,
            tax_details=totals.tax_details,
            payments=totals.payments,
            idempotency_key=sale_input.idempotency_key,
            offline_created=bool(sale_input.offline_created),
            notes=sale_input.notes,
            receipt_date=utcnow(),
        )
        db.session.add(receipt)
        db.session.flush()

        lines = []
        for pl in priced:
            line = SaleLine(
                tenant_id=ctx.tenant_id,
                receipt_id=receipt.id,
                line_number=pl.line_number,
                product_id=pl.product_id,
                sku=pl.sku,
                name=pl.name,
                quantity=pl.quantity,
                unit_price_cents=pl.unit_price_cents,
                discount_type=pl.discount_type,
                discount_value=pl.discount_value,
                discount_cents=pl.discount_cents,
                tax_rate_bps=pl.tax_rate_bps,
                tax_cents=pl.tax_cents,
                line_total_cents=pl.line_total_cents,
                cost_cents=pl.cost_cents,
                promotion_id=pl.promotion_id,
                notes=pl.notes,
                refunded_quantity=0,
            )
            db.session.add(line)
            lines.append((line, pl))
        db.session.flush()

        # Product order keeps lock acquisition consistent across sales
        for line, pl in sorted(lines, key=lambda pair: (pair[1].product_id, pair[1].line_number)):
            if not pl.track_inventory:
                continue
            post_stock_movement(
                ctx,
                store_id=store_id,
                product_id=pl.product_id,
                quantity_delta=-pl.quantity,
                reference_type=REF_SALE,
                reference_id=str(receipt.id),
                reference_line_id=str(line.id),
                cost_cents=pl.cost_cents,
                allow_negative=pl.allow_negative_stock,
            )

        if sale_input.shift_id is not None:
            shift = lock_open_shift(ctx, sale_input.shift_id, store_id=store_id)
            apply_sale_to_shift(
                shift,
                total_cents=totals.total_cents,
                net_cash_cents=totals.net_cash_cents,
                card_cents=totals.tenders.card_cents,
            )

        db.session.flush()
        return receipt, True

    try:
        receipt, created = run_in_transaction(_op)
    except IntegrityError as exc:
        # A concurrent submission with the same key committed first
        replay = _find_by_idempotency_key(ctx, sale_input.idempotency_key)
        if replay is not None:
            current_app.logger.warning(
                "Idempotency conflict resolved to sale %s (key %s)",
                replay.receipt_number, sale_input.idempotency_key,
            )
            return replay
        raise InternalError("Sale could not be saved", details={"reason": str(exc.orig)}) from exc

    if not created:
        current_app.logger.warning(
            "Idempotent replay of sale %s (key %s)", receipt.receipt_number, sale_input.idempotency_key
        )
        return receipt

    data = receipt.to_dict(include_lines=True)
    current_app.logger.info(
        "Sale %s completed: total %s cents, %s line(s), store %s",
        receipt.receipt_number, receipt.total_cents, len(priced), store_id,
    )
    emit(
        ctx,
        AuditEvent(ACTION_SALE_COMPLETED, "receipt", receipt.id, store_id=store_id, after_data=data),
        QueuedEvent(EVENT_SALE_COMPLETED, "receipt", receipt.id, data),
    )
    return receipt


# =============================================================================
# Queries
# =============================================================================

def get_receipt(ctx: TenantContext, id_or_number) -> Receipt:
    """Look up a receipt by numeric id or by receipt number."""
    query = db.session.query(Receipt).filter(Receipt.tenant_id == ctx.tenant_id)

    if isinstance(id_or_number, int) and not isinstance(id_or_number, bool):
        receipt = query.filter(Receipt.id == id_or_number).first()
    else:
        value = str(id_or_number or "").strip()
        if not value:
            raise ValidationError("Receipt id or number is required")
        if value.isdigit():
            receipt = query.filter(or_(Receipt.id == int(value), Receipt.receipt_number == value)).first()
        else:
            # Numbers repeat across stores; prefer the caller's store
            matches = query.filter(Receipt.receipt_number == value).order_by(Receipt.id).all()
            receipt = next((r for r in matches if r.store_id == ctx.store_id), None)
            if receipt is None and matches:
                receipt = matches[0]

    if receipt is None:
        raise NotFoundError("Receipt not found", details={"receipt": id_or_number})
    return receipt


def search_receipts(ctx: TenantContext, filters: ReceiptSearch | None = None) -> dict:
    """Filtered, newest-first receipt page: {"receipts": [...], "total": n}."""
    filters = filters or ReceiptSearch()
    default_limit = current_app.config.get("SEARCH_DEFAULT_LIMIT", 50)
    max_limit = current_app.config.get("SEARCH_MAX_LIMIT", 200)

    limit = filters.limit if filters.limit is not None else default_limit
    if limit <= 0:
        raise ValidationError("limit must be positive", details={"limit": limit})
    limit = min(limit, max_limit)
    if filters.offset < 0:
        raise ValidationError("offset cannot be negative", details={"offset": filters.offset})

    query = db.session.query(Receipt).filter(Receipt.tenant_id == ctx.tenant_id)
    if filters.store_id is not None:
        query = query.filter(Receipt.store_id == filters.store_id)
    if filters.cashier_id is not None:
        query = query.filter(Receipt.cashier_id == filters.cashier_id)
    if filters.customer_id is not None:
        query = query.filter(Receipt.customer_id == filters.customer_id)
    if filters.shift_id is not None:
        query = query.filter(Receipt.shift_id == filters.shift_id)
    if filters.status:
        query = query.filter(Receipt.status == filters.status)
    if filters.type:
        query = query.filter(Receipt.type == filters.type)
    if filters.start_date is not None:
        query = query.filter(Receipt.receipt_date >= filters.start_date)
    if filters.end_date is not None:
        query = query.filter(Receipt.receipt_date <= filters.end_date)
    if filters.search:
        query = query.filter(Receipt.receipt_number.ilike(f"%{filters.search.strip()}%"))

    total = query.count()
    receipts = (
        query.order_by(Receipt.receipt_date.desc(), Receipt.id.desc())
        .offset(filters.offset)
        .limit(limit)
        .all()
    )
    return {"receipts": receipts, "total": total}


# =============================================================================
# Void
# =============================================================================

def void_receipt(ctx: TenantContext, receipt_id: int, reason: str) -> Receipt:
    """
    Void a completed sale that has not been refunded.

    Stock comes back through VOID ledger entries and the shift totals are
    reversed. A sale rung on a shift that has since closed cannot be voided.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Void reason is required")

    def _op():
        receipt = lock_for_update(
            db.session.query(Receipt).filter_by(id=receipt_id, tenant_id=ctx.tenant_id)
        ).first()
        if receipt is None:
            raise NotFoundError("Receipt not found", details={"receipt_id": receipt_id})
        if receipt.type != RECEIPT_TYPE_SALE:
            raise ValidationError("Only sale receipts can be voided", details={"type": receipt.type})
        if receipt.status != RECEIPT_STATUS_COMPLETED:
            raise ConflictError(
                "Only completed sales can be voided", details={"status": receipt.status}
            )
        refund_exists = (
            db.session.query(Receipt.id)
            .filter_by(tenant_id=ctx.tenant_id, original_receipt_id=receipt.id, type=RECEIPT_TYPE_REFUND)
            .first()
        )
        if refund_exists:
            raise ConflictError("Cannot void a sale that has refunds")

        before = receipt.to_dict()

        # Stock rows before the shift, same order as create_sale
        for entry in sorted(_sale_ledger_entries(ctx, receipt.id), key=lambda e: (e.product_id, e.id)):
            post_stock_movement(
                ctx,
                store_id=entry.store_id,
                product_id=entry.product_id,
                quantity_delta=-entry.quantity_delta,
                reference_type=REF_VOID,
                reference_id=str(receipt.id),
                reference_line_id=entry.reference_line_id,
                cost_cents=entry.cost_cents,
                allow_negative=True,
                note=reason,
            )

        if receipt.shift_id is not None:
            shift = lock_shift(ctx, receipt.shift_id)
            if not shift.is_open:
                raise ConflictError(
                    "Cannot void a sale from a closed shift", details={"shift_id": shift.id}
                )
            cash, card = _tender_totals(receipt.payments)
            reverse_sale_on_shift(
                shift,
                total_cents=receipt.total_cents,
                net_cash_cents=cash - receipt.change_cents,
                card_cents=card,
            )

        receipt.status = RECEIPT_STATUS_VOIDED
        receipt.voided_by = ctx.user_id
        receipt.voided_at = utcnow()
        receipt.void_reason = reason
        db.session.flush()
        return receipt, before

    receipt, before = run_in_transaction(_op)
    after = receipt.to_dict()
    current_app.logger.info("Sale %s voided by user %s: %s", receipt.receipt_number, ctx.user_id, reason)
    emit(
        ctx,
        AuditEvent(
            ACTION_SALE_VOIDED, "receipt", receipt.id, store_id=receipt.store_id, before_data=before, after_data=after
        ),
        QueuedEvent(EVENT_SALE_VOIDED, "receipt", receipt.id, after),
    )
    return receipt
