"""
Stock ledger and on-hand projection.

Every quantity change is one append-only StockLedgerEntry plus an update of
the matching StockLevel row, in the same transaction, under a row lock on the
StockLevel. post_stock_movement is the only writer of either table; the
public operations below wrap it in their own transaction, while sales,
refunds and voids call it inside theirs.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import StockLedgerEntry, StockLevel
from ..models.inventory import (
    REF_ADJUSTMENT,
    REF_GRN,
    REF_SALE,
    REF_STOCK_COUNT,
    REF_TRANSFER_IN,
    REF_TRANSFER_OUT,
    REFERENCE_TYPES,
)
from ..time_utils import utcnow
from .catalog_service import get_catalog
from .concurrency import lock_for_update, run_in_transaction
from .document_service import (
    ADJUSTMENT_DOCUMENT,
    COUNT_DOCUMENT,
    GRN_DOCUMENT,
    TRANSFER_DOCUMENT,
    next_document_number,
)
from .pricing import div_round_half_up
from .sinks import (
    ACTION_STOCK_ADJUSTED,
    ACTION_STOCK_COUNTED,
    ACTION_STOCK_RECEIVED,
    ACTION_STOCK_TRANSFERRED,
    EVENT_STOCK_MOVED,
    AuditEvent,
    QueuedEvent,
    emit,
)
from .tenant_service import TenantContext, require_store_in_tenant


DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


# =============================================================================
# Core posting
# =============================================================================

def _stock_level_query(tenant_id: int, store_id: int, product_id: int):
    return db.session.query(StockLevel).filter_by(
        tenant_id=tenant_id, store_id=store_id, product_id=product_id
    )


def lock_stock_level(tenant_id: int, store_id: int, product_id: int) -> StockLevel:
    """Return the StockLevel row for the key, locked, creating it at zero if missing."""
    query = lock_for_update(_stock_level_query(tenant_id, store_id, product_id))
    level = query.first()
    if level is not None:
        return level

    level = StockLevel(
        tenant_id=tenant_id,
        store_id=store_id,
        product_id=product_id,
        quantity=0,
        reserved_quantity=0,
        avg_cost_cents=0,
    )
    try:
        with db.session.begin_nested():
            db.session.add(level)
    except IntegrityError:
        # Created concurrently; use theirs
        level = query.first()
        if level is None:
            raise
    return level


def post_stock_movement(
    ctx: TenantContext,
    *,
    store_id: int,
    product_id: int,
    quantity_delta: int,
    reference_type: str,
    reference_id: str,
    reference_line_id: str | None = None,
    cost_cents: int | None = None,
    allow_negative: bool = False,
    note: str | None = None,
) -> StockLedgerEntry:
    """
    Append one ledger entry and move the on-hand projection with it.

    Must run inside the caller's write transaction; does not commit.

    Raises ConflictError if the movement would take on-hand below zero and
    negative stock is not allowed.
    """
    if reference_type not in REFERENCE_TYPES:
        raise ValidationError("Unknown reference type", details={"reference_type": reference_type})
    if quantity_delta == 0 and reference_type != REF_STOCK_COUNT:
        raise ValidationError("quantity_delta cannot be zero")
    if not reference_id:
        raise ValidationError("reference_id is required")

    level = lock_stock_level(ctx.tenant_id, store_id, product_id)

    before = level.quantity or 0
    after = before + quantity_delta
    if quantity_delta < 0 and after < 0 and not allow_negative:
        raise ConflictError(
            "Insufficient stock",
            details={"product_id": product_id, "requested": -quantity_delta, "available": before},
        )

    entry = StockLedgerEntry(
        tenant_id=ctx.tenant_id,
        store_id=store_id,
        product_id=product_id,
        quantity_delta=quantity_delta,
        quantity_before=before,
        quantity_after=after,
        cost_cents=cost_cents,
        reference_type=reference_type,
        reference_id=str(reference_id),
        reference_line_id=str(reference_line_id) if reference_line_id is not None else None,
        note=note,
        created_by=ctx.user_id,
    )
    db.session.add(entry)

    if quantity_delta > 0 and cost_cents is not None and reference_type in (REF_GRN, REF_TRANSFER_IN):
        level.avg_cost_cents = _weighted_average_cost(before, level.avg_cost_cents or 0, quantity_delta, cost_cents)

    level.quantity = after
    now = utcnow()
    if reference_type == REF_SALE:
        level.last_sold_at = now
    elif reference_type == REF_GRN:
        level.last_received_at = now

    db.session.flush()
    return entry


def _weighted_average_cost(on_hand: int, avg_cost: int, received: int, unit_cost: int) -> int:
    if on_hand <= 0:
        return unit_cost
    return div_round_half_up(on_hand * avg_cost + received * unit_cost, on_hand + received)


def _require_positive_quantity(quantity, field_name: str = "quantity") -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"{field_name} must be a positive integer", details={field_name: quantity})


# =============================================================================
# Public stock operations
# =============================================================================

def receive_stock(
    ctx: TenantContext,
    *,
    store_id: int,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    reference_id: str | None = None,
    note: str | None = None,
) -> StockLedgerEntry:
    """Post a goods receipt (GRN); updates weighted average cost."""
    _require_positive_quantity(quantity)
    if isinstance(unit_cost_cents, bool) or not isinstance(unit_cost_cents, int) or unit_cost_cents < 0:
        raise ValidationError("unit_cost_cents must be >= 0", details={"unit_cost_cents": unit_cost_cents})

    require_store_in_tenant(ctx, store_id)
    get_catalog().lookup(ctx, product_id)

    def _op():
        ref = reference_id or next_document_number(
            tenant_id=ctx.tenant_id, store_id=store_id, document=GRN_DOCUMENT
        )
        entry = post_stock_movement(
            ctx,
            store_id=store_id,
            product_id=product_id,
            quantity_delta=quantity,
            reference_type=REF_GRN,
            reference_id=ref,
            cost_cents=unit_cost_cents,
            allow_negative=True,
            note=note,
        )
        return entry.to_dict()

    data = run_in_transaction(_op)
    current_app.logger.info(
        "Received %s of product %s into store %s (%s)", quantity, product_id, store_id, data["reference_id"]
    )
    emit(
        ctx,
        AuditEvent(ACTION_STOCK_RECEIVED, "stock_ledger", data["id"], store_id=store_id, after_data=data),
        QueuedEvent(EVENT_STOCK_MOVED, "stock_ledger", data["id"], {"entries": [data]}),
    )
    return db.session.get(StockLedgerEntry, data["id"])


def adjust_stock(
    ctx: TenantContext,
    *,
    store_id: int,
    product_id: int,
    quantity_delta: int,
    reason: str,
) -> StockLedgerEntry:
    """Manual correction (damage, shrink, found stock)."""
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int) or quantity_delta == 0:
        raise ValidationError("quantity_delta must be a non-zero integer", details={"quantity_delta": quantity_delta})
    if not (reason or "").strip():
        raise ValidationError("reason is required for stock adjustments")

    require_store_in_tenant(ctx, store_id)
    item = get_catalog().lookup(ctx, product_id)

    def _op():
        ref = next_document_number(tenant_id=ctx.tenant_id, store_id=store_id, document=ADJUSTMENT_DOCUMENT)
        entry = post_stock_movement(
            ctx,
            store_id=store_id,
            product_id=product_id,
            quantity_delta=quantity_delta,
            reference_type=REF_ADJUSTMENT,
            reference_id=ref,
            allow_negative=item.allow_negative_stock,
            note=reason.strip(),
        )
        return entry.to_dict()

    data = run_in_transaction(_op)
    current_app.logger.info(
        "Adjusted product %s in store %s by %s: %s", product_id, store_id, quantity_delta, reason
    )
    emit(
        ctx,
        AuditEvent(ACTION_STOCK_ADJUSTED, "stock_ledger", data["id"], store_id=store_id, after_data=data),
        QueuedEvent(EVENT_STOCK_MOVED, "stock_ledger", data["id"], {"entries": [data]}),
    )
    return db.session.get(StockLedgerEntry, data["id"])


def transfer_stock(
    ctx: TenantContext,
    *,
    from_store_id: int,
    to_store_id: int,
    product_id: int,
    quantity: int,
    note: str | None = None,
) -> tuple[StockLedgerEntry, StockLedgerEntry]:
    """
    Move stock between two stores of the same tenant.

    Posts TRANSFER_OUT at the source and TRANSFER_IN at the destination under
    one reference; the destination's average cost absorbs the source's.
    """
    _require_positive_quantity(quantity)
    if from_store_id == to_store_id:
        raise ValidationError("Source and destination stores must differ")

    require_store_in_tenant(ctx, from_store_id)
    require_store_in_tenant(ctx, to_store_id)
    item = get_catalog().lookup(ctx, product_id)

    def _op():
        # Lock both levels in store order so opposite transfers can't deadlock
        for sid in sorted((from_store_id, to_store_id)):
            lock_stock_level(ctx.tenant_id, sid, product_id)

        ref = next_document_number(tenant_id=ctx.tenant_id, store_id=from_store_id, document=TRANSFER_DOCUMENT)
        source = lock_stock_level(ctx.tenant_id, from_store_id, product_id)
        unit_cost = source.avg_cost_cents or item.cost_cents

        out_entry = post_stock_movement(
            ctx,
            store_id=from_store_id,
            product_id=product_id,
            quantity_delta=-quantity,
            reference_type=REF_TRANSFER_OUT,
            reference_id=ref,
            cost_cents=unit_cost,
            allow_negative=item.allow_negative_stock,
            note=note,
        )
        in_entry = post_stock_movement(
            ctx,
            store_id=to_store_id,
            product_id=product_id,
            quantity_delta=quantity,
            reference_type=REF_TRANSFER_IN,
            reference_id=ref,
            cost_cents=unit_cost,
            allow_negative=True,
            note=note,
        )
        return out_entry.to_dict(), in_entry.to_dict()

    out_data, in_data = run_in_transaction(_op)
    current_app.logger.info(
        "Transferred %s of product %s from store %s to store %s (%s)",
        quantity, product_id, from_store_id, to_store_id, out_data["reference_id"],
    )
    emit(
        ctx,
        AuditEvent(
            ACTION_STOCK_TRANSFERRED,
            "stock_ledger",
            out_data["id"],
            store_id=from_store_id,
            after_data={"out": out_data, "in": in_data},
        ),
        QueuedEvent(EVENT_STOCK_MOVED, "stock_ledger", out_data["id"], {"entries": [out_data, in_data]}),
    )
    return db.session.get(StockLedgerEntry, out_data["id"]), db.session.get(StockLedgerEntry, in_data["id"])


def count_stock(
    ctx: TenantContext,
    *,
    store_id: int,
    product_id: int,
    counted_quantity: int,
    note: str | None = None,
) -> StockLedgerEntry:
    """Record a physical count; posts the difference to bring on-hand to the counted value."""
    if isinstance(counted_quantity, bool) or not isinstance(counted_quantity, int) or counted_quantity < 0:
        raise ValidationError("counted_quantity must be >= 0", details={"counted_quantity": counted_quantity})

    require_store_in_tenant(ctx, store_id)
    get_catalog().lookup(ctx, product_id)

    def _op():
        level = lock_stock_level(ctx.tenant_id, store_id, product_id)
        delta = counted_quantity - (level.quantity or 0)
        ref = next_document_number(tenant_id=ctx.tenant_id, store_id=store_id, document=COUNT_DOCUMENT)
        entry = post_stock_movement(
            ctx,
            store_id=store_id,
            product_id=product_id,
            quantity_delta=delta,
            reference_type=REF_STOCK_COUNT,
            reference_id=ref,
            allow_negative=True,
            note=note,
        )
        return entry.to_dict()

    data = run_in_transaction(_op)
    current_app.logger.info(
        "Counted product %s in store %s: %s (delta %s)",
        product_id, store_id, counted_quantity, data["quantity_delta"],
    )
    emit(
        ctx,
        AuditEvent(ACTION_STOCK_COUNTED, "stock_ledger", data["id"], store_id=store_id, after_data=data),
        QueuedEvent(EVENT_STOCK_MOVED, "stock_ledger", data["id"], {"entries": [data]}),
    )
    return db.session.get(StockLedgerEntry, data["id"])


# =============================================================================
# Reads
# =============================================================================

def get_stock_level(ctx: TenantContext, store_id: int, product_id: int) -> dict:
    """On-hand for one key. A product never moved reads as zero."""
    require_store_in_tenant(ctx, store_id)
    level = _stock_level_query(ctx.tenant_id, store_id, product_id).first()
    if level is None:
        return {
            "tenant_id": ctx.tenant_id,
            "store_id": store_id,
            "product_id": product_id,
            "quantity": 0,
            "reserved_quantity": 0,
            "available_quantity": 0,
            "avg_cost_cents": 0,
            "last_received_at": None,
            "last_sold_at": None,
            "updated_at": None,
        }
    return level.to_dict()


def get_ledger_history(
    ctx: TenantContext,
    *,
    store_id: int | None = None,
    product_id: int | None = None,
    reference_type: str | None = None,
    reference_id: str | None = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
    offset: int = 0,
) -> tuple[list[StockLedgerEntry], int]:
    """Newest-first ledger entries for the tenant, with total count."""
    if store_id is not None:
        require_store_in_tenant(ctx, store_id)
    if reference_type is not None and reference_type not in REFERENCE_TYPES:
        raise ValidationError("Unknown reference type", details={"reference_type": reference_type})

    limit = max(1, min(int(limit or DEFAULT_HISTORY_LIMIT), MAX_HISTORY_LIMIT))
    offset = max(0, int(offset or 0))

    query = db.session.query(StockLedgerEntry).filter(StockLedgerEntry.tenant_id == ctx.tenant_id)
    if store_id is not None:
        query = query.filter(StockLedgerEntry.store_id == store_id)
    if product_id is not None:
        query = query.filter(StockLedgerEntry.product_id == product_id)
    if reference_type is not None:
        query = query.filter(StockLedgerEntry.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockLedgerEntry.reference_id == str(reference_id))

    total = query.count()
    entries = query.order_by(StockLedgerEntry.id.desc()).offset(offset).limit(limit).all()
    return entries, total


def verify_ledger_chain(tenant_id: int, store_id: int | None = None, product_id: int | None = None) -> list[dict]:
    """
    Check ledger continuity and projection agreement.

    For each (store, product) key, entries ordered by id must chain
    (before == previous after, after == before + delta) starting from zero,
    and the StockLevel quantity must equal the last entry's quantity_after.
    Returns a list of issues (empty = consistent).
    """
    issues: list[dict] = []

    query = db.session.query(StockLedgerEntry).filter(StockLedgerEntry.tenant_id == tenant_id)
    if store_id is not None:
        query = query.filter(StockLedgerEntry.store_id == store_id)
    if product_id is not None:
        query = query.filter(StockLedgerEntry.product_id == product_id)

    last_after: dict[tuple[int, int], int] = {}
    for entry in query.order_by(StockLedgerEntry.id.asc()).yield_per(500):
        key = (entry.store_id, entry.product_id)
        expected_before = last_after.get(key, 0)
        if entry.quantity_before != expected_before:
            issues.append({
                "type": "chain_break",
                "entry_id": entry.id,
                "store_id": entry.store_id,
                "product_id": entry.product_id,
                "expected_before": expected_before,
                "actual_before": entry.quantity_before,
            })
        if entry.quantity_after != entry.quantity_before + entry.quantity_delta:
            issues.append({
                "type": "bad_arithmetic",
                "entry_id": entry.id,
                "store_id": entry.store_id,
                "product_id": entry.product_id,
            })
        last_after[key] = entry.quantity_after

    level_query = db.session.query(StockLevel).filter(StockLevel.tenant_id == tenant_id)
    if store_id is not None:
        level_query = level_query.filter(StockLevel.store_id == store_id)
    if product_id is not None:
        level_query = level_query.filter(StockLevel.product_id == product_id)

    for level in level_query.all():
        key = (level.store_id, level.product_id)
        expected = last_after.get(key, 0)
        if level.quantity != expected:
            issues.append({
                "type": "projection_mismatch",
                "store_id": level.store_id,
                "product_id": level.product_id,
                "ledger_quantity": expected,
                "stock_level_quantity": level.quantity,
            })

    if issues:
        current_app.logger.warning("Ledger verification found %s issue(s) for tenant %s", len(issues), tenant_id)
    return issues
