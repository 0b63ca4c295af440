# Overview: Pytest coverage for sale creation, receipt queries and voids.

"""
Sale Engine Tests

A sale is all-or-nothing: receipt, lines, stock ledger, stock level and
shift totals commit together or not at all.
"""

import re

import pytest

from retailcore.errors import ConflictError, NotFoundError, ValidationError
from retailcore.extensions import db
from retailcore.models import Receipt, SaleLine, Shift, StockLedgerEntry, StockLevel
from retailcore.models.inventory import REF_SALE, REF_VOID
from retailcore.services import inventory_service, sales_service, shift_service
from retailcore.services.pricing import (
    CartDiscount,
    CartLine,
    DiscountKind,
    LineDiscount,
    LineDiscountType,
    PaymentMethod,
    PaymentTender,
)
from retailcore.services.refund_service import RefundLineRequest, process_refund
from retailcore.services.sales_service import CreateSaleInput, ReceiptSearch
from retailcore.services.tenant_service import TenantContext


def _on_hand(store, product):
    level = db.session.query(StockLevel).filter_by(store_id=store.id, product_id=product.id).first()
    return level.quantity if level else 0


def _sale_entries(product):
    return (
        db.session.query(StockLedgerEntry)
        .filter_by(product_id=product.id, reference_type=REF_SALE)
        .all()
    )


class TestCreateSale:

    def test_basic_cash_sale(self, db_session, ctx_a, store_a, stocked_product, sell):
        """3 x $10.00 at 10% tax, $40.00 cash -> total $33.00, change $7.00."""
        receipt = sell(stocked_product, quantity=3, cash_cents=4000)

        assert receipt.subtotal_cents == 3000
        assert receipt.discount_cents == 0
        assert receipt.tax_cents == 300
        assert receipt.total_cents == 3300
        assert receipt.paid_cents == 4000
        assert receipt.change_cents == 700
        assert receipt.status == "completed"
        assert receipt.type == "sale"
        assert receipt.cashier_id == ctx_a.user_id
        assert re.fullmatch(r"RCP-\d{8}-000001", receipt.receipt_number)

        assert len(receipt.lines) == 1
        line = receipt.lines[0]
        assert line.line_number == 1
        assert line.quantity == 3
        assert line.line_total_cents == 3300
        assert line.cost_cents == 400
        assert line.sku == stocked_product.sku

    def test_stock_and_ledger_move_together(self, db_session, store_a, stocked_product, sell):
        receipt = sell(stocked_product, quantity=3)

        assert _on_hand(store_a, stocked_product) == 7

        entries = _sale_entries(stocked_product)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.quantity_delta == -3
        assert entry.quantity_before == 10
        assert entry.quantity_after == 7
        assert entry.reference_id == str(receipt.id)
        assert entry.reference_line_id == str(receipt.lines[0].id)
        assert entry.cost_cents == 400

        level = db_session.query(StockLevel).filter_by(product_id=stocked_product.id).one()
        assert level.last_sold_at is not None

    def test_receipt_numbers_increment(self, db_session, stocked_product, sell):
        first = sell(stocked_product)
        second = sell(stocked_product)

        assert first.receipt_number.endswith("-000001")
        assert second.receipt_number.endswith("-000002")

    def test_discounts_and_totals_invariant(self, db_session, ctx_a, store_a, stocked_product):
        """2 x $10 with 10% off, 10% tax, $1 coupon -> 2000 - 300 + 180 = 1880."""
        receipt = sales_service.create_sale(
            ctx_a,
            CreateSaleInput(
                store_id=store_a.id,
                lines=[
                    CartLine(
                        product_id=stocked_product.id,
                        quantity=2,
                        discount=LineDiscount(LineDiscountType.PERCENT, 1000),
                    )
                ],
                cart_discounts=[CartDiscount(DiscountKind.COUPON, 100, code="TAKE1")],
                payments=[PaymentTender(PaymentMethod.CARD, 1880)],
            ),
        )

        assert receipt.subtotal_cents == 2000
        assert receipt.discount_cents == 300
        assert receipt.tax_cents == 180
        assert receipt.total_cents == 1880
        assert receipt.change_cents == 0
        assert receipt.total_cents == receipt.subtotal_cents - receipt.discount_cents + receipt.tax_cents

        kinds = [d["kind"] for d in receipt.discount_details]
        assert kinds == ["line", "coupon"]

        line = receipt.lines[0]
        assert line.discount_cents == 200
        assert line.line_total_cents == line.quantity * line.unit_price_cents - line.discount_cents + line.tax_cents

    def test_insufficient_stock_rejected(self, db_session, store_a, stocked_product, sell):
        with pytest.raises(ConflictError) as exc:
            sell(stocked_product, quantity=11)

        assert exc.value.details == {"product_id": stocked_product.id, "requested": 11, "available": 10}
        assert db_session.query(Receipt).count() == 0
        assert _on_hand(store_a, stocked_product) == 10
        assert _sale_entries(stocked_product) == []

    def test_failure_on_later_line_rolls_back_everything(
        self, db_session, ctx_a, store_a, stocked_product, make_product
    ):
        """Second line fails the stock check; first line's stock is untouched."""
        empty = make_product("EMPTY-1")

        with pytest.raises(ConflictError):
            sales_service.create_sale(
                ctx_a,
                CreateSaleInput(
                    store_id=store_a.id,
                    lines=[
                        CartLine(product_id=stocked_product.id, quantity=2),
                        CartLine(product_id=empty.id, quantity=1),
                    ],
                    payments=[PaymentTender(PaymentMethod.CASH, 10000)],
                ),
            )

        assert db_session.query(Receipt).count() == 0
        assert db_session.query(SaleLine).count() == 0
        assert _on_hand(store_a, stocked_product) == 10
        assert _sale_entries(stocked_product) == []

    def test_rolled_back_sale_does_not_consume_receipt_number(
        self, db_session, store_a, stocked_product, sell
    ):
        with pytest.raises(ConflictError):
            sell(stocked_product, quantity=50)

        receipt = sell(stocked_product, quantity=1)
        assert receipt.receipt_number.endswith("-000001")

    def test_untracked_product_posts_no_ledger(self, db_session, store_a, service_product, sell):
        receipt = sell(service_product, quantity=2)

        assert receipt.total_cents == 1000
        assert db_session.query(StockLedgerEntry).filter_by(product_id=service_product.id).count() == 0
        assert db_session.query(StockLevel).filter_by(product_id=service_product.id).count() == 0

    def test_negative_stock_allowed_when_product_permits(self, db_session, store_a, make_product, sell):
        product = make_product("BACKORDER-1", allow_negative_stock=True)

        sell(product, quantity=2)

        assert _on_hand(store_a, product) == -2
        entry = _sale_entries(product)[0]
        assert entry.quantity_before == 0
        assert entry.quantity_after == -2

    def test_same_product_on_two_lines(self, db_session, ctx_a, store_a, stocked_product):
        receipt = sales_service.create_sale(
            ctx_a,
            CreateSaleInput(
                store_id=store_a.id,
                lines=[
                    CartLine(product_id=stocked_product.id, quantity=2),
                    CartLine(product_id=stocked_product.id, quantity=3),
                ],
                payments=[PaymentTender(PaymentMethod.CASH, 10000)],
            ),
        )

        assert len(receipt.lines) == 2
        assert _on_hand(store_a, stocked_product) == 5
        entries = sorted(_sale_entries(stocked_product), key=lambda e: e.id)
        assert entries[0].quantity_after == entries[1].quantity_before

    def test_empty_cart_rejected(self, db_session, ctx_a, store_a):
        with pytest.raises(ValidationError):
            sales_service.create_sale(
                ctx_a,
                CreateSaleInput(store_id=store_a.id, lines=[], payments=[PaymentTender(PaymentMethod.CASH, 100)]),
            )

    def test_underpayment_rejected(self, db_session, store_a, stocked_product, sell):
        with pytest.raises(ValidationError):
            sell(stocked_product, quantity=1, cash_cents=1000)
        assert _on_hand(store_a, stocked_product) == 10

    def test_unknown_product(self, db_session, ctx_a, store_a):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(
                ctx_a,
                CreateSaleInput(
                    store_id=store_a.id,
                    lines=[CartLine(product_id=99999, quantity=1)],
                    payments=[PaymentTender(PaymentMethod.CASH, 100)],
                ),
            )

    def test_offline_flag_and_notes_persisted(self, db_session, stocked_product, sell):
        receipt = sell(stocked_product, offline_created=True, notes="Synced from lane 3")
        assert receipt.offline_created is True
        assert receipt.notes == "Synced from lane 3"


class TestIdempotency:

    def test_replay_returns_same_receipt(self, db_session, store_a, stocked_product, sell):
        first = sell(stocked_product, quantity=3, idempotency_key="client-123")
        second = sell(stocked_product, quantity=3, idempotency_key="client-123")

        assert second.id == first.id
        assert db_session.query(Receipt).count() == 1
        assert _on_hand(store_a, stocked_product) == 7
        assert len(_sale_entries(stocked_product)) == 1

    def test_replay_ignores_changed_cart(self, db_session, stocked_product, sell):
        first = sell(stocked_product, quantity=1, idempotency_key="client-456")
        second = sell(stocked_product, quantity=5, idempotency_key="client-456")

        assert second.id == first.id
        assert second.total_cents == first.total_cents

    def test_different_keys_create_different_receipts(self, db_session, stocked_product, sell):
        first = sell(stocked_product, idempotency_key="k-1")
        second = sell(stocked_product, idempotency_key="k-2")
        assert first.id != second.id

    def test_blank_key_rejected(self, db_session, stocked_product, sell):
        with pytest.raises(ValidationError):
            sell(stocked_product, idempotency_key="   ")


class TestSaleOnShift:

    def test_shift_totals_updated(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=10000)

        sell(stocked_product, quantity=3, cash_cents=4000, shift_id=shift.id)

        shift = db_session.get(Shift, shift.id)
        assert shift.total_sales_cents == 3300
        assert shift.total_cash_payments_cents == 3300
        assert shift.total_card_payments_cents == 0
        assert shift.transaction_count == 1

    def test_card_payments_tracked(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=0)

        sell(
            stocked_product,
            quantity=1,
            shift_id=shift.id,
            payments=[PaymentTender(PaymentMethod.CARD, 1000), PaymentTender(PaymentMethod.CASH, 200)],
        )

        shift = db_session.get(Shift, shift.id)
        assert shift.total_card_payments_cents == 1000
        assert shift.total_cash_payments_cents == 100

    def test_closed_shift_rejects_sale(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=0)
        shift_service.close_shift(ctx_a, shift_id=shift.id, closing_cash_cents=0)

        with pytest.raises(ConflictError):
            sell(stocked_product, shift_id=shift.id)

        assert db_session.query(Receipt).count() == 0
        assert _on_hand(store_a, stocked_product) == 10

    def test_shift_in_other_store_rejected(self, db_session, ctx_a, store_a, store_a2, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a2.id, opening_cash_cents=0)

        with pytest.raises(ValidationError):
            sell(stocked_product, shift_id=shift.id)
        assert _on_hand(store_a, stocked_product) == 10


class TestReceiptQueries:

    def test_get_by_id_and_number(self, db_session, ctx_a, stocked_product, sell):
        receipt = sell(stocked_product)

        assert sales_service.get_receipt(ctx_a, receipt.id).id == receipt.id
        assert sales_service.get_receipt(ctx_a, str(receipt.id)).id == receipt.id
        assert sales_service.get_receipt(ctx_a, receipt.receipt_number).id == receipt.id

    def test_get_missing(self, db_session, ctx_a):
        with pytest.raises(NotFoundError):
            sales_service.get_receipt(ctx_a, "RCP-19990101-000001")

    def test_search_pagination(self, db_session, ctx_a, store_a, stocked_product, sell):
        for _ in range(3):
            sell(stocked_product)

        result = sales_service.search_receipts(ctx_a, ReceiptSearch(store_id=store_a.id, limit=2))
        assert result["total"] == 3
        assert len(result["receipts"]) == 2

        page_two = sales_service.search_receipts(ctx_a, ReceiptSearch(limit=2, offset=2))
        assert len(page_two["receipts"]) == 1

    def test_search_filters(self, db_session, ctx_a, stocked_product, sell):
        first = sell(stocked_product)
        sell(stocked_product, customer_id=77)

        by_customer = sales_service.search_receipts(ctx_a, ReceiptSearch(customer_id=77))
        assert by_customer["total"] == 1

        by_number = sales_service.search_receipts(ctx_a, ReceiptSearch(search=first.receipt_number))
        assert [r.id for r in by_number["receipts"]] == [first.id]

        by_status = sales_service.search_receipts(ctx_a, ReceiptSearch(status="voided"))
        assert by_status["total"] == 0

    def test_search_limit_capped(self, app, db_session, ctx_a, stocked_product, sell):
        app.config["SEARCH_MAX_LIMIT"] = 1
        sell(stocked_product)
        sell(stocked_product)

        result = sales_service.search_receipts(ctx_a, ReceiptSearch(limit=500))
        assert len(result["receipts"]) == 1
        assert result["total"] == 2

    def test_search_rejects_bad_limit(self, db_session, ctx_a):
        with pytest.raises(ValidationError):
            sales_service.search_receipts(ctx_a, ReceiptSearch(limit=0))


class TestVoidReceipt:

    def test_void_restores_stock(self, db_session, ctx_a, store_a, stocked_product, sell):
        receipt = sell(stocked_product, quantity=4)

        voided = sales_service.void_receipt(ctx_a, receipt.id, "Wrong item scanned")

        assert voided.status == "voided"
        assert voided.voided_by == ctx_a.user_id
        assert voided.voided_at is not None
        assert voided.void_reason == "Wrong item scanned"
        assert _on_hand(store_a, stocked_product) == 10

        void_entries = db_session.query(StockLedgerEntry).filter_by(reference_type=REF_VOID).all()
        assert len(void_entries) == 1
        assert void_entries[0].quantity_delta == 4

    def test_void_reverses_shift_totals(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=5000)
        receipt = sell(stocked_product, quantity=1, cash_cents=2000, shift_id=shift.id)

        sales_service.void_receipt(ctx_a, receipt.id, "Customer changed mind")

        shift = db_session.get(Shift, shift.id)
        assert shift.total_sales_cents == 0
        assert shift.total_cash_payments_cents == 0
        assert shift.transaction_count == 0

    def test_void_twice_conflicts(self, db_session, ctx_a, stocked_product, sell):
        receipt = sell(stocked_product)
        sales_service.void_receipt(ctx_a, receipt.id, "Mistake")

        with pytest.raises(ConflictError):
            sales_service.void_receipt(ctx_a, receipt.id, "Mistake again")

    def test_void_requires_reason(self, db_session, ctx_a, stocked_product, sell):
        receipt = sell(stocked_product)
        with pytest.raises(ValidationError):
            sales_service.void_receipt(ctx_a, receipt.id, "  ")

    def test_cannot_void_refunded_sale(self, db_session, ctx_a, stocked_product, sell):
        receipt = sell(stocked_product, quantity=2)
        process_refund(ctx_a, receipt.id, [RefundLineRequest(line_id=receipt.lines[0].id, quantity=1)])

        with pytest.raises(ConflictError):
            sales_service.void_receipt(ctx_a, receipt.id, "Too late")

    def test_cannot_void_on_closed_shift(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=0)
        receipt = sell(stocked_product, cash_cents=1100, shift_id=shift.id)
        shift_service.close_shift(ctx_a, shift_id=shift.id, closing_cash_cents=1100)

        with pytest.raises(ConflictError):
            sales_service.void_receipt(ctx_a, receipt.id, "After close")

        # Stock is reversed before the shift is checked; the whole unit rolls back
        assert db_session.get(Receipt, receipt.id).status == "completed"
        assert _on_hand(store_a, stocked_product) == 9
        assert db_session.query(StockLedgerEntry).filter_by(reference_type=REF_VOID).count() == 0
        assert inventory_service.verify_ledger_chain(ctx_a.tenant_id) == []
        closed = db_session.get(Shift, shift.id)
        assert closed.total_sales_cents == 1100
        assert closed.transaction_count == 1


class TestReceiptNumbering:

    def test_numbers_are_per_store(self, db_session, ctx_a, tenant_a, store_a2, service_product, sell):
        """Each store starts its own daily sequence."""
        ctx_a2 = TenantContext(tenant_id=tenant_a.id, user_id=ctx_a.user_id, store_id=store_a2.id)

        first = sell(service_product)
        second = sell(service_product, ctx=ctx_a2, store_id=store_a2.id)

        assert first.receipt_number == second.receipt_number
        assert sales_service.get_receipt(ctx_a, first.receipt_number).id == first.id
        assert sales_service.get_receipt(ctx_a2, second.receipt_number).id == second.id
