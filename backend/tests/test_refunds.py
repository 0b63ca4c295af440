# Overview: Pytest coverage for refunds against completed sales.

"""
Refund Tests

Refunds are negative receipts linked to the original sale. Amounts are
prorated by quantity, partial refunds sum back to the original to the
cent, and stock returns through RETURN ledger entries.
"""

import pytest

from retailcore.errors import ConflictError, NotFoundError, ValidationError
from retailcore.extensions import db
from retailcore.models import Receipt, SaleLine, Shift, StockLedgerEntry, StockLevel
from retailcore.models.inventory import REF_RETURN
from retailcore.services import sales_service, shift_service
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
from retailcore.services.sales_service import CreateSaleInput


def _on_hand(store, product):
    level = db.session.query(StockLevel).filter_by(store_id=store.id, product_id=product.id).first()
    return level.quantity if level else 0


def _refund_one(ctx, receipt, quantity=1, **kwargs):
    return process_refund(
        ctx, receipt.id, [RefundLineRequest(line_id=receipt.lines[0].id, quantity=quantity)], **kwargs
    )


class TestRefundBasics:

    def test_partial_refund(self, db_session, ctx_a, store_a, stocked_product, sell):
        """Refund 1 of 3 units from a $33.00 sale -> $11.00 back."""
        sale = sell(stocked_product, quantity=3, cash_cents=4000)

        refund = _refund_one(ctx_a, sale, reason="Damaged")

        assert refund.type == "refund"
        assert refund.status == "completed"
        assert refund.original_receipt_id == sale.id
        assert refund.subtotal_cents == -1000
        assert refund.tax_cents == -100
        assert refund.total_cents == -1100
        assert refund.paid_cents == -1100
        assert refund.change_cents == 0
        assert refund.notes == "Damaged"
        assert refund.payments == [{"method": "cash", "amount_cents": -1100, "reference": None}]
        assert refund.receipt_number.endswith("-000002")

        line = refund.lines[0]
        assert line.quantity == -1
        assert line.original_line_id == sale.lines[0].id
        assert line.line_total_cents == -1100

        original = db_session.get(Receipt, sale.id)
        assert original.status == "refunded"
        assert db_session.get(SaleLine, sale.lines[0].id).refunded_quantity == 1

    def test_refund_returns_stock(self, db_session, ctx_a, store_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=3)
        assert _on_hand(store_a, stocked_product) == 7

        refund = _refund_one(ctx_a, sale)

        assert _on_hand(store_a, stocked_product) == 8
        entry = db_session.query(StockLedgerEntry).filter_by(reference_type=REF_RETURN).one()
        assert entry.quantity_delta == 1
        assert entry.quantity_before == 7
        assert entry.quantity_after == 8
        assert entry.reference_id == str(refund.id)
        assert entry.cost_cents == 400

    def test_card_refund(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=1, payments=[PaymentTender(PaymentMethod.CARD, 1100)])

        refund = _refund_one(ctx_a, sale, payments=[PaymentTender(PaymentMethod.CARD, 1100, reference="AUTH-9")])

        assert refund.payments == [{"method": "card", "amount_cents": -1100, "reference": "AUTH-9"}]

    def test_untracked_product_has_no_return_entry(self, db_session, ctx_a, service_product, sell):
        sale = sell(service_product, quantity=2)

        refund = _refund_one(ctx_a, sale)

        assert refund.total_cents == -500
        assert db_session.query(StockLedgerEntry).filter_by(reference_type=REF_RETURN).count() == 0


class TestRefundLimits:

    def test_refund_remaining_then_over_refund(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=3)
        _refund_one(ctx_a, sale, quantity=2)
        _refund_one(ctx_a, sale, quantity=1)

        with pytest.raises(ConflictError) as exc:
            _refund_one(ctx_a, sale, quantity=1)

        assert exc.value.details["remaining"] == 0
        assert db_session.query(Receipt).filter_by(type="refund").count() == 2

    def test_quantity_above_sold_is_invalid(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=3)

        with pytest.raises(ValidationError):
            _refund_one(ctx_a, sale, quantity=4)

    def test_zero_quantity_is_invalid(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=3)

        with pytest.raises(ValidationError):
            _refund_one(ctx_a, sale, quantity=0)

    def test_duplicate_line_rejected(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=3)
        line_id = sale.lines[0].id

        with pytest.raises(ValidationError):
            process_refund(
                ctx_a,
                sale.id,
                [RefundLineRequest(line_id=line_id, quantity=1), RefundLineRequest(line_id=line_id, quantity=1)],
            )

    def test_line_from_other_receipt_rejected(self, db_session, ctx_a, stocked_product, sell):
        first = sell(stocked_product)
        second = sell(stocked_product)

        with pytest.raises(ValidationError):
            process_refund(ctx_a, first.id, [RefundLineRequest(line_id=second.lines[0].id, quantity=1)])

    def test_voided_sale_cannot_be_refunded(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product)
        sales_service.void_receipt(ctx_a, sale.id, "Cashier error")

        with pytest.raises(ConflictError):
            _refund_one(ctx_a, sale)

    def test_refund_of_refund_rejected(self, db_session, ctx_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=2)
        refund = _refund_one(ctx_a, sale)

        with pytest.raises(ValidationError):
            process_refund(ctx_a, refund.id, [RefundLineRequest(line_id=refund.lines[0].id, quantity=1)])

    def test_payment_mismatch_rejected(self, db_session, ctx_a, store_a, stocked_product, sell):
        sale = sell(stocked_product, quantity=1)

        with pytest.raises(ValidationError):
            _refund_one(ctx_a, sale, payments=[PaymentTender(PaymentMethod.CASH, 500)])

        assert _on_hand(store_a, stocked_product) == 9
        assert db_session.get(SaleLine, sale.lines[0].id).refunded_quantity == 0

    def test_other_tenant_cannot_refund(self, db_session, ctx_a, ctx_b, stocked_product, sell):
        sale = sell(stocked_product)

        with pytest.raises(NotFoundError):
            _refund_one(ctx_b, sale)


class TestRefundProration:

    def test_partial_refunds_sum_to_original(self, db_session, ctx_a, make_product, sell):
        """$3.33 x 3 at 8.25%: tax 82 splits 27 / 28 / 27 (cumulative 27, 55, 82)."""
        product = make_product("ODD-PRICE", price_cents=333, tax_rate_bps=825, track_inventory=False)
        sale = sell(product, quantity=3, cash_cents=2000)
        assert sale.total_cents == 1081

        refunds = [_refund_one(ctx_a, sale) for _ in range(3)]

        assert [r.tax_cents for r in refunds] == [-27, -28, -27]
        assert [r.total_cents for r in refunds] == [-360, -361, -360]
        assert sum(r.total_cents for r in refunds) == -sale.total_cents
        assert sum(r.tax_cents for r in refunds) == -sale.tax_cents

    def _assert_unit_refunds_track_pro_rata(self, ctx, sale):
        line = sale.lines[0]
        refunds = [_refund_one(ctx, sale) for _ in range(line.quantity)]

        for refund in refunds:
            refund_line = refund.lines[0]
            assert refund.total_cents < 0
            assert refund_line.discount_cents <= 0
            assert refund_line.tax_cents <= 0
            assert abs(-refund.total_cents * line.quantity - line.line_total_cents) <= line.quantity

        assert sum(r.total_cents for r in refunds) == -sale.total_cents
        assert sum(r.lines[0].discount_cents for r in refunds) == -line.discount_cents
        assert sum(r.lines[0].tax_cents for r in refunds) == -line.tax_cents
        return refunds

    def test_unit_by_unit_refund_with_line_discount(self, db_session, ctx_a, store_a, make_product):
        """10c x 10 with 5% off (total 95): every unit refunds 9 or 10 cents, never more."""
        product = make_product("PENNY-10", price_cents=10, tax_rate_bps=0, track_inventory=False)
        sale = sales_service.create_sale(
            ctx_a,
            CreateSaleInput(
                store_id=store_a.id,
                lines=[
                    CartLine(
                        product_id=product.id,
                        quantity=10,
                        discount=LineDiscount(LineDiscountType.PERCENT, 500),
                    )
                ],
                payments=[PaymentTender(PaymentMethod.CASH, 95)],
            ),
        )
        assert sale.total_cents == 95

        refunds = self._assert_unit_refunds_track_pro_rata(ctx_a, sale)

        assert {r.total_cents for r in refunds} <= {-9, -10}
        assert db_session.get(SaleLine, sale.lines[0].id).refunded_quantity == 10

    def test_unit_by_unit_refund_final_unit_succeeds(self, db_session, ctx_a, make_product, sell):
        """1c x 10 at 50% tax (total 15): the tenth refund is still a positive cash payout."""
        product = make_product("PENNY-1", price_cents=1, tax_rate_bps=5000, track_inventory=False)
        sale = sell(product, quantity=10, cash_cents=15)
        assert sale.total_cents == 15

        refunds = self._assert_unit_refunds_track_pro_rata(ctx_a, sale)

        assert {r.total_cents for r in refunds} <= {-1, -2}
        assert refunds[-1].payments[0]["amount_cents"] < 0

    def test_cart_discount_share_is_cumulative(self, db_session, ctx_a, store_a, make_product):
        """A 5c cart discount over ten 10c units spreads as 0/1 cent slices summing to 5."""
        product = make_product("DIME-C", price_cents=10, tax_rate_bps=0, track_inventory=False)
        sale = sales_service.create_sale(
            ctx_a,
            CreateSaleInput(
                store_id=store_a.id,
                lines=[CartLine(product_id=product.id, quantity=10)],
                cart_discounts=[CartDiscount(DiscountKind.CART, 5)],
                payments=[PaymentTender(PaymentMethod.CASH, 95)],
            ),
        )
        assert sale.total_cents == 95

        refunds = [_refund_one(ctx_a, sale) for _ in range(10)]

        assert all(r.discount_cents in (0, -1) for r in refunds)
        assert {r.total_cents for r in refunds} <= {-9, -10}
        assert sum(r.discount_cents for r in refunds) == -5
        assert sum(r.total_cents for r in refunds) == -95

    def test_cart_discount_prorated(self, db_session, ctx_a, store_a, make_product):
        product = make_product("PLAIN-1", tax_rate_bps=0, track_inventory=False)
        sale = sales_service.create_sale(
            ctx_a,
            CreateSaleInput(
                store_id=store_a.id,
                lines=[CartLine(product_id=product.id, quantity=2)],
                cart_discounts=[CartDiscount(DiscountKind.COUPON, 200, code="SAVE2")],
                payments=[PaymentTender(PaymentMethod.CASH, 1800)],
            ),
        )
        assert sale.total_cents == 1800

        first = _refund_one(ctx_a, sale)
        second = _refund_one(ctx_a, sale)

        assert first.total_cents == -900
        assert second.total_cents == -900
        assert first.discount_cents == -100
        assert second.discount_cents == -100
        assert first.discount_details[-1]["kind"] == "cart"


class TestRefundOnShift:

    def test_shift_reconciles_after_refund(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=10000)
        sale = sell(stocked_product, quantity=3, cash_cents=4000, shift_id=shift.id)

        _refund_one(ctx_a, sale, shift_id=shift.id)

        shift = db_session.get(Shift, shift.id)
        assert shift.total_sales_cents == 3300
        assert shift.total_refunds_cents == 1100
        assert shift.total_cash_payments_cents == 2200
        assert shift.transaction_count == 2

        closed = shift_service.close_shift(ctx_a, shift_id=shift.id, closing_cash_cents=12200)
        assert closed.expected_cash_cents == 12200
        assert closed.cash_difference_cents == 0

    def test_refund_on_closed_shift_rejected(self, db_session, ctx_a, store_a, stocked_product, sell):
        shift = shift_service.open_shift(ctx_a, store_id=store_a.id, opening_cash_cents=0)
        sale = sell(stocked_product, quantity=2)
        shift_service.close_shift(ctx_a, shift_id=shift.id, closing_cash_cents=0)

        with pytest.raises(ConflictError):
            _refund_one(ctx_a, sale, shift_id=shift.id)

        assert db_session.query(Receipt).filter_by(type="refund").count() == 0
