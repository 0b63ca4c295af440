# Overview: Pytest coverage for the stock ledger, its projection and stock operations.

"""
Inventory Ledger Tests

StockLevel.quantity always equals the last ledger entry's quantity_after
for its (store, product), and ledger entries can never be changed.
"""

import re

import pytest
from sqlalchemy import delete, update

from retailcore.errors import ConflictError, NotFoundError, ValidationError
from retailcore.models import AuditLog, ShiftCashMovement, StockLedgerEntry, StockLevel
from retailcore.models.guards import AppendOnlyError, is_append_only
from retailcore.services import inventory_service


def _level(db_session, store, product):
    return db_session.query(StockLevel).filter_by(store_id=store.id, product_id=product.id).one()


class TestReceiveStock:

    def test_receive_creates_level_and_entry(self, db_session, ctx_a, store_a, product_a):
        entry = inventory_service.receive_stock(
            ctx_a, store_id=store_a.id, product_id=product_a.id, quantity=10, unit_cost_cents=400
        )

        assert entry.reference_type == "GRN"
        assert re.fullmatch(r"GRN-\d{8}-0001", entry.reference_id)
        assert entry.quantity_before == 0
        assert entry.quantity_after == 10
        assert entry.created_by == ctx_a.user_id

        level = _level(db_session, store_a, product_a)
        assert level.quantity == 10
        assert level.avg_cost_cents == 400
        assert level.last_received_at is not None

    def test_weighted_average_cost(self, db_session, ctx_a, store_a, product_a):
        inventory_service.receive_stock(ctx_a, store_id=store_a.id, product_id=product_a.id, quantity=10, unit_cost_cents=400)
        inventory_service.receive_stock(ctx_a, store_id=store_a.id, product_id=product_a.id, quantity=10, unit_cost_cents=500)

        level = _level(db_session, store_a, product_a)
        assert level.quantity == 20
        assert level.avg_cost_cents == 450

    def test_supplier_reference_kept(self, db_session, ctx_a, store_a, product_a):
        entry = inventory_service.receive_stock(
            ctx_a, store_id=store_a.id, product_id=product_a.id, quantity=1,
            unit_cost_cents=400, reference_id="PO-7781",
        )
        assert entry.reference_id == "PO-7781"

    def test_invalid_quantity(self, db_session, ctx_a, store_a, product_a):
        with pytest.raises(ValidationError):
            inventory_service.receive_stock(
                ctx_a, store_id=store_a.id, product_id=product_a.id, quantity=0, unit_cost_cents=400
            )

    def test_other_tenant_product(self, db_session, ctx_a, store_a, product_b):
        with pytest.raises(NotFoundError):
            inventory_service.receive_stock(
                ctx_a, store_id=store_a.id, product_id=product_b.id, quantity=1, unit_cost_cents=1
            )


class TestAdjustTransferCount:

    def test_adjust_down(self, db_session, ctx_a, store_a, stocked_product):
        entry = inventory_service.adjust_stock(
            ctx_a, store_id=store_a.id, product_id=stocked_product.id, quantity_delta=-2, reason="Damaged in storage"
        )

        assert entry.reference_type == "ADJUSTMENT"
        assert entry.note == "Damaged in storage"
        assert _level(db_session, store_a, stocked_product).quantity == 8

    def test_adjust_below_zero_rejected(self, db_session, ctx_a, store_a, stocked_product):
        with pytest.raises(ConflictError):
            inventory_service.adjust_stock(
                ctx_a, store_id=store_a.id, product_id=stocked_product.id, quantity_delta=-11, reason="Shrink"
            )
        assert _level(db_session, store_a, stocked_product).quantity == 10

    def test_adjust_requires_reason(self, db_session, ctx_a, store_a, stocked_product):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(
                ctx_a, store_id=store_a.id, product_id=stocked_product.id, quantity_delta=1, reason=""
            )

    def test_transfer(self, db_session, ctx_a, store_a, store_a2, stocked_product):
        out_entry, in_entry = inventory_service.transfer_stock(
            ctx_a, from_store_id=store_a.id, to_store_id=store_a2.id, product_id=stocked_product.id, quantity=4
        )

        assert out_entry.reference_type == "TRANSFER_OUT"
        assert in_entry.reference_type == "TRANSFER_IN"
        assert out_entry.reference_id == in_entry.reference_id
        assert out_entry.quantity_delta == -4
        assert in_entry.quantity_delta == 4

        assert _level(db_session, store_a, stocked_product).quantity == 6
        destination = _level(db_session, store_a2, stocked_product)
        assert destination.quantity == 4
        assert destination.avg_cost_cents == 400

    def test_transfer_more_than_on_hand(self, db_session, ctx_a, store_a, store_a2, stocked_product):
        with pytest.raises(ConflictError):
            inventory_service.transfer_stock(
                ctx_a, from_store_id=store_a.id, to_store_id=store_a2.id, product_id=stocked_product.id, quantity=11
            )
        assert db_session.query(StockLevel).filter_by(store_id=store_a2.id).count() == 0

    def test_transfer_same_store_rejected(self, db_session, ctx_a, store_a, stocked_product):
        with pytest.raises(ValidationError):
            inventory_service.transfer_stock(
                ctx_a, from_store_id=store_a.id, to_store_id=store_a.id, product_id=stocked_product.id, quantity=1
            )

    def test_transfer_to_other_tenant_store(self, db_session, ctx_a, store_a, store_b, stocked_product):
        with pytest.raises(NotFoundError):
            inventory_service.transfer_stock(
                ctx_a, from_store_id=store_a.id, to_store_id=store_b.id, product_id=stocked_product.id, quantity=1
            )

    def test_count_posts_difference(self, db_session, ctx_a, store_a, stocked_product):
        entry = inventory_service.count_stock(
            ctx_a, store_id=store_a.id, product_id=stocked_product.id, counted_quantity=7
        )

        assert entry.reference_type == "STOCK_COUNT"
        assert entry.quantity_delta == -3
        assert _level(db_session, store_a, stocked_product).quantity == 7

    def test_count_matching_on_hand_posts_zero_entry(self, db_session, ctx_a, store_a, stocked_product):
        entry = inventory_service.count_stock(
            ctx_a, store_id=store_a.id, product_id=stocked_product.id, counted_quantity=10
        )
        assert entry.quantity_delta == 0
        assert entry.quantity_after == 10


class TestReads:

    def test_stock_level_for_unmoved_product(self, db_session, ctx_a, store_a, product_a):
        level = inventory_service.get_stock_level(ctx_a, store_a.id, product_a.id)
        assert level["quantity"] == 0
        assert level["available_quantity"] == 0

    def test_stock_level(self, db_session, ctx_a, store_a, stocked_product):
        level = inventory_service.get_stock_level(ctx_a, store_a.id, stocked_product.id)
        assert level["quantity"] == 10
        assert level["avg_cost_cents"] == 400

    def test_history_newest_first_with_filters(self, db_session, ctx_a, store_a, stocked_product, sell):
        sell(stocked_product, quantity=2)
        sell(stocked_product, quantity=1)

        entries, total = inventory_service.get_ledger_history(
            ctx_a, store_id=store_a.id, product_id=stocked_product.id
        )
        assert total == 3
        assert [e.quantity_after for e in entries] == [7, 8, 10]

        sales, total = inventory_service.get_ledger_history(ctx_a, reference_type="SALE", limit=1)
        assert total == 2
        assert len(sales) == 1

    def test_history_unknown_reference_type(self, db_session, ctx_a):
        with pytest.raises(ValidationError):
            inventory_service.get_ledger_history(ctx_a, reference_type="MAGIC")

    def test_history_is_tenant_scoped(self, db_session, ctx_b, stocked_product):
        entries, total = inventory_service.get_ledger_history(ctx_b)
        assert total == 0
        assert entries == []


class TestLedgerIntegrity:

    def test_chain_verifies_after_mixed_activity(
        self, db_session, ctx_a, tenant_a, store_a, store_a2, stocked_product, sell
    ):
        sell(stocked_product, quantity=3)
        inventory_service.transfer_stock(
            ctx_a, from_store_id=store_a.id, to_store_id=store_a2.id, product_id=stocked_product.id, quantity=2
        )
        inventory_service.count_stock(ctx_a, store_id=store_a.id, product_id=stocked_product.id, counted_quantity=4)

        assert inventory_service.verify_ledger_chain(tenant_a.id) == []

    def test_projection_mismatch_detected(self, db_session, tenant_a, store_a, stocked_product):
        db_session.execute(
            update(StockLevel)
            .where(StockLevel.store_id == store_a.id, StockLevel.product_id == stocked_product.id)
            .values(quantity=99)
        )
        db_session.commit()

        issues = inventory_service.verify_ledger_chain(tenant_a.id)
        assert [i["type"] for i in issues] == ["projection_mismatch"]
        assert issues[0]["ledger_quantity"] == 10
        assert issues[0]["stock_level_quantity"] == 99

    def test_orm_update_rejected(self, db_session, stocked_product):
        entry = db_session.query(StockLedgerEntry).first()
        entry.quantity_delta = 100

        with pytest.raises(AppendOnlyError):
            db_session.flush()
        db_session.rollback()

    def test_orm_delete_rejected(self, db_session, stocked_product):
        entry = db_session.query(StockLedgerEntry).first()
        db_session.delete(entry)

        with pytest.raises(AppendOnlyError):
            db_session.flush()
        db_session.rollback()

    def test_bulk_update_rejected(self, db_session, stocked_product):
        with pytest.raises(AppendOnlyError):
            db_session.execute(update(StockLedgerEntry).values(quantity_delta=0))
        db_session.rollback()

    def test_bulk_delete_rejected(self, db_session, stocked_product):
        with pytest.raises(AppendOnlyError):
            db_session.query(StockLedgerEntry).delete()
        db_session.rollback()

        assert db_session.query(StockLedgerEntry).count() == 1

    def test_core_delete_rejected(self, db_session, stocked_product):
        with pytest.raises(AppendOnlyError):
            db_session.execute(delete(StockLedgerEntry))
        db_session.rollback()

    def test_append_only_registry(self, app):
        """Ledger, cash movements and audit rows are guarded; the projection is not."""
        for model in (StockLedgerEntry, ShiftCashMovement, AuditLog):
            assert is_append_only(model.__tablename__)
        assert not is_append_only(StockLevel.__tablename__)
