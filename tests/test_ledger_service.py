"""Tests for ledger and audit-log queries."""
from datetime import timedelta

import pytest

from syncflow.errors import ValidationError
from syncflow.models.inventory import InventoryKey
from syncflow.services import inventory_service, ledger_service

KEY = InventoryKey("BE3250")
BONDED = InventoryKey("BE3340", "bonded", line_id=5)


@pytest.fixture
def movements(db):
    inventory_service.stock_in(db, KEY, 80, source="production")
    inventory_service.stock_out(db, KEY, 30, order_id="order-1")
    inventory_service.stock_in(db, BONDED, 50)
    inventory_service.adjust(db, KEY, grade_a=45, grade_b=0, reason="stocktake")
    inventory_service.lock(db, BONDED, 10, operator="li")


class TestQueryTransactions:

    def test_newest_first(self, db, movements):
        page = ledger_service.query_transactions(db)
        assert page.total == 4
        ids = [t.id for t in page.data]
        assert ids == sorted(ids, reverse=True)

    def test_filters(self, db, movements):
        assert ledger_service.query_transactions(db, style_no="BE3340").total == 1
        assert ledger_service.query_transactions(db, warehouse_type="bonded").total == 1
        assert ledger_service.query_transactions(db, line_id=5).total == 1
        assert ledger_service.query_transactions(db, tx_type="OUT").data[0].order_id == "order-1"
        assert ledger_service.query_transactions(db, order_id="order-1").total == 1
        assert ledger_service.query_transactions(db, tx_type="ADJUST_OUT").total == 1

    def test_unknown_type_rejected(self, db, movements):
        with pytest.raises(ValidationError):
            ledger_service.query_transactions(db, tx_type="MOVE")

    def test_date_range_includes_whole_end_day(self, db, movements):
        day = ledger_service.query_transactions(db).data[-1].created_at.date()
        assert ledger_service.query_transactions(db, start_date=day, end_date=day + timedelta(days=1)).total == 4
        assert ledger_service.query_transactions(db, end_date=day - timedelta(days=1)).total == 0

    def test_pagination(self, db, movements):
        page = ledger_service.query_transactions(db, page=2, page_size=3)
        assert page.total == 4
        assert len(page.data) == 1
        assert page.total_pages == 2

    def test_page_size_capped(self, db, movements):
        page = ledger_service.query_transactions(db, page_size=10_000)
        assert page.page_size == 500


class TestQueryAuditLogs:

    def test_filter_by_action(self, db, movements):
        assert ledger_service.query_audit_logs(db).total == 2
        [lock] = ledger_service.query_audit_logs(db, action="lock").data
        assert lock.operator == "li"
        assert lock.line_id == 5

    def test_unknown_action_rejected(self, db, movements):
        with pytest.raises(ValidationError):
            ledger_service.query_audit_logs(db, action="delete")


class TestReplay:

    def test_replay_matches_each_key(self, db, movements):
        for key in (KEY, BONDED):
            record = inventory_service.get_record(db, key)
            assert ledger_service.replay_balance(db, key) == pytest.approx(record.current_stock)

    def test_replay_unknown_key_is_zero(self, db):
        assert ledger_service.replay_balance(db, InventoryKey("NOPE")) == 0
