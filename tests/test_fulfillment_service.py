"""
Tests for the fulfillment calculation.

Most tests use persisted rows through the builder fixtures; the pure
calculation is also exercised directly against in-memory objects.
"""
import pytest

from syncflow.models.inventory import InventoryKey, InventoryRecord
from syncflow.models.order import Order, OrderStatus
from syncflow.models.production_line import LineStatus
from syncflow.services import fulfillment_service, inventory_service, order_service
from syncflow.services.fulfillment_service import calculate_fulfillment, parse_line_ids


class TestParseLineIds:

    @pytest.mark.parametrize("raw, expected", [
        ("1/2", {1, 2}),
        ("1, 2,3", {1, 2, 3}),
        ("", set()),
        (None, set()),
        ("4/x", {4}),
    ])
    def test_formats(self, raw, expected):
        assert parse_line_ids(raw) == expected

    def test_single_line_fallback(self):
        assert parse_line_ids(None, 7) == {7}
        assert parse_line_ids("", 0) == set()


class TestBondedScenario:

    def test_stock_plus_capacity(self, db, make_stock, make_line, make_order):
        """Bonded order of 100t; 40t bonded stock and 30t of export output give 70%."""
        make_stock("BE3340", 40, warehouse_type="bonded")
        make_stock("BE3340", 500, warehouse_type="general")
        make_line("BE3340", export_capacity=30)
        order = make_order("BE3340", 100, trade_type="bonded")

        result = fulfillment_service.fulfillment_for_order(db, order)

        assert result.percent == pytest.approx(70)
        assert result.is_shortage
        assert not result.satisfied
        assert result.breakdown["total_available"] == 70
        assert result.breakdown["regimes"] == ["bonded"]
        assert result.breakdown["contributing_lines"] == ["Line 1"]

        change = order_service.change_status(db, order.id, OrderStatus.READY_TO_SHIP)
        assert not change.applied
        assert "70.0%" in change.warning
        assert order_service.get_order(db, order.id).status == OrderStatus.PENDING


class TestCalculation:

    def test_locked_stock_is_not_available(self, db, make_stock, make_order):
        make_stock("BE3250", 80)
        inventory_service.lock(db, InventoryKey("BE3250"), 30)
        order = make_order("BE3250", 100)
        assert fulfillment_service.fulfillment_for_order(db, order).percent == pytest.approx(50)

    def test_percent_is_not_capped(self, db, make_stock, make_order):
        make_stock("BE3250", 300)
        order = make_order("BE3250", 100)
        result = fulfillment_service.fulfillment_for_order(db, order)
        assert result.percent == pytest.approx(300)
        assert not result.is_shortage

    def test_line_filter_limits_stock_and_capacity(self, db, make_stock, make_line, make_order):
        make_line("BE3250", export_capacity=10)
        make_line("BE3250", export_capacity=20)
        make_stock("BE3250", 15, line_id=1)
        make_stock("BE3250", 40, line_id=2)
        order = make_order("BE3250", 100, line_ids="1")

        result = fulfillment_service.fulfillment_for_order(db, order)
        assert result.breakdown["stock_contribution"] == 15
        assert result.breakdown["incoming_capacity"] == 10
        assert result.percent == pytest.approx(25)

    def test_package_spec_filter(self, db, make_stock, make_order):
        make_stock("BE3250", 30, package_spec="820kg")
        make_stock("BE3250", 50, package_spec="25kg")
        order = make_order("BE3250", 100, package_spec="25kg")
        assert fulfillment_service.fulfillment_for_order(db, order).percent == pytest.approx(50)

    def test_stopped_line_capacity_ignored(self, db, make_line, make_order):
        make_line("BE3250", export_capacity=50, status=LineStatus.STOPPED)
        order = make_order("BE3250", 100)
        assert fulfillment_service.fulfillment_for_order(db, order).percent == 0

    def test_allocation_caps_each_regime(self, db, make_stock, make_order):
        make_stock("BE3250", 80, warehouse_type="general")
        make_stock("BE3250", 10, warehouse_type="bonded")
        order = make_order("BE3250", 100)
        order_service.set_allocation(db, order.id, general=60, bonded=40)

        result = fulfillment_service.fulfillment_for_order(db, order)
        # min(60, 80) + min(40, 10)
        assert result.breakdown["stock_contribution"] == 70
        assert result.breakdown["regimes"] == ["general", "bonded"]

    @pytest.mark.parametrize("status", [OrderStatus.READY_TO_SHIP, OrderStatus.SHIPPED])
    def test_terminal_orders_report_full(self, status):
        order = Order(id="o1", style_no="BE3250", total_tons=100, status=status)
        result = calculate_fulfillment(order, [], [])
        assert result.percent == 100
        assert result.breakdown["locked"] is True

    def test_competing_orders_reported(self, db, make_stock, make_order):
        make_stock("BE3250", 80)
        first = make_order("BE3250", 50)
        second = make_order("BE3250", 60)
        make_order("BE2250", 10)

        results = fulfillment_service.fulfillment_for_orders(db)
        assert results[first.id].breakdown["competing_orders"] == [second.id]
        assert results[first.id].breakdown["competing_demand"] == 60
        # Both orders see the same stock
        assert results[first.id].breakdown["stock_contribution"] == 80
        assert results[second.id].breakdown["stock_contribution"] == 80


class TestMonotonicity:

    def _record(self, stock):
        return InventoryRecord(
            style_no="BE3250", warehouse_type="general", package_spec="820kg",
            line_id=0, current_stock=stock, locked_for_today=0.0,
        )

    def test_more_stock_never_lowers_percent(self):
        order = Order(id="o1", style_no="BE3250", total_tons=100, status=OrderStatus.PENDING, trade_type="general")
        previous = -1.0
        for stock in (0, 10, 45, 99.9, 100, 250):
            percent = calculate_fulfillment(order, [self._record(stock)], []).percent
            assert percent >= previous
            previous = percent

    def test_more_locked_stock_never_raises_percent(self):
        order = Order(id="o1", style_no="BE3250", total_tons=100, status=OrderStatus.PENDING, trade_type="general")
        previous = float("inf")
        for locked in (0, 10, 45, 80, 120):
            record = self._record(120)
            record.locked_for_today = locked
            percent = calculate_fulfillment(order, [record], []).percent
            assert percent <= previous
            previous = percent
        assert previous == 0
