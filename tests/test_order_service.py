"""
Tests for the order lifecycle: creation, allocation, the status gate,
shipment stock-out and delete rollback.
"""
import json

import pytest

from syncflow.errors import NotFoundError, ValidationError
from syncflow.models.inventory import InventoryKey, InventoryTransaction
from syncflow.models.order import OrderStatus
from syncflow.schemas.order import AllocationInput, OrderCreate, OrderUpdate
from syncflow.services import inventory_service, ledger_service, order_service

GENERAL = InventoryKey("BE3250")
BONDED = InventoryKey("BE3250", "bonded")


def _history(order):
    return [h["status"] for h in json.loads(order.status_history)]


# =============================================================================
# Create / update
# =============================================================================


class TestCreateOrder:

    def test_defaults(self, make_order):
        order = make_order("BE3250", 50, line_ids="2, 1")
        assert order.status == OrderStatus.PENDING
        assert order.line_ids == "1/2"
        assert order.is_large_order is False
        assert order.allocation is None
        assert _history(order) == ["Pending"]

    def test_large_order_flag(self, make_order):
        assert make_order("BE3250", 100).is_large_order is True
        assert make_order("BE3250", 99.9).is_large_order is False

    @pytest.mark.parametrize("total", [0, -3])
    def test_total_must_be_positive(self, db, total):
        with pytest.raises(ValidationError):
            order_service.create_order(db, OrderCreate(style_no="BE3250", total_tons=total))

    def test_create_with_allocation(self, db):
        order = order_service.create_order(db, OrderCreate(
            style_no="BE3250", total_tons=100,
            warehouse_allocation=AllocationInput(general=70, bonded=30),
        ))
        assert order.allocation == {"general": 70, "bonded": 30}

    def test_create_with_bad_allocation(self, db):
        with pytest.raises(ValidationError):
            order_service.create_order(db, OrderCreate(
                style_no="BE3250", total_tons=100,
                warehouse_allocation=AllocationInput(general=70, bonded=20),
            ))

    def test_list_filters(self, db, make_order):
        make_order("BE3250", 10)
        make_order("BE2250", 10)
        assert len(order_service.list_orders(db, style_no="BE2250")) == 1
        assert len(order_service.list_orders(db, status=OrderStatus.PENDING)) == 2
        assert order_service.list_orders(db, status=OrderStatus.SHIPPED) == []


class TestUpdateOrder:

    def test_updates_fields(self, db, make_order):
        order = make_order("BE3250", 50)
        updated = order_service.update_order(db, order.id, OrderUpdate(client="BGF", total_tons=120))
        assert updated.client == "BGF"
        assert updated.is_large_order is True

    def test_total_change_drops_stale_allocation(self, db, make_order):
        order = make_order("BE3250", 100)
        order_service.set_allocation(db, order.id, 60, 40)
        updated = order_service.update_order(db, order.id, OrderUpdate(total_tons=80))
        assert updated.allocation is None

    @pytest.mark.parametrize("field", ["client", "style_no", "total_tons", "trade_type"])
    def test_null_for_required_field_rejected(self, db, make_order, field):
        order = make_order("BE3250", 50, client="BGF")
        with pytest.raises(ValidationError, match=f"{field} cannot be null"):
            order_service.update_order(db, order.id, OrderUpdate(**{field: None}))
        db.expire_all()
        kept = order_service.get_order(db, order.id)
        assert (kept.client, kept.style_no, kept.total_tons) == ("BGF", "BE3250", 50)

    def test_null_clears_optional_fields(self, db, make_order):
        order = make_order("BE3250", 50, line_ids="1/2", package_spec="820kg")
        updated = order_service.update_order(db, order.id, OrderUpdate(line_ids=None, package_spec=None))
        assert updated.line_ids == ""
        assert updated.package_spec == ""

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            order_service.update_order(db, "missing", OrderUpdate(client="x"))

    def test_acknowledge_large_order(self, db, make_order):
        order = make_order("BE3250", 150)
        assert order_service.acknowledge_large_order(db, order.id).large_order_ack is True


# =============================================================================
# Allocation
# =============================================================================


class TestAllocation:

    def test_set_and_clear(self, db, make_order):
        order = make_order("BE3250", 100)
        assert order_service.set_allocation(db, order.id, 60, 40).allocation == {"general": 60, "bonded": 40}
        assert order_service.clear_allocation(db, order.id).allocation is None

    def test_within_tolerance_is_stored_as_exact_split(self, db, make_order):
        order = make_order("BE3250", 100)
        alloc = order_service.set_allocation(db, order.id, 60, 39.995).allocation
        assert alloc == {"general": 60, "bonded": 40}

    def test_near_miss_split_can_still_ship(self, db, make_stock, make_order):
        make_stock("BE3250", 500)
        make_stock("BE3250", 500, warehouse_type="bonded")
        order = make_order("BE3250", 100)
        order_service.set_allocation(db, order.id, 60, 39.995)

        change = order_service.change_status(db, order.id, OrderStatus.READY_TO_SHIP)

        assert change.applied
        assert change.fulfillment.percent == pytest.approx(100)

    def test_sum_mismatch(self, db, make_order):
        order = make_order("BE3250", 100)
        with pytest.raises(ValidationError, match="allocation must sum to order total"):
            order_service.set_allocation(db, order.id, 60, 30)
        assert order_service.get_order(db, order.id).allocation is None

    def test_negative_rejected(self, db, make_order):
        order = make_order("BE3250", 100)
        with pytest.raises(ValidationError):
            order_service.set_allocation(db, order.id, 120, -20)

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            order_service.set_allocation(db, "missing", 1, 0)


# =============================================================================
# Status machine
# =============================================================================


class TestStatusGate:

    def test_free_moves_between_non_terminal_states(self, db, make_order):
        order = make_order("BE3250", 100)
        for status in (OrderStatus.CONFIRMED, OrderStatus.IN_PRODUCTION, OrderStatus.DELAYED):
            change = order_service.change_status(db, order.id, status, operator="wang")
            assert change.applied
        assert _history(change.order) == ["Pending", "Confirmed", "InProduction", "Delayed"]
        assert json.loads(change.order.status_history)[-1]["operator"] == "wang"

    def test_ready_to_ship_declined_without_full_coverage(self, db, make_stock, make_order):
        make_stock("BE3250", 99)
        order = make_order("BE3250", 100)

        change = order_service.change_status(db, order.id, OrderStatus.READY_TO_SHIP)

        assert not change.applied
        assert change.warning
        assert change.fulfillment.percent == pytest.approx(99)
        assert order_service.get_order(db, order.id).status == OrderStatus.PENDING
        assert _history(order_service.get_order(db, order.id)) == ["Pending"]

    def test_decline_warning_never_rounds_up_to_full(self, db, make_stock, make_order):
        make_stock("BE3250", 99.995)
        order = make_order("BE3250", 100)

        change = order_service.change_status(db, order.id, OrderStatus.READY_TO_SHIP)

        assert not change.applied
        assert "fulfillment is 99.9%" in change.warning

    def test_ready_to_ship_with_full_coverage(self, db, make_stock, make_order):
        make_stock("BE3250", 100)
        order = make_order("BE3250", 100)
        change = order_service.change_status(db, order.id, OrderStatus.READY_TO_SHIP)
        assert change.applied
        assert change.order.status == OrderStatus.READY_TO_SHIP
        # Nothing is deducted before shipment
        assert inventory_service.get_record(db, GENERAL).current_stock == 100

    def test_declined_change_is_logged(self, db, make_order, caplog):
        order = make_order("BE3250", 100)
        with caplog.at_level("WARNING", logger="syncflow.services.order_service"):
            order_service.change_status(db, order.id, OrderStatus.SHIPPED)
        assert "declined" in caplog.text

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            order_service.change_status(db, "missing", OrderStatus.CONFIRMED)

    def test_same_status_is_a_no_op(self, db, make_order):
        order = make_order("BE3250", 10)
        change = order_service.change_status(db, order.id, OrderStatus.PENDING)
        assert change.applied
        assert _history(change.order) == ["Pending"]


class TestShipment:

    def test_shipping_deducts_stock(self, db, make_stock, make_order):
        make_stock("BE3250", 70, grade="A")
        make_stock("BE3250", 50, grade="B")
        order = make_order("BE3250", 100)

        change = order_service.change_status(db, order.id, OrderStatus.SHIPPED)

        assert change.applied
        record = inventory_service.get_record(db, GENERAL)
        assert (record.grade_a, record.grade_b) == (0, 20)
        outs = db.query(InventoryTransaction).filter_by(type="OUT", order_id=order.id).all()
        assert sorted((t.grade, t.quantity) for t in outs) == [("A", 70), ("B", 30)]
        assert ledger_service.replay_balance(db, GENERAL) == pytest.approx(20)

    def test_shipping_from_ready_to_ship(self, db, make_stock, make_order):
        make_stock("BE3250", 100)
        order = make_order("BE3250", 100)
        order_service.change_status(db, order.id, OrderStatus.READY_TO_SHIP)
        change = order_service.change_status(db, order.id, OrderStatus.SHIPPED)
        assert change.applied
        assert inventory_service.get_record(db, GENERAL).current_stock == 0

    def test_shipping_uses_allocation_split(self, db, make_stock, make_order):
        make_stock("BE3250", 80, warehouse_type="general")
        make_stock("BE3250", 50, warehouse_type="bonded")
        order = make_order("BE3250", 100)
        order_service.set_allocation(db, order.id, 60, 40)

        assert order_service.change_status(db, order.id, OrderStatus.SHIPPED).applied
        assert inventory_service.get_record(db, GENERAL).current_stock == 20
        assert inventory_service.get_record(db, BONDED).current_stock == 10

    def test_shortage_in_one_regime_deducts_nothing(self, db, make_stock, make_line, make_order):
        """Capacity lets the gate pass, but stock on hand cannot cover the bonded share."""
        make_stock("BE3250", 80, warehouse_type="general")
        make_stock("BE3250", 10, warehouse_type="bonded")
        make_line("BE3250", export_capacity=40)
        order = make_order("BE3250", 100)
        order_service.set_allocation(db, order.id, 60, 40)

        change = order_service.change_status(db, order.id, OrderStatus.SHIPPED)

        assert not change.applied
        assert "bonded" in change.warning
        assert inventory_service.get_record(db, GENERAL).current_stock == 80
        assert inventory_service.get_record(db, BONDED).current_stock == 10
        assert db.query(InventoryTransaction).filter_by(type="OUT").count() == 0
        assert order_service.get_order(db, order.id).status == OrderStatus.PENDING

    def test_shipment_draws_locked_stock_and_clamps_lock(self, db, make_stock, make_line, make_order):
        make_stock("BE3250", 100)
        inventory_service.lock(db, GENERAL, 30)
        make_line("BE3250", export_capacity=30)
        order = make_order("BE3250", 100)

        assert order_service.change_status(db, order.id, OrderStatus.SHIPPED).applied
        record = inventory_service.get_record(db, GENERAL)
        assert record.current_stock == 0
        assert record.locked_for_today == 0

    def test_leaving_shipped_is_declined(self, db, make_stock, make_order):
        make_stock("BE3250", 100)
        order = make_order("BE3250", 100)
        order_service.change_status(db, order.id, OrderStatus.SHIPPED)

        change = order_service.change_status(db, order.id, OrderStatus.CONFIRMED)
        assert not change.applied
        assert order_service.get_order(db, order.id).status == OrderStatus.SHIPPED


class TestDeleteOrder:

    def test_delete_unshipped(self, db, make_order):
        order = make_order("BE3250", 10)
        assert order_service.delete_order(db, order.id) == 0
        assert order_service.get_order(db, order.id) is None

    def test_delete_shipped_returns_stock(self, db, make_stock, make_order):
        make_stock("BE3250", 70, grade="A")
        make_stock("BE3250", 50, grade="B")
        order = make_order("BE3250", 100)
        order_service.change_status(db, order.id, OrderStatus.SHIPPED)

        assert order_service.delete_order(db, order.id) == 2

        record = inventory_service.get_record(db, GENERAL)
        assert (record.grade_a, record.grade_b) == (70, 50)
        rollbacks = db.query(InventoryTransaction).filter_by(source="order_rollback").all()
        assert {(t.type, t.grade, t.quantity) for t in rollbacks} == {("IN", "A", 70), ("IN", "B", 30)}
        assert ledger_service.replay_balance(db, GENERAL) == pytest.approx(120)

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            order_service.delete_order(db, "missing")
