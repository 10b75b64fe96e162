"""How much of an order's demand current stock plus today's output can cover.

The calculation is pure over a snapshot of inventory records, production lines
and orders, so it is safe to recompute on every read.
"""
import re
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from syncflow.models.inventory import InventoryRecord, WarehouseType
from syncflow.models.order import TERMINAL_STATUSES, Order, OrderStatus, TradeType
from syncflow.models.production_line import ProductionLine
from syncflow.services.capacity_service import capacity_for_style

FULFILLED = 100.0
# Float noise from summing per-regime tonnage
_EPSILON = 1e-9


@dataclass
class FulfillmentResult:
    percent: float
    is_shortage: bool
    breakdown: dict = field(default_factory=dict)

    @property
    def satisfied(self) -> bool:
        return self.percent >= FULFILLED - _EPSILON


def parse_line_ids(line_ids: str | int | None, line_id: int | None = None) -> set[int]:
    """``"1/2"``, ``"1, 2,3"`` or a single id; an empty result means any line."""
    if line_ids not in (None, ""):
        parsed = set()
        for part in re.split(r"[/,]", str(line_ids)):
            part = part.strip()
            if part.isdigit():
                parsed.add(int(part))
        return parsed
    return {int(line_id)} if line_id else set()


def _status(order) -> OrderStatus:
    return OrderStatus(order.status or OrderStatus.PENDING)


def _regime(order) -> WarehouseType:
    trade_type = TradeType(order.trade_type or TradeType.GENERAL)
    return WarehouseType.BONDED if trade_type == TradeType.BONDED else WarehouseType.GENERAL


def available_stock(
    inventory: Iterable[InventoryRecord],
    style_no: str,
    warehouse_type: WarehouseType,
    line_ids: set[int] | None = None,
    package_spec: str | None = None,
) -> float:
    """Unlocked stock for a style in one regime, optionally limited to lines and a package spec."""
    total = 0.0
    for r in inventory:
        if r.style_no != style_no or r.warehouse_type != warehouse_type.value:
            continue
        if line_ids and r.line_id not in line_ids:
            continue
        if package_spec and r.package_spec != package_spec:
            continue
        total += (r.current_stock or 0.0) - (r.locked_for_today or 0.0)
    return max(0.0, total)


def calculate_fulfillment(
    order: Order,
    inventory: Iterable[InventoryRecord],
    lines: Iterable[ProductionLine],
    orders: Iterable[Order] = (),
) -> FulfillmentResult:
    if _status(order) in TERMINAL_STATUSES:
        return FulfillmentResult(FULFILLED, False, {"locked": True, "status": _status(order).value})

    inventory = list(inventory)
    line_ids = parse_line_ids(order.line_ids)
    package_spec = order.package_spec or None
    total_tons = order.total_tons or 0.0

    general = available_stock(inventory, order.style_no, WarehouseType.GENERAL, line_ids, package_spec)
    bonded = available_stock(inventory, order.style_no, WarehouseType.BONDED, line_ids, package_spec)

    allocation = order.allocation
    if allocation:
        regimes = [WarehouseType.GENERAL.value, WarehouseType.BONDED.value]
        stock = min(allocation.get("general", 0.0), general) + min(allocation.get("bonded", 0.0), bonded)
    else:
        regime = _regime(order)
        regimes = [regime.value]
        stock = general if regime == WarehouseType.GENERAL else bonded

    # Same unconfirmed output is counted for every order of this style
    capacity = capacity_for_style(lines, order.style_no, line_ids)
    incoming = capacity.export_capacity
    total_available = stock + incoming

    competing = [
        o for o in orders
        if o.id != order.id and o.style_no == order.style_no and _status(o) not in TERMINAL_STATUSES
    ]

    percent = (total_available / total_tons) * 100 if total_tons > 0 else FULFILLED
    return FulfillmentResult(
        percent=percent,
        is_shortage=percent < FULFILLED - _EPSILON,
        breakdown={
            "locked": False,
            "regimes": regimes,
            "line_ids": sorted(line_ids),
            "general_available": general,
            "bonded_available": bonded,
            "stock_contribution": stock,
            "incoming_capacity": incoming,
            "total_available": total_available,
            "contributing_lines": capacity.contributing_lines,
            "competing_orders": [o.id for o in competing],
            "competing_demand": sum(o.total_tons for o in competing),
        },
    )


def _snapshot(db: Session) -> tuple[list[InventoryRecord], list[ProductionLine], list[Order]]:
    return (
        db.query(InventoryRecord).all(),
        db.query(ProductionLine).all(),
        db.query(Order).all(),
    )


def fulfillment_for_order(db: Session, order: Order) -> FulfillmentResult:
    inventory, lines, orders = _snapshot(db)
    return calculate_fulfillment(order, inventory, lines, orders)


def fulfillment_for_orders(db: Session, orders: list[Order] | None = None) -> dict[str, FulfillmentResult]:
    inventory, lines, all_orders = _snapshot(db)
    targets = all_orders if orders is None else orders
    return {o.id: calculate_fulfillment(o, inventory, lines, all_orders) for o in targets}
