import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from syncflow.config import settings
from syncflow.errors import InsufficientStockError, NotFoundError, ValidationError
from syncflow.models.inventory import Grade, InventoryKey, InventoryRecord, InventoryTransaction, TransactionType, WarehouseType
from syncflow.models.order import TERMINAL_STATUSES, Order, OrderStatus, TradeType
from syncflow.schemas.order import OrderCreate, OrderUpdate
from syncflow.services import fulfillment_service, inventory_service
from syncflow.services.fulfillment_service import FulfillmentResult, parse_line_ids

logger = logging.getLogger(__name__)

SHIPMENT_SOURCE = "shipment"
ROLLBACK_SOURCE = "order_rollback"

# Fields an update may set to null: "no date", "any package", "any line"
_CLEARABLE_FIELDS = {"order_date", "expected_ship_date", "package_spec", "line_ids"}


@dataclass
class StatusChange:
    applied: bool
    order: Order
    warning: str = ""
    fulfillment: FulfillmentResult | None = None


def _add_status_history(order: Order, status: str, note: str = "", operator: str = "") -> None:
    history = json.loads(order.status_history) if order.status_history else []
    history.append({
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "note": note,
        "operator": operator or settings.DEFAULT_OPERATOR,
    })
    order.status_history = json.dumps(history)


def _require_order(db: Session, order_id: str) -> Order:
    order = get_order(db, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _validate_allocation(total_tons: float, general: float, bonded: float) -> dict:
    if general < 0 or bonded < 0:
        raise ValidationError("Allocation amounts cannot be negative")
    if abs(general + bonded - total_tons) > settings.ALLOCATION_TOLERANCE:
        raise ValidationError(
            f"allocation must sum to order total ({general:g} + {bonded:g} != {total_tons:g})"
        )
    # Within tolerance; store an exact split so full stock can reach 100%
    general = min(float(general), float(total_tons))
    return {"general": general, "bonded": float(total_tons) - general}


def _normalise_line_ids(line_ids: str) -> str:
    return "/".join(str(i) for i in sorted(parse_line_ids(line_ids)))


def create_order(db: Session, data: OrderCreate) -> Order:
    if data.total_tons <= 0:
        raise ValidationError("Order total must be greater than 0")
    order = Order(
        order_date=data.order_date,
        client=data.client,
        pi_no=data.pi_no,
        style_no=data.style_no.strip(),
        package_spec=data.package_spec.value if data.package_spec else "",
        line_ids=_normalise_line_ids(data.line_ids),
        total_tons=data.total_tons,
        trade_type=data.trade_type,
        status=OrderStatus.PENDING,
        is_large_order=data.total_tons >= settings.LARGE_ORDER_THRESHOLD,
        expected_ship_date=data.expected_ship_date,
        requirements=data.requirements,
    )
    if data.warehouse_allocation:
        alloc = data.warehouse_allocation
        order.allocation = _validate_allocation(data.total_tons, alloc.general, alloc.bonded)

    _add_status_history(order, OrderStatus.PENDING.value, "Order created")
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Created order %s for %.3ft of %s", order.id, order.total_tons, order.style_no)
    return order


def get_order(db: Session, order_id: str) -> Order | None:
    return db.query(Order).filter(Order.id == order_id).first()


def list_orders(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    style_no: str | None = None,
) -> list[Order]:
    q = db.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if style_no:
        q = q.filter(Order.style_no == style_no)
    return q.order_by(Order.created_at.desc()).offset(skip).limit(limit).all()


def update_order(db: Session, order_id: str, data: OrderUpdate) -> Order:
    """Edit order fields other than status and allocation."""
    order = _require_order(db, order_id)
    if order.status == OrderStatus.SHIPPED:
        raise ValidationError("Shipped orders cannot be edited")

    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None and field not in _CLEARABLE_FIELDS:
            raise ValidationError(f"{field} cannot be null")
    if "total_tons" in update_data and update_data["total_tons"] <= 0:
        raise ValidationError("Order total must be greater than 0")
    if "line_ids" in update_data:
        update_data["line_ids"] = _normalise_line_ids(update_data["line_ids"] or "")
    if "package_spec" in update_data:
        spec = update_data["package_spec"]
        update_data["package_spec"] = spec.value if spec else ""
    if "style_no" in update_data:
        update_data["style_no"] = update_data["style_no"].strip()
        if not update_data["style_no"]:
            raise ValidationError("Style number is required")
    for field, value in update_data.items():
        setattr(order, field, value)

    if "total_tons" in update_data:
        order.is_large_order = order.total_tons >= settings.LARGE_ORDER_THRESHOLD
        alloc = order.allocation
        if alloc and abs(alloc["general"] + alloc["bonded"] - order.total_tons) > settings.ALLOCATION_TOLERANCE:
            # The old split no longer describes this order
            order.allocation = None
            logger.info("Dropped stale warehouse allocation on order %s", order.id)
        elif alloc:
            order.allocation = _validate_allocation(order.total_tons, alloc["general"], alloc["bonded"])

    db.commit()
    db.refresh(order)
    return order


def acknowledge_large_order(db: Session, order_id: str) -> Order:
    order = _require_order(db, order_id)
    order.large_order_ack = True
    db.commit()
    db.refresh(order)
    return order


# --- Allocation manager ---

def set_allocation(db: Session, order_id: str, general: float, bonded: float) -> Order:
    """Split an order's demand between the general and bonded warehouses.

    Only the sum is checked here; a split the warehouses cannot cover simply
    shows up as a larger shortfall in the fulfillment figures.
    """
    order = _require_order(db, order_id)
    order.allocation = _validate_allocation(order.total_tons, general, bonded)
    db.commit()
    db.refresh(order)
    return order


def clear_allocation(db: Session, order_id: str) -> Order:
    order = _require_order(db, order_id)
    order.allocation = None
    db.commit()
    db.refresh(order)
    return order


# --- Status machine ---

def _regime_demand(order: Order) -> dict[WarehouseType, float]:
    alloc = order.allocation
    if alloc:
        return {WarehouseType.GENERAL: alloc.get("general", 0.0), WarehouseType.BONDED: alloc.get("bonded", 0.0)}
    regime = WarehouseType.BONDED if order.trade_type == TradeType.BONDED else WarehouseType.GENERAL
    return {regime: order.total_tons}


def _shipment_sources(db: Session, order: Order, regime: WarehouseType) -> list[InventoryRecord]:
    q = db.query(InventoryRecord).filter(
        InventoryRecord.style_no == order.style_no,
        InventoryRecord.warehouse_type == regime.value,
    )
    line_ids = parse_line_ids(order.line_ids)
    if line_ids:
        q = q.filter(InventoryRecord.line_id.in_(line_ids))
    if order.package_spec:
        q = q.filter(InventoryRecord.package_spec == order.package_spec)
    return q.order_by(InventoryRecord.package_spec, InventoryRecord.line_id).with_for_update().all()


def _draw_shipment(db: Session, order: Order) -> None:
    """Deduct the order's tonnage from stock, grade A before grade B, record by record.

    Every regime is checked before anything is deducted; a shortage raises
    ``InsufficientStockError`` and the caller rolls back.
    """
    plan = []
    for regime, needed in _regime_demand(order).items():
        if needed <= 0:
            continue
        records = _shipment_sources(db, order, regime)
        on_hand = sum(r.current_stock for r in records)
        if on_hand + 1e-9 < needed:
            raise InsufficientStockError(
                f"Insufficient {regime.value} stock to ship order {order.id}: "
                f"on hand {on_hand:g}t, needed {needed:g}t"
            )
        plan.append((records, needed))

    for records, needed in plan:
        remaining = needed
        for record in records:
            for grade in (Grade.A, Grade.B):
                take = min(remaining, record.grade_amount(grade))
                if take <= 0:
                    continue
                inventory_service.apply_stock_out(
                    db,
                    record.key,
                    take,
                    grade,
                    source=SHIPMENT_SOURCE,
                    note=f"Shipped order {order.pi_no or order.id}",
                    order_id=order.id,
                )
                remaining -= take
            if remaining <= 1e-9:
                break


def change_status(
    db: Session,
    order_id: str,
    status: OrderStatus,
    note: str = "",
    operator: str = "",
) -> StatusChange:
    """Move an order to ``status``.

    Moving into ReadyToShip or Shipped requires full coverage; without it the
    change is declined (``applied=False`` with a warning) and nothing is
    written. Shipping deducts the stock in the same transaction.
    """
    order = _require_order(db, order_id)
    status = OrderStatus(status)
    current = OrderStatus(order.status)

    if status == current:
        return StatusChange(True, order)
    if current == OrderStatus.SHIPPED:
        return _decline(order, "Shipped orders cannot change status; delete the order to return its stock")

    fulfillment = None
    if status in TERMINAL_STATUSES:
        fulfillment = fulfillment_service.fulfillment_for_order(db, order)
        if not fulfillment.satisfied:
            return _decline(
                order,
                f"Insufficient stock: fulfillment is {_floor_percent(fulfillment.percent)}%, 100% is required",
                fulfillment,
            )

    try:
        if status == OrderStatus.SHIPPED:
            _draw_shipment(db, order)
        order.status = status
        _add_status_history(order, status.value, note, operator)
        db.commit()
    except InsufficientStockError as e:
        db.rollback()
        db.refresh(order)
        return _decline(order, str(e), fulfillment)
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Order %s moved %s -> %s", order.id, current.value, status.value)
    return StatusChange(True, order, fulfillment=fulfillment)


def _floor_percent(percent: float) -> str:
    # Truncated so a shortfall never prints as 100.0
    return f"{math.floor(percent * 10) / 10:.1f}"


def _decline(order: Order, warning: str, fulfillment: FulfillmentResult | None = None) -> StatusChange:
    logger.warning("Status change declined for order %s: %s", order.id, warning)
    return StatusChange(False, order, warning, fulfillment)


def delete_order(db: Session, order_id: str) -> int:
    """Delete an order; a shipped order's stock is booked back first. Returns entries rolled back."""
    order = _require_order(db, order_id)
    rolled_back = 0
    try:
        if order.status == OrderStatus.SHIPPED:
            shipped = (
                db.query(InventoryTransaction)
                .filter(
                    InventoryTransaction.order_id == order.id,
                    InventoryTransaction.type == TransactionType.OUT.value,
                )
                .order_by(InventoryTransaction.id)
                .all()
            )
            for tx in shipped:
                key = InventoryKey(tx.style_no, tx.warehouse_type, tx.package_spec, tx.line_id)
                inventory_service.apply_stock_in(
                    db,
                    key,
                    tx.quantity,
                    tx.grade,
                    source=ROLLBACK_SOURCE,
                    note=f"Order {order.pi_no or order.id} deleted, stock returned",
                    order_id=order.id,
                )
                rolled_back += 1
        db.delete(order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Deleted order %s (%d ledger entries rolled back)", order_id, rolled_back)
    return rolled_back
