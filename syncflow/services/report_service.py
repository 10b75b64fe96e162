from datetime import date
from typing import Iterable

from sqlalchemy.orm import Session

from syncflow.models.inventory import InventoryRecord
from syncflow.models.order import Order, OrderStatus
from syncflow.models.production_line import LineStatus, ProductionLine
from syncflow.services import alert_service, fulfillment_service
from syncflow.services.capacity_service import capacity_for_style


def _unshipped(orders: Iterable[Order]) -> list[Order]:
    return [o for o in orders if o.status != OrderStatus.SHIPPED]


def style_coverage(
    orders: Iterable[Order],
    inventory: Iterable[InventoryRecord],
    lines: Iterable[ProductionLine],
) -> list[dict]:
    """Demand against stock plus today's export output, per style.

    Styles with neither demand nor supply are left out.
    """
    orders, inventory, lines = list(orders), list(inventory), list(lines)
    styles = sorted({o.style_no for o in orders} | {r.style_no for r in inventory})

    result = []
    for style in styles:
        demand = sum(o.total_tons for o in _unshipped(orders) if o.style_no == style)
        stock = sum(r.current_stock for r in inventory if r.style_no == style)
        production = capacity_for_style(lines, style).export_capacity
        total_available = stock + production
        if demand <= 0 and total_available <= 0:
            continue
        result.append({
            "style_no": style,
            "demand": round(demand, 2),
            "stock": round(stock, 2),
            "production": round(production, 2),
            "total_available": round(total_available, 2),
            "coverage": round(total_available / demand * 100, 2) if demand > 0 else 100.0,
        })
    return result


def dashboard_summary(db: Session) -> dict:
    orders = db.query(Order).all()
    lines = db.query(ProductionLine).all()
    pending = _unshipped(orders)
    fulfillment = fulfillment_service.fulfillment_for_orders(db, pending)
    today = date.today()

    upcoming = sorted(
        (o for o in pending if o.expected_ship_date and o.expected_ship_date > today),
        key=lambda o: o.expected_ship_date,
    )[:10]

    return {
        "total_orders": len(orders),
        "pending_orders": len(pending),
        "pending_tons": round(sum(o.total_tons for o in pending), 2),
        "lines_running": sum(1 for l in lines if l.status == LineStatus.RUNNING.value),
        "lines_total": len(lines),
        "unacknowledged_large_orders": sum(1 for o in pending if o.is_large_order and not o.large_order_ack),
        "safety_alert_count": len(alert_service.list_alerts(db)),
        "shortage_order_count": sum(1 for r in fulfillment.values() if r.is_shortage),
        "ready_to_ship_today": sum(
            1 for o in pending
            if o.status == OrderStatus.READY_TO_SHIP and today in (o.expected_ship_date, o.order_date)
        ),
        "upcoming_shipments": [
            {
                "id": o.id,
                "pi_no": o.pi_no,
                "client": o.client,
                "style_no": o.style_no,
                "total_tons": o.total_tons,
                "expected_ship_date": o.expected_ship_date.isoformat(),
            }
            for o in upcoming
        ],
    }
