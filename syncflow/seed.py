import logging
from datetime import date

from sqlalchemy.orm import Session

from syncflow.models.inventory import InventoryKey
from syncflow.models.order import TradeType
from syncflow.models.production_line import LineStatus, ProductionLine
from syncflow.schemas.line import LineCreate, SubLine
from syncflow.schemas.order import OrderCreate
from syncflow.services import inventory_service, line_service, order_service

logger = logging.getLogger(__name__)

DEMO_LINES = [
    LineCreate(status=LineStatus.RUNNING, current_style="BE3250", daily_capacity=50, export_capacity=30),
    LineCreate(
        status=LineStatus.RUNNING,
        daily_capacity=45,
        export_capacity=23,
        sub_lines=[
            SubLine(id="sub-2-1", name="Big pipe", current_style="BE3250", daily_capacity=30, export_capacity=15),
            SubLine(id="sub-2-2", name="SSP-1", current_style="BE2250", daily_capacity=15, export_capacity=8),
        ],
    ),
    LineCreate(status=LineStatus.RUNNING, current_style="BE2250", daily_capacity=40, export_capacity=8),
    LineCreate(status=LineStatus.STOPPED),
    LineCreate(status=LineStatus.RUNNING, current_style="BE3340", daily_capacity=60, export_capacity=48),
    LineCreate(status=LineStatus.RUNNING, current_style="BE3340", daily_capacity=55, export_capacity=38),
    LineCreate(status=LineStatus.MAINTENANCE),
    LineCreate(status=LineStatus.RUNNING, current_style="BE3250", daily_capacity=40, export_capacity=20),
    LineCreate(status=LineStatus.RUNNING, current_style="BE2250", daily_capacity=35, export_capacity=14),
]

# (style, line, tons)
DEMO_STOCK = [("BE3250", 1, 80.0), ("BE2250", 3, 5.0), ("BE3340", 5, 250.0)]


def seed_demo_data(db: Session) -> bool:
    """Load a small demo plant into an empty database. Returns False if data already exists."""
    if db.query(ProductionLine).first():
        return False

    for line in DEMO_LINES:
        line_service.create_line(db, line)
    for style_no, line_id, tons in DEMO_STOCK:
        inventory_service.stock_in(
            db, InventoryKey(style_no, line_id=line_id), tons, source="opening balance", line_name=f"Line {line_id}"
        )

    today = date.today()
    order_service.create_order(db, OrderCreate(
        order_date=today, client="BGF", pi_no="Z32025101631363", style_no="BE3250",
        line_ids="1", total_tons=123, requirements="820KG export pack, plywood pallet",
    ))
    order_service.create_order(db, OrderCreate(
        order_date=today, client="BAIKSAN LINTEX", pi_no="232025112232176", style_no="BE2250",
        line_ids="3", total_tons=22.96, requirements="820KG export pack, premium",
    ))
    order_service.create_order(db, OrderCreate(
        order_date=today, client="PT FILAMENDO", pi_no="Z32025093031198", style_no="BE3340",
        line_ids="5", total_tons=209.92, trade_type=TradeType.BONDED,
        requirements="820KG export pack, molded pallet",
    ))
    logger.info("Seeded demo data: %d lines, %d stock records, 3 orders", len(DEMO_LINES), len(DEMO_STOCK))
    return True
