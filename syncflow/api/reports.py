from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from syncflow.cache import cache
from syncflow.database import get_db
from syncflow.models.inventory import InventoryRecord
from syncflow.models.order import Order
from syncflow.models.production_line import ProductionLine
from syncflow.services import report_service

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/styles")
def style_coverage_report(db: Session = Depends(get_db)):
    cached = cache.get("reports:styles")
    if cached is not None:
        return cached
    report = report_service.style_coverage(
        db.query(Order).all(),
        db.query(InventoryRecord).all(),
        db.query(ProductionLine).all(),
    )
    cache.set("reports:styles", report)
    return report


@router.get("/dashboard")
def dashboard_report(db: Session = Depends(get_db)):
    cached = cache.get("reports:dashboard")
    if cached is not None:
        return cached
    report = report_service.dashboard_summary(db)
    cache.set("reports:dashboard", report)
    return report
