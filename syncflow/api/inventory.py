import csv
import io
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from syncflow.cache import cache
from syncflow.database import get_db
from syncflow.schemas.inventory import (
    AdjustRequest,
    AlertOut,
    AuditLogOut,
    AuditLogPage,
    BatchMovement,
    InventoryOut,
    KeyInput,
    LockOut,
    LockRequest,
    RecordUpdate,
    SafetyStockRequest,
    StockMovement,
    TransactionOut,
    TransactionPage,
)
from syncflow.services import alert_service, inventory_service, ledger_service

router = APIRouter(prefix="/inventory", tags=["Inventory"])

EXPORT_COLUMNS = [
    "style_no", "warehouse_type", "package_spec", "line_id", "line_name",
    "current_stock", "stock_t_minus_1", "grade_a", "grade_b", "locked_for_today", "safety_stock", "last_updated",
]


def _invalidate():
    # Stock feeds fulfillment and the reports as well as the inventory lists
    cache.invalidate("inventory:", "reports:", "orders:")


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, LookupError):
        return HTTPException(404, str(e))
    return HTTPException(400, str(e))


@router.get("", response_model=list[InventoryOut])
def list_inventory(line_id: int | None = None, style_no: str | None = None, db: Session = Depends(get_db)):
    key = f"inventory:list:{line_id}:{style_no}"
    cached = cache.get(key)
    if cached is not None:
        return cached
    records = [InventoryOut.model_validate(r) for r in inventory_service.list_records(db, line_id, style_no)]
    cache.set(key, records)
    return records


@router.get("/record", response_model=InventoryOut)
def get_record(key: KeyInput = Depends(), db: Session = Depends(get_db)):
    """One record, addressed by style, warehouse type, package spec and line."""
    try:
        inv_key = key.to_key()
    except ValueError as e:
        raise HTTPException(400, str(e))
    record = inventory_service.get_record(db, inv_key)
    if not record:
        raise HTTPException(404, f"Inventory record {inv_key.label()} not found")
    return record


@router.put("/record", response_model=InventoryOut)
def update_record(data: RecordUpdate, db: Session = Depends(get_db)):
    try:
        record = inventory_service.update_record(
            db, data.to_key(), data.grade_a, data.grade_b, data.safety_stock, data.reason, data.operator
        )
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return record


@router.post("/close-day")
def close_day(db: Session = Depends(get_db)):
    closed = inventory_service.close_day(db)
    _invalidate()
    return {"success": True, "records": closed}


@router.get("/alerts", response_model=list[AlertOut])
def list_alerts(db: Session = Depends(get_db)):
    return [
        AlertOut(
            style_no=a.key.style_no,
            warehouse_type=a.key.warehouse_type.value,
            package_spec=a.key.package_spec.value,
            line_id=a.key.line_id,
            current_stock=a.current_stock,
            locked_for_today=a.locked_for_today,
            safety_stock=a.safety_stock,
            shortage=a.shortage,
        )
        for a in alert_service.list_alerts(db)
    ]


@router.get("/transactions", response_model=TransactionPage)
def list_transactions(
    style_no: str | None = None,
    warehouse_type: str | None = None,
    package_spec: str | None = None,
    line_id: int | None = None,
    type: str | None = None,
    order_id: str | None = None,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    page: int = 1,
    page_size: int | None = None,
    db: Session = Depends(get_db),
):
    try:
        result = ledger_service.query_transactions(
            db,
            style_no=style_no,
            warehouse_type=warehouse_type,
            package_spec=package_spec,
            line_id=line_id,
            tx_type=type,
            order_id=order_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            page_size=page_size,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return TransactionPage(
        data=[TransactionOut.model_validate(t) for t in result.data],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/audit-logs", response_model=AuditLogPage)
def list_audit_logs(
    style_no: str | None = None,
    warehouse_type: str | None = None,
    package_spec: str | None = None,
    line_id: int | None = None,
    action: str | None = None,
    page: int = 1,
    page_size: int | None = None,
    db: Session = Depends(get_db),
):
    try:
        result = ledger_service.query_audit_logs(
            db,
            style_no=style_no,
            warehouse_type=warehouse_type,
            package_spec=package_spec,
            line_id=line_id,
            action=action,
            page=page,
            page_size=page_size,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return AuditLogPage(
        data=[AuditLogOut.model_validate(a) for a in result.data],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/export")
def export_inventory(format: str = "json", db: Session = Depends(get_db)):
    """Full inventory snapshot as JSON, or as a CSV download with ``?format=csv``."""
    snapshot = inventory_service.export_snapshot(db)
    if format != "csv":
        return snapshot

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for row in snapshot["data"]:
        writer.writerow(row)
    buf.seek(0)
    return StreamingResponse(
        iter([buf.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=inventory_{date.today().isoformat()}.csv"},
    )


@router.post("/in", response_model=InventoryOut)
def stock_in(data: StockMovement, db: Session = Depends(get_db)):
    try:
        record = inventory_service.stock_in(
            db, data.to_key(), data.quantity, data.grade, data.source, data.note, line_name=data.line_name
        )
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return record


@router.post("/out", response_model=InventoryOut)
def stock_out(data: StockMovement, db: Session = Depends(get_db)):
    try:
        record = inventory_service.stock_out(db, data.to_key(), data.quantity, data.grade, data.source, data.note)
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return record


def _batch_items(data: BatchMovement) -> list[dict]:
    return [
        {"key": i.to_key(), "quantity": i.quantity, "grade": i.grade, "source": i.source, "note": i.note}
        for i in data.items
    ]


@router.post("/batch-in", response_model=list[InventoryOut])
def batch_stock_in(data: BatchMovement, db: Session = Depends(get_db)):
    try:
        records = inventory_service.batch_stock_in(db, _batch_items(data))
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return records


@router.post("/batch-out", response_model=list[InventoryOut])
def batch_stock_out(data: BatchMovement, db: Session = Depends(get_db)):
    try:
        records = inventory_service.batch_stock_out(db, _batch_items(data))
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return records


@router.post("/adjust", response_model=InventoryOut)
def adjust(data: AdjustRequest, db: Session = Depends(get_db)):
    try:
        record = inventory_service.adjust(
            db, data.to_key(), data.grade_a, data.grade_b, data.reason, data.operator
        )
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return record


@router.post("/lock", response_model=LockOut)
def lock(data: LockRequest, db: Session = Depends(get_db)):
    try:
        locked = inventory_service.lock(db, data.to_key(), data.quantity, data.reason, data.operator)
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return LockOut(style_no=data.style_no, locked_for_today=locked)


@router.post("/unlock", response_model=LockOut)
def unlock(data: LockRequest, db: Session = Depends(get_db)):
    try:
        locked = inventory_service.unlock(db, data.to_key(), data.quantity, data.reason, data.operator)
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return LockOut(style_no=data.style_no, locked_for_today=locked)


@router.put("/safety-stock", response_model=InventoryOut)
def set_safety_stock(data: SafetyStockRequest, db: Session = Depends(get_db)):
    try:
        record = inventory_service.set_safety_stock(db, data.to_key(), data.safety_stock)
    except (ValueError, LookupError) as e:
        raise _http_error(e)
    _invalidate()
    return record
