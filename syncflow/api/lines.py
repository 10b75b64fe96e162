from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from syncflow.cache import cache
from syncflow.database import get_db
from syncflow.schemas.inventory import InventoryOut
from syncflow.schemas.line import (
    CompleteProductionRequest,
    LineCreate,
    LineOut,
    LineUpdate,
    PendingStockInOut,
    StyleCapacityOut,
    StyleChangeLogOut,
)
from syncflow.services import capacity_service, inventory_service, line_service

router = APIRouter(prefix="/lines", tags=["Production Lines"])


def _invalidate():
    # Capacity feeds fulfillment and the reports
    cache.invalidate("lines:", "inventory:", "reports:", "orders:")


@router.get("", response_model=list[LineOut])
def list_lines(db: Session = Depends(get_db)):
    cached = cache.get("lines:list")
    if cached is not None:
        return cached
    lines = [LineOut.model_validate(l) for l in line_service.list_lines(db)]
    cache.set("lines:list", lines)
    return lines


@router.post("", response_model=LineOut, status_code=201)
def create_line(data: LineCreate, db: Session = Depends(get_db)):
    try:
        line = line_service.create_line(db, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return line


@router.get("/pending-stock-in", response_model=list[PendingStockInOut])
def pending_stock_in(db: Session = Depends(get_db)):
    return capacity_service.pending_stock_in(line_service.list_lines(db))


@router.get("/capacity", response_model=list[StyleCapacityOut])
def capacity_by_style(db: Session = Depends(get_db)):
    return capacity_service.capacity_by_style(line_service.list_lines(db))


@router.get("/style-logs", response_model=list[StyleChangeLogOut])
def list_style_logs(line_id: int | None = None, limit: int = 100, db: Session = Depends(get_db)):
    return line_service.list_style_logs(db, line_id=line_id, limit=limit)


@router.post("/styles/{style_no}/complete")
def receive_style_production(style_no: str, data: CompleteProductionRequest, db: Session = Depends(get_db)):
    """Stock in every running line's finished output for one style."""
    try:
        received = capacity_service.receive_style_production(
            db, style_no, grade=data.grade, warehouse_type=data.warehouse_type, package_spec=data.package_spec
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return {"style_no": style_no, "received": received}


@router.get("/{line_id}", response_model=LineOut)
def get_line(line_id: int, db: Session = Depends(get_db)):
    line = line_service.get_line(db, line_id)
    if not line:
        raise HTTPException(404, "Production line not found")
    return line


@router.put("/{line_id}", response_model=LineOut)
def update_line(line_id: int, data: LineUpdate, db: Session = Depends(get_db)):
    try:
        line = line_service.update_line(db, line_id, data)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return line


@router.delete("/{line_id}", status_code=204)
def delete_line(line_id: int, db: Session = Depends(get_db)):
    try:
        line_service.delete_line(db, line_id)
    except LookupError as e:
        raise HTTPException(404, str(e))
    _invalidate()


@router.post("/{line_id}/complete", response_model=list[InventoryOut])
def complete_production(line_id: int, data: CompleteProductionRequest, db: Session = Depends(get_db)):
    """Stock in the line's finished export output and clear its pending amount."""
    try:
        line = capacity_service.complete_production(
            db,
            line_id,
            sub_line_id=data.sub_line_id,
            quantity=data.quantity,
            grade=data.grade,
            warehouse_type=data.warehouse_type,
            package_spec=data.package_spec,
        )
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return inventory_service.list_records(db, line_id=line.id)
