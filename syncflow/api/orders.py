from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from syncflow.cache import cache
from syncflow.database import get_db
from syncflow.models.order import OrderStatus
from syncflow.schemas.order import (
    AllocationInput,
    FulfillmentOut,
    OrderCreate,
    OrderOut,
    OrderStatusUpdate,
    OrderUpdate,
    StatusChangeOut,
)
from syncflow.services import fulfillment_service, order_service
from syncflow.services.fulfillment_service import FulfillmentResult

router = APIRouter(prefix="/orders", tags=["Orders"])


def _invalidate():
    cache.invalidate("orders:", "reports:")


def _fulfillment_out(order_id: str, result: FulfillmentResult) -> FulfillmentOut:
    return FulfillmentOut(
        order_id=order_id,
        percent=result.percent,
        is_shortage=result.is_shortage,
        breakdown=result.breakdown,
    )


@router.post("", response_model=OrderOut, status_code=201)
def create_order(data: OrderCreate, db: Session = Depends(get_db)):
    try:
        order = order_service.create_order(db, data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return order


@router.get("", response_model=list[OrderOut])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    style_no: str | None = None,
    db: Session = Depends(get_db),
):
    return order_service.list_orders(db, skip=skip, limit=limit, status=status, style_no=style_no)


@router.get("/fulfillment", response_model=list[FulfillmentOut])
def list_fulfillment(db: Session = Depends(get_db)):
    """Fulfillment of every order, computed against one inventory snapshot."""
    cached = cache.get("orders:fulfillment")
    if cached is not None:
        return cached
    results = [_fulfillment_out(oid, r) for oid, r in fulfillment_service.fulfillment_for_orders(db).items()]
    cache.set("orders:fulfillment", results)
    return results


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.put("/{order_id}", response_model=OrderOut)
def update_order(order_id: str, data: OrderUpdate, db: Session = Depends(get_db)):
    try:
        order = order_service.update_order(db, order_id, data)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return order


@router.delete("/{order_id}")
def delete_order(order_id: str, db: Session = Depends(get_db)):
    try:
        rolled_back = order_service.delete_order(db, order_id)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    if rolled_back:
        cache.invalidate("inventory:")
    return {"success": True, "rolled_back_entries": rolled_back}


@router.patch("/{order_id}/status", response_model=StatusChangeOut)
def update_status(order_id: str, data: OrderStatusUpdate, db: Session = Depends(get_db)):
    """Declined changes still return 200 with ``applied: false`` and a warning."""
    try:
        change = order_service.change_status(db, order_id, data.status, data.note, data.operator)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    if change.applied:
        _invalidate()
        if change.order.status == OrderStatus.SHIPPED:
            cache.invalidate("inventory:")
    return StatusChangeOut(
        applied=change.applied,
        warning=change.warning,
        order=OrderOut.model_validate(change.order),
        fulfillment=_fulfillment_out(order_id, change.fulfillment) if change.fulfillment else None,
    )


@router.put("/{order_id}/allocation", response_model=OrderOut)
def set_allocation(order_id: str, data: AllocationInput, db: Session = Depends(get_db)):
    try:
        order = order_service.set_allocation(db, order_id, data.general, data.bonded)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    _invalidate()
    return order


@router.delete("/{order_id}/allocation", response_model=OrderOut)
def clear_allocation(order_id: str, db: Session = Depends(get_db)):
    try:
        order = order_service.clear_allocation(db, order_id)
    except LookupError as e:
        raise HTTPException(404, str(e))
    _invalidate()
    return order


@router.get("/{order_id}/fulfillment", response_model=FulfillmentOut)
def get_fulfillment(order_id: str, db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return _fulfillment_out(order.id, fulfillment_service.fulfillment_for_order(db, order))


@router.post("/{order_id}/ack-large", response_model=OrderOut)
def acknowledge_large_order(order_id: str, db: Session = Depends(get_db)):
    try:
        order = order_service.acknowledge_large_order(db, order_id)
    except LookupError as e:
        raise HTTPException(404, str(e))
    _invalidate()
    return order
