import math
from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy.orm import Query, Session

from syncflow.config import settings
from syncflow.errors import ValidationError
from syncflow.models.inventory import (
    AuditAction,
    InventoryAuditLog,
    InventoryKey,
    InventoryTransaction,
    TransactionType,
)


@dataclass
class Page:
    data: list
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def _page_size(page_size: int | None) -> int:
    size = page_size or settings.DEFAULT_PAGE_SIZE
    return max(1, min(size, settings.MAX_PAGE_SIZE))


def _paginate(q: Query, order_by, page: int, page_size: int | None) -> Page:
    page = max(1, page or 1)
    size = _page_size(page_size)
    total = q.count()
    rows = q.order_by(*order_by).offset((page - 1) * size).limit(size).all()
    return Page(data=rows, total=total, page=page, page_size=size)


def query_transactions(
    db: Session,
    style_no: str | None = None,
    warehouse_type: str | None = None,
    package_spec: str | None = None,
    line_id: int | None = None,
    tx_type: TransactionType | str | None = None,
    order_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> Page:
    """Ledger entries newest first. ``end_date`` includes the whole day."""
    q = db.query(InventoryTransaction)
    if style_no:
        q = q.filter(InventoryTransaction.style_no == style_no)
    if warehouse_type:
        q = q.filter(InventoryTransaction.warehouse_type == warehouse_type)
    if package_spec:
        q = q.filter(InventoryTransaction.package_spec == package_spec)
    if line_id:
        q = q.filter(InventoryTransaction.line_id == line_id)
    if tx_type:
        try:
            tx_type = TransactionType(tx_type)
        except ValueError:
            raise ValidationError(f"Unknown transaction type '{tx_type}'")
        q = q.filter(InventoryTransaction.type == tx_type.value)
    if order_id:
        q = q.filter(InventoryTransaction.order_id == order_id)
    if start_date:
        q = q.filter(InventoryTransaction.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        q = q.filter(InventoryTransaction.created_at <= datetime.combine(end_date, time.max))
    return _paginate(q, (InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc()), page, page_size)


def query_audit_logs(
    db: Session,
    style_no: str | None = None,
    warehouse_type: str | None = None,
    package_spec: str | None = None,
    line_id: int | None = None,
    action: AuditAction | str | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> Page:
    q = db.query(InventoryAuditLog)
    if style_no:
        q = q.filter(InventoryAuditLog.style_no == style_no)
    if warehouse_type:
        q = q.filter(InventoryAuditLog.warehouse_type == warehouse_type)
    if package_spec:
        q = q.filter(InventoryAuditLog.package_spec == package_spec)
    if line_id:
        q = q.filter(InventoryAuditLog.line_id == line_id)
    if action:
        try:
            action = AuditAction(action)
        except ValueError:
            raise ValidationError(f"Unknown audit action '{action}'")
        q = q.filter(InventoryAuditLog.action == action.value)
    return _paginate(q, (InventoryAuditLog.created_at.desc(), InventoryAuditLog.id.desc()), page, page_size)


def entries_for_key(db: Session, key: InventoryKey) -> list[InventoryTransaction]:
    return (
        db.query(InventoryTransaction)
        .filter(
            InventoryTransaction.style_no == key.style_no,
            InventoryTransaction.warehouse_type == key.warehouse_type.value,
            InventoryTransaction.package_spec == key.package_spec.value,
            InventoryTransaction.line_id == key.line_column,
        )
        .order_by(InventoryTransaction.id)
        .all()
    )


def replay_balance(db: Session, key: InventoryKey) -> float:
    """Rebuild a record's stock from its ledger; must equal its ``current_stock``."""
    return sum(tx.signed_quantity for tx in entries_for_key(db, key))
