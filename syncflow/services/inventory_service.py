import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from syncflow.config import settings
from syncflow.errors import InsufficientStockError, NotFoundError, OverLockError, ValidationError
from syncflow.models.inventory import (
    AuditAction,
    Grade,
    InventoryAuditLog,
    InventoryKey,
    InventoryRecord,
    InventoryTransaction,
    TransactionType,
)

logger = logging.getLogger(__name__)


def _key_filter(q, key: InventoryKey):
    return q.filter(
        InventoryRecord.style_no == key.style_no,
        InventoryRecord.warehouse_type == key.warehouse_type.value,
        InventoryRecord.package_spec == key.package_spec.value,
        InventoryRecord.line_id == key.line_column,
    )


def _load_for_update(db: Session, key: InventoryKey) -> InventoryRecord | None:
    # Row lock serialises writers on the same key; other keys are untouched
    return _key_filter(db.query(InventoryRecord), key).with_for_update().first()


def _require(db: Session, key: InventoryKey) -> InventoryRecord:
    record = _load_for_update(db, key)
    if not record:
        raise NotFoundError(f"Inventory record {key.label()} not found")
    return record


def _positive(quantity: float, what: str = "Quantity") -> float:
    if quantity is None or quantity <= 0:
        raise ValidationError(f"{what} must be greater than 0")
    return float(quantity)


def _grade(grade: Grade | str) -> Grade:
    try:
        return Grade(grade or Grade.A)
    except ValueError:
        raise ValidationError(f"Unknown grade '{grade}'")


def _clamp_lock(record: InventoryRecord) -> None:
    """Locked stock can never exceed what is on hand after a decrease."""
    if record.locked_for_today > record.current_stock:
        logger.info(
            "Clamping lock on %s from %.3f to %.3f",
            record.key.label(), record.locked_for_today, record.current_stock,
        )
        record.locked_for_today = max(0.0, record.current_stock)


def _append_transaction(
    db: Session,
    record: InventoryRecord,
    tx_type: TransactionType,
    grade: Grade,
    quantity: float,
    source: str = "",
    note: str = "",
    order_id: str = "",
) -> InventoryTransaction:
    tx = InventoryTransaction(
        style_no=record.style_no,
        warehouse_type=record.warehouse_type,
        package_spec=record.package_spec,
        line_id=record.line_id,
        type=tx_type.value,
        grade=grade.value,
        quantity=quantity,
        balance=record.current_stock,
        source=source or "",
        note=note or "",
        order_id=order_id or "",
    )
    db.add(tx)
    return tx


def _append_audit(
    db: Session,
    record: InventoryRecord,
    action: AuditAction,
    before: tuple[float, float],
    reason: str,
    operator: str | None,
) -> InventoryAuditLog:
    entry = InventoryAuditLog(
        style_no=record.style_no,
        warehouse_type=record.warehouse_type,
        package_spec=record.package_spec,
        line_id=record.line_id,
        line_name=record.line_name,
        action=action.value,
        before_grade_a=before[0],
        before_grade_b=before[1],
        after_grade_a=record.grade_a,
        after_grade_b=record.grade_b,
        locked_after=record.locked_for_today,
        reason=reason or "",
        operator=operator or settings.DEFAULT_OPERATOR,
    )
    db.add(entry)
    return entry


def _touch(record: InventoryRecord) -> None:
    record.last_updated = datetime.now(timezone.utc).replace(tzinfo=None)


# --- Building blocks (flush only, caller owns the transaction) ---

def apply_stock_in(
    db: Session,
    key: InventoryKey,
    quantity: float,
    grade: Grade | str = Grade.A,
    source: str = "",
    note: str = "",
    order_id: str = "",
    line_name: str = "",
) -> InventoryRecord:
    quantity = _positive(quantity)
    grade = _grade(grade)
    if not key.style_no:
        raise ValidationError("Style number is required")

    record = _load_for_update(db, key)
    if not record:
        record = InventoryRecord(
            style_no=key.style_no,
            warehouse_type=key.warehouse_type.value,
            package_spec=key.package_spec.value,
            line_id=key.line_column,
            line_name=line_name or "",
            grade_a=0.0,
            grade_b=0.0,
            current_stock=0.0,
            locked_for_today=0.0,
            safety_stock=0.0,
        )
        db.add(record)
        logger.info("Created inventory record %s", key.label())

    if grade == Grade.A:
        record.set_grades((record.grade_a or 0.0) + quantity, record.grade_b or 0.0)
    else:
        record.set_grades(record.grade_a or 0.0, (record.grade_b or 0.0) + quantity)
    _touch(record)

    if not source and key.line_id:
        source = f"line {key.line_id}"
    _append_transaction(db, record, TransactionType.IN, grade, quantity, source, note, order_id)
    db.flush()
    logger.info("Stock in %s grade %s +%.3f -> %.3f", key.label(), grade.value, quantity, record.current_stock)
    return record


def apply_stock_out(
    db: Session,
    key: InventoryKey,
    quantity: float,
    grade: Grade | str = Grade.A,
    source: str = "",
    note: str = "",
    order_id: str = "",
) -> InventoryRecord:
    quantity = _positive(quantity)
    grade = _grade(grade)

    record = _load_for_update(db, key)
    on_hand = record.grade_amount(grade) if record else 0.0
    if not record or on_hand < quantity:
        raise InsufficientStockError(
            f"Insufficient grade {grade.value} stock for {key.label()}. "
            f"Available: {on_hand:g}, requested: {quantity:g}"
        )

    if grade == Grade.A:
        record.set_grades(record.grade_a - quantity, record.grade_b)
    else:
        record.set_grades(record.grade_a, record.grade_b - quantity)
    _clamp_lock(record)
    _touch(record)

    _append_transaction(db, record, TransactionType.OUT, grade, quantity, source, note, order_id)
    db.flush()
    logger.info("Stock out %s grade %s -%.3f -> %.3f", key.label(), grade.value, quantity, record.current_stock)
    return record


# --- Public operations (one committed unit each) ---

def get_record(db: Session, key: InventoryKey) -> InventoryRecord | None:
    return _key_filter(db.query(InventoryRecord), key).first()


def list_records(db: Session, line_id: int | None = None, style_no: str | None = None) -> list[InventoryRecord]:
    q = db.query(InventoryRecord)
    if line_id:
        q = q.filter(InventoryRecord.line_id == line_id)
    if style_no:
        q = q.filter(InventoryRecord.style_no == style_no)
    return q.order_by(InventoryRecord.style_no, InventoryRecord.line_id).all()


def stock_in(
    db: Session,
    key: InventoryKey,
    quantity: float,
    grade: Grade | str = Grade.A,
    source: str = "",
    note: str = "",
    order_id: str = "",
    line_name: str = "",
) -> InventoryRecord:
    try:
        record = apply_stock_in(db, key, quantity, grade, source, note, order_id, line_name)
    except Exception:
        db.rollback()
        raise
    db.commit()
    db.refresh(record)
    return record


def stock_out(
    db: Session,
    key: InventoryKey,
    quantity: float,
    grade: Grade | str = Grade.A,
    source: str = "",
    note: str = "",
    order_id: str = "",
) -> InventoryRecord:
    try:
        record = apply_stock_out(db, key, quantity, grade, source, note, order_id)
    except Exception:
        db.rollback()
        raise
    db.commit()
    db.refresh(record)
    return record


def _apply_counts(
    db: Session,
    record: InventoryRecord,
    grade_a: float | None,
    grade_b: float | None,
    reason: str,
    operator: str | None,
    new_day: bool = False,
) -> None:
    if (grade_a is not None and grade_a < 0) or (grade_b is not None and grade_b < 0):
        raise ValidationError("Stock amounts cannot be negative")

    before = (record.grade_a, record.grade_b)
    new_a = before[0] if grade_a is None else float(grade_a)
    new_b = before[1] if grade_b is None else float(grade_b)

    record.set_grades(new_a, new_b)
    _clamp_lock(record)
    if new_day:
        _close_day(record)
    _touch(record)

    for grade, diff in ((Grade.A, new_a - before[0]), (Grade.B, new_b - before[1])):
        if diff:
            tx_type = TransactionType.ADJUST_IN if diff > 0 else TransactionType.ADJUST_OUT
            _append_transaction(db, record, tx_type, grade, abs(diff), "stocktake", reason)
    _append_audit(db, record, AuditAction.ADJUST, before, reason, operator)


def _close_day(record: InventoryRecord) -> None:
    # Today's figure becomes yesterday's close; locks only hold for the day
    record.stock_t_minus_1 = record.current_stock
    record.locked_for_today = 0.0


def adjust(
    db: Session,
    key: InventoryKey,
    grade_a: float | None,
    grade_b: float | None,
    reason: str = "",
    operator: str | None = None,
) -> InventoryRecord:
    """Stocktake correction: overwrite both grades with counted amounts.

    A grade passed as ``None`` keeps its current amount. Each grade whose
    amount changes gets its own ADJUST_IN/ADJUST_OUT ledger entry so replaying
    the ledger still reproduces the grade split.
    """
    reason = reason or "stocktake adjustment"
    try:
        record = _require(db, key)
        _apply_counts(db, record, grade_a, grade_b, reason, operator)
    except Exception:
        db.rollback()
        raise

    db.commit()
    db.refresh(record)
    logger.info("Adjusted %s to A=%.3f B=%.3f (%s)", key.label(), record.grade_a, record.grade_b, reason)
    return record


def update_record(
    db: Session,
    key: InventoryKey,
    grade_a: float | None = None,
    grade_b: float | None = None,
    safety_stock: float | None = None,
    reason: str = "",
    operator: str | None = None,
) -> InventoryRecord:
    """Direct edit of one record from the warehouse screen.

    Counted grades are written as a stocktake, the new total becomes the
    record's T-1 figure and today's lock is released. ``safety_stock`` is
    replaced when given.
    """
    if safety_stock is not None and safety_stock < 0:
        raise ValidationError("Safety stock cannot be negative")
    reason = reason or "manual update"
    try:
        record = _require(db, key)
        _apply_counts(db, record, grade_a, grade_b, reason, operator, new_day=True)
        if safety_stock is not None:
            record.safety_stock = float(safety_stock)
    except Exception:
        db.rollback()
        raise

    db.commit()
    db.refresh(record)
    logger.info("Updated %s to A=%.3f B=%.3f (%s)", key.label(), record.grade_a, record.grade_b, reason)
    return record


def close_day(db: Session) -> int:
    """Roll every record over to a new day. Returns the number of records."""
    try:
        records = db.query(InventoryRecord).with_for_update().all()
        for record in records:
            _close_day(record)
    except Exception:
        db.rollback()
        raise
    db.commit()
    logger.info("Closed the day on %d inventory records", len(records))
    return len(records)


def lock(
    db: Session,
    key: InventoryKey,
    quantity: float,
    reason: str = "",
    operator: str | None = None,
) -> float:
    quantity = _positive(quantity)
    try:
        record = _require(db, key)
        new_locked = (record.locked_for_today or 0.0) + quantity
        if new_locked > record.current_stock:
            raise OverLockError(
                f"Cannot lock {quantity:g}t on {key.label()}. "
                f"Available to lock: {max(0.0, record.available):g}t"
            )
        before = (record.grade_a, record.grade_b)
        record.locked_for_today = new_locked
        _touch(record)
        _append_audit(db, record, AuditAction.LOCK, before, reason or f"lock {quantity:g}t", operator)
    except Exception:
        db.rollback()
        raise

    db.commit()
    logger.info("Locked %.3f on %s, total locked %.3f", quantity, key.label(), new_locked)
    return new_locked


def unlock(
    db: Session,
    key: InventoryKey,
    quantity: float,
    reason: str = "",
    operator: str | None = None,
) -> float:
    """Release locked stock. Releasing more than is locked clamps to zero."""
    quantity = _positive(quantity)
    try:
        record = _require(db, key)
        new_locked = max(0.0, (record.locked_for_today or 0.0) - quantity)
        before = (record.grade_a, record.grade_b)
        record.locked_for_today = new_locked
        _touch(record)
        _append_audit(db, record, AuditAction.UNLOCK, before, reason or f"unlock {quantity:g}t", operator)
    except Exception:
        db.rollback()
        raise

    db.commit()
    logger.info("Unlocked %.3f on %s, total locked %.3f", quantity, key.label(), new_locked)
    return new_locked


def set_safety_stock(db: Session, key: InventoryKey, threshold: float) -> InventoryRecord:
    if threshold is None or threshold < 0:
        raise ValidationError("Safety stock cannot be negative")
    try:
        record = _require(db, key)
    except Exception:
        db.rollback()
        raise
    record.safety_stock = float(threshold)
    db.commit()
    db.refresh(record)
    return record


def batch_stock_in(db: Session, items: list[dict]) -> list[InventoryRecord]:
    """Apply several stock-ins as one unit; any failure leaves everything untouched."""
    if not items:
        raise ValidationError("No items to stock in")
    try:
        records = [
            apply_stock_in(
                db,
                item["key"],
                item.get("quantity"),
                item.get("grade", Grade.A),
                item.get("source") or "batch stock-in",
                item.get("note", ""),
            )
            for item in items
        ]
    except Exception:
        db.rollback()
        raise
    db.commit()
    for record in records:
        db.refresh(record)
    return records


def batch_stock_out(db: Session, items: list[dict]) -> list[InventoryRecord]:
    if not items:
        raise ValidationError("No items to stock out")
    try:
        records = [
            apply_stock_out(
                db,
                item["key"],
                item.get("quantity"),
                item.get("grade", Grade.A),
                item.get("source") or "batch stock-out",
                item.get("note", ""),
            )
            for item in items
        ]
    except Exception:
        db.rollback()
        raise
    db.commit()
    for record in records:
        db.refresh(record)
    return records


def export_snapshot(db: Session) -> dict:
    records = db.query(InventoryRecord).order_by(InventoryRecord.style_no).all()
    return {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "count": len(records),
        "data": [
            {
                "style_no": r.style_no,
                "warehouse_type": r.warehouse_type,
                "package_spec": r.package_spec,
                "line_id": r.line_id or None,
                "line_name": r.line_name,
                "current_stock": r.current_stock,
                "stock_t_minus_1": r.stock_t_minus_1,
                "grade_a": r.grade_a,
                "grade_b": r.grade_b,
                "locked_for_today": r.locked_for_today,
                "safety_stock": r.safety_stock,
                "last_updated": r.last_updated.isoformat() if r.last_updated else None,
            }
            for r in records
        ],
    }
