import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from syncflow.errors import NotFoundError, ValidationError
from syncflow.models.production_line import IDLE_STYLE, ProductionLine, StyleChangeLog
from syncflow.schemas.line import LineCreate, LineUpdate, SubLine

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_capacity(*values: float | None) -> None:
    if any(v is not None and v < 0 for v in values):
        raise ValidationError("Capacity cannot be negative")


def _sub_line_dicts(line_id: int, sub_lines: list[SubLine]) -> list[dict]:
    result = []
    for i, sub in enumerate(sub_lines, start=1):
        _check_capacity(sub.daily_capacity, sub.export_capacity)
        data = sub.model_dump()
        data["id"] = data["id"] or f"sub-{line_id}-{i}"
        data["name"] = data["name"] or f"Sub {i}"
        data["current_style"] = (data["current_style"] or IDLE_STYLE).strip()
        result.append(data)
    return result


def _log_style_change(db: Session, line_id: int, from_style: str, to_style: str, changed_at: datetime) -> None:
    db.add(StyleChangeLog(line_id=line_id, from_style=from_style, to_style=to_style, changed_at=changed_at))


def create_line(db: Session, data: LineCreate) -> ProductionLine:
    _check_capacity(data.daily_capacity, data.export_capacity)
    max_id = db.query(func.max(ProductionLine.id)).scalar() or 0
    line_id = max_id + 1
    line = ProductionLine(
        id=line_id,
        name=data.name or f"Line {line_id}",
        status=data.status.value,
        current_style=(data.current_style or IDLE_STYLE).strip(),
        daily_capacity=data.daily_capacity,
        export_capacity=data.export_capacity,
        note=data.note,
        style_changed_at="",
    )
    line.sub_line_list = _sub_line_dicts(line_id, data.sub_lines)
    db.add(line)
    db.commit()
    db.refresh(line)
    logger.info("Created production line %s (%s)", line.id, line.name)
    return line


def get_line(db: Session, line_id: int) -> ProductionLine | None:
    return db.query(ProductionLine).filter(ProductionLine.id == line_id).first()


def list_lines(db: Session) -> list[ProductionLine]:
    return db.query(ProductionLine).order_by(ProductionLine.id).all()


def update_line(db: Session, line_id: int, data: LineUpdate) -> ProductionLine:
    """Update a line; every style change on the line or a sub-line is logged.

    Sub-line log entries carry the sub-line name as a prefix, e.g.
    ``"Big pipe:BE3250" -> "Big pipe:BE2250"``.
    """
    line = get_line(db, line_id)
    if not line:
        raise NotFoundError(f"Production line {line_id} not found")
    _check_capacity(data.daily_capacity, data.export_capacity)

    change_time = data.change_time or _now()
    try:
        changed_at = datetime.fromisoformat(change_time)
    except ValueError:
        raise ValidationError(f"Invalid change time '{change_time}'")
    if changed_at.tzinfo:
        changed_at = changed_at.astimezone(timezone.utc).replace(tzinfo=None)

    if data.current_style is not None:
        new_style = data.current_style.strip() or IDLE_STYLE
        if new_style != line.current_style:
            _log_style_change(db, line.id, line.current_style, new_style, changed_at)
            line.current_style = new_style
            line.style_changed_at = change_time

    if data.sub_lines is not None:
        old_subs = {s.get("id"): s for s in line.sub_line_list}
        new_subs = _sub_line_dicts(line.id, data.sub_lines)
        for sub in new_subs:
            old = old_subs.get(sub["id"])
            if old and old.get("current_style") != sub["current_style"]:
                _log_style_change(
                    db,
                    line.id,
                    f"{sub['name']}:{old.get('current_style')}",
                    f"{sub['name']}:{sub['current_style']}",
                    changed_at,
                )
                sub["style_changed_at"] = change_time
        line.sub_line_list = new_subs

    for field in ("name", "daily_capacity", "export_capacity", "note"):
        value = getattr(data, field)
        if value is not None:
            setattr(line, field, value)
    if data.status is not None:
        line.status = data.status.value

    db.commit()
    db.refresh(line)
    return line


def delete_line(db: Session, line_id: int) -> None:
    line = get_line(db, line_id)
    if not line:
        raise NotFoundError(f"Production line {line_id} not found")
    db.delete(line)
    db.commit()
    logger.info("Deleted production line %s", line_id)


def list_style_logs(db: Session, line_id: int | None = None, limit: int = 100) -> list[StyleChangeLog]:
    q = db.query(StyleChangeLog)
    if line_id:
        q = q.filter(StyleChangeLog.line_id == line_id)
    return q.order_by(StyleChangeLog.changed_at.desc(), StyleChangeLog.id.desc()).limit(limit).all()
