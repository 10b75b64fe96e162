"""Production capacity per style and the queue of finished output awaiting stock-in.

A production line is either a single unit producing one style, or a branched
unit whose sub-lines each produce their own style. Both shapes answer the same
two questions through ``capacity_contribution`` and ``pending_items`` so the
aggregations below never branch on the line's shape.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.orm import Session

from syncflow.errors import NotFoundError, ValidationError
from syncflow.models.inventory import Grade, InventoryKey, PackageSpec, WarehouseType
from syncflow.models.production_line import IDLE_STYLE, LineStatus, ProductionLine
from syncflow.services import inventory_service

logger = logging.getLogger(__name__)

PRODUCTION_SOURCE = "production"


@dataclass
class Contribution:
    total_capacity: float = 0.0
    export_capacity: float = 0.0
    names: list[str] = field(default_factory=list)

    def __iadd__(self, other: "Contribution") -> "Contribution":
        self.total_capacity += other.total_capacity
        self.export_capacity += other.export_capacity
        self.names.extend(n for n in other.names if n not in self.names)
        return self


@dataclass(frozen=True)
class PendingStockIn:
    line_id: int
    line_name: str
    style_no: str
    quantity: float
    sub_line_id: str | None = None
    sub_line_name: str | None = None


@dataclass(frozen=True)
class SubUnit:
    id: str
    name: str
    style_no: str
    daily_capacity: float = 0.0
    export_capacity: float = 0.0


@dataclass(frozen=True)
class SimpleUnit:
    line_id: int
    name: str
    running: bool
    style_no: str
    daily_capacity: float = 0.0
    export_capacity: float = 0.0

    def capacity_contribution(self, style_no: str) -> Contribution:
        if not self.running or self.style_no != style_no:
            return Contribution()
        return Contribution(self.daily_capacity, self.export_capacity, [self.name])

    def styles(self) -> set[str]:
        return {self.style_no} if self.running and self.style_no != IDLE_STYLE else set()

    def pending_items(self) -> list[PendingStockIn]:
        if not self.running or self.style_no in ("", IDLE_STYLE) or self.export_capacity <= 0:
            return []
        return [PendingStockIn(self.line_id, self.name, self.style_no, self.export_capacity)]


@dataclass(frozen=True)
class BranchedUnit:
    line_id: int
    name: str
    running: bool
    sub_units: tuple[SubUnit, ...]

    def capacity_contribution(self, style_no: str) -> Contribution:
        total = Contribution()
        if not self.running:
            return total
        for sub in self.sub_units:
            if sub.style_no == style_no:
                total += Contribution(sub.daily_capacity, sub.export_capacity, [f"{self.name}-{sub.name}"])
        return total

    def styles(self) -> set[str]:
        if not self.running:
            return set()
        return {s.style_no for s in self.sub_units if s.style_no not in ("", IDLE_STYLE)}

    def pending_items(self) -> list[PendingStockIn]:
        if not self.running:
            return []
        return [
            PendingStockIn(self.line_id, self.name, sub.style_no, sub.export_capacity, sub.id, sub.name)
            for sub in self.sub_units
            if sub.style_no not in ("", IDLE_STYLE) and sub.export_capacity > 0
        ]


ProductionUnit = SimpleUnit | BranchedUnit


def _sub_unit(raw: dict) -> SubUnit:
    return SubUnit(
        id=str(raw.get("id", "")),
        name=raw.get("name", ""),
        style_no=raw.get("current_style") or IDLE_STYLE,
        daily_capacity=float(raw.get("daily_capacity") or 0),
        export_capacity=float(raw.get("export_capacity") or 0),
    )


def production_unit(line: ProductionLine) -> ProductionUnit:
    running = line.status == LineStatus.RUNNING.value
    subs = line.sub_line_list
    if subs:
        return BranchedUnit(line.id, line.name, running, tuple(_sub_unit(s) for s in subs))
    return SimpleUnit(
        line.id,
        line.name,
        running,
        line.current_style or IDLE_STYLE,
        float(line.daily_capacity or 0),
        float(line.export_capacity or 0),
    )


def _units(lines: Iterable[ProductionLine], line_ids: set[int] | None = None) -> list[ProductionUnit]:
    return [production_unit(l) for l in lines if not line_ids or l.id in line_ids]


@dataclass
class StyleCapacity:
    style_no: str
    total_capacity: float
    export_capacity: float
    contributing_lines: list[str]


def capacity_for_style(
    lines: Iterable[ProductionLine], style_no: str, line_ids: set[int] | None = None
) -> StyleCapacity:
    """Capacity of running lines (and sub-lines) currently on ``style_no``.

    Lines under maintenance or stopped never count, whatever their style.
    ``line_ids`` restricts the sum to those lines; empty means all lines.
    """
    total = Contribution()
    for unit in _units(lines, line_ids):
        total += unit.capacity_contribution(style_no)
    return StyleCapacity(style_no, total.total_capacity, total.export_capacity, total.names)


def capacity_by_style(lines: Iterable[ProductionLine]) -> list[StyleCapacity]:
    lines = list(lines)
    units = _units(lines)
    styles = set()
    for unit in units:
        styles |= unit.styles()
    result = [capacity_for_style(lines, style) for style in styles]
    return sorted(result, key=lambda c: (-c.total_capacity, c.style_no))


def pending_stock_in(lines: Iterable[ProductionLine]) -> list[PendingStockIn]:
    items = []
    for unit in _units(lines):
        items.extend(unit.pending_items())
    return items


# --- Production completion: stock-in and queue reset in one transaction ---

def _receive(
    db: Session,
    line: ProductionLine,
    item: PendingStockIn,
    quantity: float | None,
    grade: Grade | str,
    warehouse_type: WarehouseType | str,
    package_spec: PackageSpec | str,
) -> None:
    qty = item.quantity if quantity is None else quantity
    key = InventoryKey(item.style_no, warehouse_type, package_spec, line.id)
    where = f"{line.name}-{item.sub_line_name}" if item.sub_line_id else line.name
    inventory_service.apply_stock_in(
        db,
        key,
        qty,
        grade,
        source=PRODUCTION_SOURCE,
        note=f"{where} completed {qty:g}t",
        line_name=line.name,
    )

    if item.sub_line_id:
        subs = line.sub_line_list
        for sub in subs:
            if str(sub.get("id")) == item.sub_line_id:
                sub["export_capacity"] = 0
        line.sub_line_list = subs
    else:
        line.export_capacity = 0.0


def complete_production(
    db: Session,
    line_id: int,
    sub_line_id: str | None = None,
    quantity: float | None = None,
    grade: Grade | str = Grade.A,
    warehouse_type: WarehouseType | str = WarehouseType.GENERAL,
    package_spec: PackageSpec | str = PackageSpec.KG820,
) -> ProductionLine:
    """Post a line's (or sub-line's) finished export output to inventory.

    ``quantity`` overrides the pending amount when the warehouse counts a
    different figure; the pending amount is cleared either way.
    """
    line = db.query(ProductionLine).filter(ProductionLine.id == line_id).with_for_update().first()
    if not line:
        raise NotFoundError(f"Production line {line_id} not found")

    pending = production_unit(line).pending_items()
    if sub_line_id:
        if not any(str(s.get("id")) == sub_line_id for s in line.sub_line_list):
            raise NotFoundError(f"Sub-line {sub_line_id} not found on line {line_id}")
        pending = [p for p in pending if p.sub_line_id == sub_line_id]
    elif line.sub_line_list:
        raise ValidationError(f"Line {line_id} has sub-lines; choose one to complete")
    if not pending:
        raise ValidationError(f"No finished output waiting for stock-in on line {line_id}")

    try:
        _receive(db, line, pending[0], quantity, grade, warehouse_type, package_spec)
    except Exception:
        db.rollback()
        raise
    db.commit()
    db.refresh(line)
    logger.info("Production completed on line %s%s", line_id, f"/{sub_line_id}" if sub_line_id else "")
    return line


def receive_style_production(
    db: Session,
    style_no: str,
    grade: Grade | str = Grade.A,
    warehouse_type: WarehouseType | str = WarehouseType.GENERAL,
    package_spec: PackageSpec | str = PackageSpec.KG820,
) -> float:
    """Stock in every running line's pending output for ``style_no``; returns tons received."""
    lines = db.query(ProductionLine).order_by(ProductionLine.id).with_for_update().all()
    received = 0.0
    try:
        for line in lines:
            for item in production_unit(line).pending_items():
                if item.style_no == style_no:
                    _receive(db, line, item, None, grade, warehouse_type, package_spec)
                    received += item.quantity
        if not received:
            raise ValidationError(f"No finished output waiting for stock-in for style {style_no}")
    except Exception:
        db.rollback()
        raise
    db.commit()
    logger.info("Received %.3f of style %s from production", received, style_no)
    return received
