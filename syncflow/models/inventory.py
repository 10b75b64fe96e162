from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Float, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from syncflow.database import Base


class WarehouseType(str, PyEnum):
    GENERAL = "general"
    BONDED = "bonded"


class PackageSpec(str, PyEnum):
    KG820 = "820kg"
    KG750 = "750kg"
    KG25 = "25kg"


class Grade(str, PyEnum):
    A = "A"
    B = "B"


class TransactionType(str, PyEnum):
    IN = "IN"
    OUT = "OUT"
    ADJUST_IN = "ADJUST_IN"
    ADJUST_OUT = "ADJUST_OUT"


class AuditAction(str, PyEnum):
    ADJUST = "adjust"
    LOCK = "lock"
    UNLOCK = "unlock"


# line_id column value for stock that is not tied to a production line
NO_LINE = 0


@dataclass(frozen=True)
class InventoryKey:
    """Identity of one inventory record: style, warehouse regime, package spec and optional line."""

    style_no: str
    warehouse_type: WarehouseType = WarehouseType.GENERAL
    package_spec: PackageSpec = PackageSpec.KG820
    line_id: int | None = None

    def __post_init__(self):
        # Normalise so "BE3250 " / "general" / 0 compare equal to their canonical forms
        object.__setattr__(self, "style_no", (self.style_no or "").strip())
        object.__setattr__(self, "warehouse_type", WarehouseType(self.warehouse_type))
        object.__setattr__(self, "package_spec", PackageSpec(self.package_spec))
        object.__setattr__(self, "line_id", self.line_id or None)

    @property
    def line_column(self) -> int:
        return self.line_id or NO_LINE

    def label(self) -> str:
        parts = [self.style_no, self.warehouse_type.value, self.package_spec.value]
        if self.line_id:
            parts.append(f"line {self.line_id}")
        return "/".join(parts)


class InventoryRecord(Base):
    __tablename__ = "inventory"
    __table_args__ = (UniqueConstraint("style_no", "warehouse_type", "package_spec", "line_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    style_no: Mapped[str] = mapped_column(String, nullable=False, index=True)
    warehouse_type: Mapped[str] = mapped_column(String, default=WarehouseType.GENERAL.value)
    package_spec: Mapped[str] = mapped_column(String, default=PackageSpec.KG820.value)
    line_id: Mapped[int] = mapped_column(Integer, default=NO_LINE, index=True)
    line_name: Mapped[str] = mapped_column(String, default="")

    grade_a: Mapped[float] = mapped_column(Float, default=0.0)
    grade_b: Mapped[float] = mapped_column(Float, default=0.0)
    # Denormalised for queries; rewritten from the grades on every change
    current_stock: Mapped[float] = mapped_column(Float, default=0.0)
    stock_t_minus_1: Mapped[float] = mapped_column(Float, default=0.0)
    locked_for_today: Mapped[float] = mapped_column(Float, default=0.0)
    safety_stock: Mapped[float] = mapped_column(Float, default=0.0, index=True)

    last_updated: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def key(self) -> InventoryKey:
        return InventoryKey(self.style_no, self.warehouse_type, self.package_spec, self.line_id)

    @property
    def available(self) -> float:
        return self.current_stock - self.locked_for_today

    def grade_amount(self, grade: Grade) -> float:
        return self.grade_a if Grade(grade) == Grade.A else self.grade_b

    def set_grades(self, grade_a: float, grade_b: float) -> None:
        self.grade_a = grade_a
        self.grade_b = grade_b
        self.current_stock = grade_a + grade_b


class InventoryTransaction(Base):
    """Append-only stock movement ledger; corrections are new entries, never edits."""

    __tablename__ = "inventory_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    style_no: Mapped[str] = mapped_column(String, nullable=False, index=True)
    warehouse_type: Mapped[str] = mapped_column(String, default=WarehouseType.GENERAL.value)
    package_spec: Mapped[str] = mapped_column(String, default=PackageSpec.KG820.value)
    line_id: Mapped[int] = mapped_column(Integer, default=NO_LINE)
    type: Mapped[str] = mapped_column(String, nullable=False)
    grade: Mapped[str] = mapped_column(String, default=Grade.A.value)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)  # always positive, sign comes from type
    balance: Mapped[float] = mapped_column(Float, nullable=False)  # current_stock after this entry
    source: Mapped[str] = mapped_column(String, default="")
    note: Mapped[str] = mapped_column(Text, default="")
    order_id: Mapped[str] = mapped_column(String, default="", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)

    @property
    def signed_quantity(self) -> float:
        if self.type in (TransactionType.IN.value, TransactionType.ADJUST_IN.value):
            return self.quantity
        return -self.quantity


class InventoryAuditLog(Base):
    """Before/after grade snapshots around administrative actions (adjust, lock, unlock)."""

    __tablename__ = "inventory_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    style_no: Mapped[str] = mapped_column(String, nullable=False, index=True)
    warehouse_type: Mapped[str] = mapped_column(String, default=WarehouseType.GENERAL.value)
    package_spec: Mapped[str] = mapped_column(String, default=PackageSpec.KG820.value)
    line_id: Mapped[int] = mapped_column(Integer, default=NO_LINE, index=True)
    line_name: Mapped[str] = mapped_column(String, default="")
    action: Mapped[str] = mapped_column(String, nullable=False)
    before_grade_a: Mapped[float] = mapped_column(Float, default=0.0)
    before_grade_b: Mapped[float] = mapped_column(Float, default=0.0)
    after_grade_a: Mapped[float] = mapped_column(Float, default=0.0)
    after_grade_b: Mapped[float] = mapped_column(Float, default=0.0)
    locked_after: Mapped[float] = mapped_column(Float, default=0.0)
    reason: Mapped[str] = mapped_column(Text, default="")
    operator: Mapped[str] = mapped_column(String, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
