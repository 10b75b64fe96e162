from datetime import datetime

from pydantic import BaseModel, field_validator

from syncflow.config import settings
from syncflow.models.inventory import Grade, InventoryKey


class KeyInput(BaseModel):
    style_no: str
    warehouse_type: str = settings.DEFAULT_WAREHOUSE_TYPE
    package_spec: str = settings.DEFAULT_PACKAGE_SPEC
    line_id: int | None = None

    def to_key(self) -> InventoryKey:
        return InventoryKey(self.style_no, self.warehouse_type, self.package_spec, self.line_id)


class StockMovement(KeyInput):
    quantity: float
    grade: Grade = Grade.A
    source: str = ""
    note: str = ""
    line_name: str = ""


class BatchMovement(BaseModel):
    items: list[StockMovement]


class AdjustRequest(KeyInput):
    grade_a: float | None = None  # None = keep current amount
    grade_b: float | None = None
    reason: str = ""
    operator: str = ""


class LockRequest(KeyInput):
    quantity: float
    reason: str = ""
    operator: str = ""


class SafetyStockRequest(KeyInput):
    safety_stock: float


class RecordUpdate(KeyInput):
    grade_a: float | None = None
    grade_b: float | None = None
    safety_stock: float | None = None
    reason: str = ""
    operator: str = ""


class InventoryOut(BaseModel):
    id: int
    style_no: str
    warehouse_type: str
    package_spec: str
    line_id: int | None = None
    line_name: str = ""
    grade_a: float
    grade_b: float
    current_stock: float
    stock_t_minus_1: float = 0.0
    locked_for_today: float
    safety_stock: float
    last_updated: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("line_id", mode="before")
    @classmethod
    def no_line(cls, v):
        return v or None

    @field_validator("line_name", mode="before")
    @classmethod
    def line_name_default(cls, v):
        return v or ""


class LockOut(BaseModel):
    style_no: str
    locked_for_today: float


class AlertOut(BaseModel):
    style_no: str
    warehouse_type: str
    package_spec: str
    line_id: int | None = None
    current_stock: float
    locked_for_today: float
    safety_stock: float
    shortage: float


class TransactionOut(BaseModel):
    id: int
    style_no: str
    warehouse_type: str
    package_spec: str
    line_id: int | None = None
    type: str
    grade: str
    quantity: float
    balance: float
    source: str
    note: str
    order_id: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("line_id", mode="before")
    @classmethod
    def no_line(cls, v):
        return v or None


class AuditLogOut(BaseModel):
    id: int
    style_no: str
    warehouse_type: str
    package_spec: str
    line_id: int | None = None
    line_name: str
    action: str
    before_grade_a: float
    before_grade_b: float
    after_grade_a: float
    after_grade_b: float
    locked_after: float
    reason: str
    operator: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("line_id", mode="before")
    @classmethod
    def no_line(cls, v):
        return v or None


class TransactionPage(BaseModel):
    data: list[TransactionOut]
    total: int
    page: int
    page_size: int
    total_pages: int

    model_config = {"from_attributes": True}


class AuditLogPage(BaseModel):
    data: list[AuditLogOut]
    total: int
    page: int
    page_size: int
    total_pages: int

    model_config = {"from_attributes": True}
