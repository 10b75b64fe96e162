import json
from datetime import date, datetime

from pydantic import BaseModel, field_validator

from syncflow.models.inventory import PackageSpec
from syncflow.models.order import OrderStatus, TradeType


class AllocationInput(BaseModel):
    general: float = 0.0
    bonded: float = 0.0


class OrderCreate(BaseModel):
    order_date: date | None = None
    client: str = ""
    pi_no: str = ""
    style_no: str
    package_spec: PackageSpec | None = None  # None = any package
    line_ids: str = ""  # "1/2" or "1,2"; empty = any line
    total_tons: float
    trade_type: TradeType = TradeType.GENERAL
    warehouse_allocation: AllocationInput | None = None
    expected_ship_date: date | None = None
    requirements: str = ""


class OrderUpdate(BaseModel):
    order_date: date | None = None
    client: str | None = None
    pi_no: str | None = None
    style_no: str | None = None
    package_spec: PackageSpec | None = None
    line_ids: str | None = None
    total_tons: float | None = None
    trade_type: TradeType | None = None
    expected_ship_date: date | None = None
    requirements: str | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str = ""
    operator: str = ""


class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: str
    note: str = ""
    operator: str = ""


class OrderOut(BaseModel):
    id: str
    order_date: date | None = None
    client: str
    pi_no: str
    style_no: str
    package_spec: str = ""
    line_ids: str = ""
    total_tons: float
    trade_type: str
    status: str
    status_history: list[StatusHistoryEntry] = []
    warehouse_allocation: AllocationInput | None = None
    is_large_order: bool
    large_order_ack: bool
    expected_ship_date: date | None = None
    requirements: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("status_history", mode="before")
    @classmethod
    def parse_history(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v or []

    @field_validator("warehouse_allocation", mode="before")
    @classmethod
    def parse_allocation(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v else None
        return v

    @field_validator("package_spec", "line_ids", "requirements", mode="before")
    @classmethod
    def empty_default(cls, v):
        return v or ""


class FulfillmentOut(BaseModel):
    order_id: str
    percent: float
    is_shortage: bool
    breakdown: dict


class StatusChangeOut(BaseModel):
    applied: bool
    warning: str = ""
    order: OrderOut
    fulfillment: FulfillmentOut | None = None
