import json
from datetime import datetime

from pydantic import BaseModel, field_validator

from syncflow.models.inventory import Grade, PackageSpec, WarehouseType
from syncflow.models.production_line import IDLE_STYLE, LineStatus


class SubLine(BaseModel):
    id: str = ""  # empty = assigned on save
    name: str = ""
    current_style: str = IDLE_STYLE
    daily_capacity: float = 0.0
    export_capacity: float = 0.0
    style_changed_at: str = ""


class LineCreate(BaseModel):
    name: str = ""  # empty = "Line <id>"
    status: LineStatus = LineStatus.STOPPED
    current_style: str = IDLE_STYLE
    daily_capacity: float = 0.0
    export_capacity: float = 0.0
    note: str = ""
    sub_lines: list[SubLine] = []


class LineUpdate(BaseModel):
    name: str | None = None
    status: LineStatus | None = None
    current_style: str | None = None
    daily_capacity: float | None = None
    export_capacity: float | None = None
    note: str | None = None
    sub_lines: list[SubLine] | None = None
    change_time: str | None = None  # when the style change happened; default now


class LineOut(BaseModel):
    id: int
    name: str
    status: str
    current_style: str
    daily_capacity: float
    export_capacity: float
    note: str = ""
    style_changed_at: str = ""
    sub_lines: list[SubLine] = []
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("sub_lines", mode="before")
    @classmethod
    def parse_sub_lines(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v else []
        return v or []

    @field_validator("note", "style_changed_at", mode="before")
    @classmethod
    def empty_default(cls, v):
        return v or ""


class StyleChangeLogOut(BaseModel):
    id: int
    line_id: int
    from_style: str
    to_style: str
    changed_at: datetime

    model_config = {"from_attributes": True}


class CompleteProductionRequest(BaseModel):
    sub_line_id: str | None = None
    quantity: float | None = None  # None = the whole pending export output
    grade: Grade = Grade.A
    warehouse_type: WarehouseType = WarehouseType.GENERAL
    package_spec: PackageSpec = PackageSpec.KG820


class PendingStockInOut(BaseModel):
    line_id: int
    line_name: str
    style_no: str
    quantity: float
    sub_line_id: str | None = None
    sub_line_name: str | None = None

    model_config = {"from_attributes": True}


class StyleCapacityOut(BaseModel):
    style_no: str
    total_capacity: float
    export_capacity: float
    contributing_lines: list[str]

    model_config = {"from_attributes": True}
