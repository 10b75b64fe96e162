import json
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from syncflow.database import Base

IDLE_STYLE = "-"


class LineStatus(str, PyEnum):
    RUNNING = "Running"
    MAINTENANCE = "Maintenance"
    STOPPED = "Stopped"


class ProductionLine(Base):
    __tablename__ = "production_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default=LineStatus.STOPPED.value)
    current_style: Mapped[str] = mapped_column(String, default=IDLE_STYLE)
    daily_capacity: Mapped[float] = mapped_column(Float, default=0.0)
    # Finished export output waiting for a warehouse stock-in
    export_capacity: Mapped[float] = mapped_column(Float, default=0.0)
    note: Mapped[str] = mapped_column(Text, default="")
    style_changed_at: Mapped[str] = mapped_column(String, default="")

    # Parallel branches as JSON, e.g. '[{"id":"sub-2-1","name":"Big pipe","current_style":"BE3250",...}]'
    sub_lines: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def sub_line_list(self) -> list[dict]:
        return json.loads(self.sub_lines) if self.sub_lines else []

    @sub_line_list.setter
    def sub_line_list(self, value: list[dict]) -> None:
        self.sub_lines = json.dumps(value or [])


class StyleChangeLog(Base):
    __tablename__ = "style_change_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    line_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    from_style: Mapped[str] = mapped_column(String, default="")
    to_style: Mapped[str] = mapped_column(String, nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
