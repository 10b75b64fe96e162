import json
import uuid
from datetime import date, datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Date, DateTime, Enum, Float, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from syncflow.database import Base


class OrderStatus(str, PyEnum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    IN_PRODUCTION = "InProduction"
    READY_TO_SHIP = "ReadyToShip"
    SHIPPED = "Shipped"
    DELAYED = "Delayed"


# Stock for these has already been earmarked or deducted
TERMINAL_STATUSES = (OrderStatus.READY_TO_SHIP, OrderStatus.SHIPPED)


class TradeType(str, PyEnum):
    GENERAL = "general"
    BONDED = "bonded"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    client: Mapped[str] = mapped_column(String, default="", index=True)
    pi_no: Mapped[str] = mapped_column(String, default="")
    style_no: Mapped[str] = mapped_column(String, nullable=False, index=True)
    package_spec: Mapped[str] = mapped_column(String, default="")  # empty = any package
    line_ids: Mapped[str] = mapped_column(String, default="")  # e.g. "1/2" or "1,2,3"; empty = any line

    total_tons: Mapped[float] = mapped_column(Float, nullable=False)
    trade_type: Mapped[str] = mapped_column(
        Enum(TradeType, values_callable=lambda x: [e.value for e in x]),
        default=TradeType.GENERAL,
    )
    status: Mapped[str] = mapped_column(
        Enum(OrderStatus, values_callable=lambda x: [e.value for e in x]),
        default=OrderStatus.PENDING,
        index=True,
    )
    status_history: Mapped[str] = mapped_column(Text, default="[]")  # JSON list of {status, timestamp, note}

    # Explicit split, e.g. '{"general": 60, "bonded": 40}'; NULL = all from the trade type's regime
    warehouse_allocation: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_large_order: Mapped[bool] = mapped_column(Boolean, default=False)
    large_order_ack: Mapped[bool] = mapped_column(Boolean, default=False)
    expected_ship_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    requirements: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def allocation(self) -> dict | None:
        return json.loads(self.warehouse_allocation) if self.warehouse_allocation else None

    @allocation.setter
    def allocation(self, value: dict | None) -> None:
        self.warehouse_allocation = json.dumps(value) if value else None
