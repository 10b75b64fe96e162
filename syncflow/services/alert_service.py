from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.orm import Session

from syncflow.models.inventory import InventoryKey, InventoryRecord


@dataclass(frozen=True)
class SafetyAlert:
    key: InventoryKey
    current_stock: float
    locked_for_today: float
    safety_stock: float

    @property
    def shortage(self) -> float:
        return self.safety_stock - self.current_stock


def safety_alerts(records: Iterable[InventoryRecord]) -> list[SafetyAlert]:
    """Records below their configured threshold. A threshold of 0 disables the check.

    Alerts are derived on every call and never stored; the only way to clear
    one is to bring the stock back up (or lower the threshold).
    """
    alerts = [
        SafetyAlert(
            key=r.key,
            current_stock=r.current_stock,
            locked_for_today=r.locked_for_today or 0.0,
            safety_stock=r.safety_stock,
        )
        for r in records
        if (r.safety_stock or 0) > 0 and r.current_stock < r.safety_stock
    ]
    return sorted(alerts, key=lambda a: a.shortage, reverse=True)


def list_alerts(db: Session) -> list[SafetyAlert]:
    records = (
        db.query(InventoryRecord)
        .filter(InventoryRecord.safety_stock > 0, InventoryRecord.current_stock < InventoryRecord.safety_stock)
        .all()
    )
    return safety_alerts(records)
