"""
Sales data models: the raw SalesEvent log entry and the derived SalesVelocity.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .enums import Trend


@dataclass(frozen=True)
class SalesEvent:
    """A sale (or return, when quantity is negative) of an item."""

    item_id: str
    quantity: int
    timestamp: datetime
    location_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SalesEvent":
        return cls(
            item_id=data["item_id"],
            quantity=int(data["quantity"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            location_id=data.get("location_id"),
        )


@dataclass(frozen=True)
class SalesVelocity:
    """
    Derived sales velocity for an item, never persisted.

    Peak hour and weekday are inferred independently; ``peak_inferred`` is False when
    either of them is the configured default rather than a value observed in the
    sales history.
    """

    item_id: str
    last_1h: int = 0
    last_2h: int = 0
    last_4h: int = 0
    last_24h: int = 0
    ewma: float = 0.0
    trend: Trend = Trend.STABLE
    peak_hour: int = 22
    peak_day_of_week: int = 4  # datetime.weekday(): Monday=0, Friday=4
    peak_inferred: bool = False
    location_id: str | None = None

    @property
    def daily_consumption(self) -> float:
        return self.ewma * 24

    @classmethod
    def empty(
        cls,
        item_id: str,
        location_id: str | None = None,
        peak_hour: int = 22,
        peak_day_of_week: int = 4,
    ) -> "SalesVelocity":
        """Velocity of an item with no sales history."""
        return cls(
            item_id=item_id,
            location_id=location_id,
            peak_hour=peak_hour,
            peak_day_of_week=peak_day_of_week,
        )
