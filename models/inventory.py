"""
Inventory-related data models for the stock alert engine.
Includes Location, Item, InventoryRecord, StockMovement and StockThresholds dataclasses.
"""

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any

from .enums import MovementType


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Location:
    """
    A physical stock point (e.g. a bar station). Inactive locations keep their
    records but are skipped by sweeps and alternative-location lookups.
    """

    location_id: str
    name: str
    active: bool = True
    description: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Location":
        return cls(
            location_id=data["location_id"],
            name=data.get("name", data["location_id"]),
            active=bool(data.get("active", True)),
            description=data.get("description"),
            created_at=_dt(data.get("created_at")),
        )


@dataclass
class Item:
    """A trackable product with a global identity independent of location."""

    item_id: str
    name: str
    category_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        return cls(
            item_id=data["item_id"],
            name=data.get("name", data["item_id"]),
            category_id=data.get("category_id"),
        )


@dataclass
class InventoryRecord:
    """
    Stock of one item at one location. Created lazily on first write and never deleted.
    Negative quantities are allowed (sales recorded before a recount).
    """

    location_id: str
    item_id: str
    quantity: int = 0
    min_stock: int = 5
    max_stock: int = 100
    last_restocked_at: datetime | None = None
    last_sale_at: datetime | None = None

    @property
    def is_negative(self) -> bool:
        return self.quantity < 0

    def percent_of_min(self) -> float:
        if self.min_stock <= 0:
            return 100.0
        return self.quantity / self.min_stock * 100

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_restocked_at"] = _iso(self.last_restocked_at)
        data["last_sale_at"] = _iso(self.last_sale_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InventoryRecord":
        return cls(
            location_id=data["location_id"],
            item_id=data["item_id"],
            quantity=int(data.get("quantity", 0)),
            min_stock=int(data.get("min_stock", 5)),
            max_stock=int(data.get("max_stock", 100)),
            last_restocked_at=_dt(data.get("last_restocked_at")),
            last_sale_at=_dt(data.get("last_sale_at")),
        )


@dataclass(frozen=True)
class StockMovement:
    """Immutable audit entry. ``quantity`` is the signed delta applied to the record."""

    location_id: str
    item_id: str
    movement_type: MovementType
    quantity: int
    previous_stock: int
    new_stock: int
    created_at: datetime
    movement_id: str = field(default_factory=lambda: f"mov-{uuid.uuid4().hex[:12]}")
    related_location_id: str | None = None
    related_order_id: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["movement_type"] = self.movement_type.value
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StockMovement":
        return cls(
            location_id=data["location_id"],
            item_id=data["item_id"],
            movement_type=MovementType(data["movement_type"]),
            quantity=int(data["quantity"]),
            previous_stock=int(data["previous_stock"]),
            new_stock=int(data["new_stock"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            movement_id=data.get("movement_id") or f"mov-{uuid.uuid4().hex[:12]}",
            related_location_id=data.get("related_location_id"),
            related_order_id=data.get("related_order_id"),
            notes=data.get("notes"),
        )


@dataclass
class StockThresholds:
    """
    Severity thresholds for an item.
    - min_absolute: below this the state is critical
    - reorder_point: below this the state is a warning
    - safety_stock: units added on top of the forecast target
    - lead_time_days: supplier delivery time
    - pack_size: minimum orderable batch
    """

    min_absolute: int = 5
    reorder_point: int = 20
    safety_stock: int = 10
    lead_time_days: int = 1
    pack_size: int = 6

    def merged(self, **changes: Any) -> "StockThresholds":
        """Return a copy with the given (non-None) fields replaced."""
        known = {f.name for f in fields(self)}
        updates = {k: v for k, v in changes.items() if k in known and v is not None}
        return StockThresholds(**{**asdict(self), **updates})

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: "StockThresholds | None" = None) -> "StockThresholds":
        return (base or cls()).merged(**data)


@dataclass
class MovementResult:
    """Outcome of a single-location stock operation."""

    record: InventoryRecord
    movement: StockMovement
    warning: str | None = None

    @property
    def new_stock(self) -> int:
        return self.record.quantity


@dataclass
class TransferResult:
    """Outcome of a transfer; both legs carry their own audit entry."""

    source: InventoryRecord
    destination: InventoryRecord
    outgoing: StockMovement
    incoming: StockMovement
