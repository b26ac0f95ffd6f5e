"""
Inventory ledger.
Per (location, item) stock quantities with an append-only movement audit trail,
plus the location, item and POS-register catalogs the rest of the engine reads.
"""

import logging
import uuid
from dataclasses import replace

from models.enums import MovementType
from models.exceptions import InsufficientStockError
from models.inventory import (
    InventoryRecord,
    Item,
    Location,
    MovementResult,
    StockMovement,
    TransferResult,
)
from utils.clock import Clock, SystemClock
from utils.persistence import JsonBlobStore

logger = logging.getLogger(__name__)

LOCATIONS_KEY = "locations"
ITEMS_KEY = "items"
INVENTORY_KEY = "inventory"
MOVEMENTS_KEY = "stock_movements"
REGISTER_MAP_KEY = "register_location_map"

DEFAULT_MIN_STOCK = 5
DEFAULT_MAX_STOCK = 100
LOW_STOCK_FACTOR = 1.5


class InventoryLedger:
    """
    Stock per (location, item).

    Every quantity change goes through ``_apply`` which writes the record and its
    movement together, so a record's quantity always equals the sum of its movement
    deltas. Records are created lazily and never deleted; negative stock is
    allowed and flagged.
    """

    def __init__(self, store: JsonBlobStore, clock: Clock | None = None):
        self.store = store
        self.clock = clock or SystemClock()

    # --- Locations -------------------------------------------------------

    def _load_locations(self) -> list[Location]:
        return [Location.from_dict(d) for d in self.store.load(LOCATIONS_KEY, list, expected_type=list)]

    def _save_locations(self, locations: list[Location]) -> None:
        self.store.save(LOCATIONS_KEY, [loc.to_dict() for loc in locations])

    def create_location(
        self,
        name: str,
        location_id: str | None = None,
        active: bool = True,
        description: str | None = None,
    ) -> Location:
        locations = self._load_locations()
        location_id = location_id or f"loc-{uuid.uuid4().hex[:8]}"
        if any(loc.location_id == location_id for loc in locations):
            raise ValueError(f"Location {location_id} already exists")
        location = Location(
            location_id=location_id,
            name=name,
            active=active,
            description=description,
            created_at=self.clock.now(),
        )
        locations.append(location)
        self._save_locations(locations)
        logger.info(f"Created location {location_id} ({name})")
        return location

    def update_location(self, location_id: str, **changes) -> Location | None:
        locations = self._load_locations()
        for i, loc in enumerate(locations):
            if loc.location_id == location_id:
                allowed = {k: v for k, v in changes.items() if k in ("name", "active", "description")}
                locations[i] = replace(loc, **allowed)
                self._save_locations(locations)
                return locations[i]
        return None

    def get_location(self, location_id: str) -> Location | None:
        return next((loc for loc in self._load_locations() if loc.location_id == location_id), None)

    def list_locations(self, active_only: bool = False) -> list[Location]:
        locations = self._load_locations()
        if active_only:
            return [loc for loc in locations if loc.active]
        return locations

    # --- Items -----------------------------------------------------------

    def register_item(self, item_id: str, name: str, category_id: str | None = None) -> Item:
        items = self.store.load(ITEMS_KEY, dict)
        item = Item(item_id=item_id, name=name, category_id=category_id)
        items[item_id] = item.to_dict()
        self.store.save(ITEMS_KEY, items)
        return item

    def get_item(self, item_id: str) -> Item | None:
        data = self.store.load(ITEMS_KEY, dict).get(item_id)
        return Item.from_dict(data) if isinstance(data, dict) else None

    def list_items(self) -> list[Item]:
        return [Item.from_dict(d) for d in self.store.load(ITEMS_KEY, dict).values() if isinstance(d, dict)]

    # --- POS registers ---------------------------------------------------

    def assign_register(self, register_id: str, location_id: str) -> None:
        """Map a POS register to the location whose stock its sales draw from."""
        mapping = self.store.load(REGISTER_MAP_KEY, dict)
        mapping[register_id] = location_id
        self.store.save(REGISTER_MAP_KEY, mapping)

    def location_for_register(self, register_id: str) -> str | None:
        return self.store.load(REGISTER_MAP_KEY, dict).get(register_id)

    # --- Records ---------------------------------------------------------

    def _load_records(self) -> dict[tuple[str, str], InventoryRecord]:
        records = {}
        for entry in self.store.load(INVENTORY_KEY, list, expected_type=list):
            try:
                record = InventoryRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed inventory record {entry!r}: {e}")
                continue
            records[(record.location_id, record.item_id)] = record
        return records

    def _load_movements(self) -> list[StockMovement]:
        movements = []
        for entry in self.store.load(MOVEMENTS_KEY, list, expected_type=list):
            try:
                movements.append(StockMovement.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed movement {entry!r}: {e}")
        return movements

    def _commit(
        self,
        records: dict[tuple[str, str], InventoryRecord],
        new_movements: list[StockMovement],
    ) -> None:
        """Persist records and movements together; on failure restore both blobs."""
        previous_inventory = self.store.raw(INVENTORY_KEY)
        previous_movements = self.store.raw(MOVEMENTS_KEY)
        movements = self._load_movements() + new_movements
        try:
            self.store.save(INVENTORY_KEY, [r.to_dict() for r in records.values()])
            self.store.save(MOVEMENTS_KEY, [m.to_dict() for m in movements])
        except Exception:
            logger.error("Ledger commit failed, restoring previous inventory and movements")
            self.store.restore(INVENTORY_KEY, previous_inventory)
            self.store.restore(MOVEMENTS_KEY, previous_movements)
            raise

    def get_record(self, location_id: str, item_id: str) -> InventoryRecord | None:
        return self._load_records().get((location_id, item_id))

    def get_stock(self, location_id: str, item_id: str) -> int:
        record = self.get_record(location_id, item_id)
        return record.quantity if record else 0

    def records_for_location(self, location_id: str) -> list[InventoryRecord]:
        return [r for r in self._load_records().values() if r.location_id == location_id]

    def records_for_item(self, item_id: str) -> list[InventoryRecord]:
        return [r for r in self._load_records().values() if r.item_id == item_id]

    def _record(self, records, location_id: str, item_id: str) -> InventoryRecord:
        key = (location_id, item_id)
        if key not in records:
            records[key] = InventoryRecord(
                location_id=location_id,
                item_id=item_id,
                min_stock=DEFAULT_MIN_STOCK,
                max_stock=DEFAULT_MAX_STOCK,
            )
        return records[key]

    def _movement(
        self,
        record: InventoryRecord,
        movement_type: MovementType,
        delta: int,
        **extra,
    ) -> StockMovement:
        previous = record.quantity
        record.quantity = previous + delta
        return StockMovement(
            location_id=record.location_id,
            item_id=record.item_id,
            movement_type=movement_type,
            quantity=delta,
            previous_stock=previous,
            new_stock=record.quantity,
            created_at=self.clock.now(),
            **extra,
        )

    def _apply(
        self,
        location_id: str,
        item_id: str,
        movement_type: MovementType,
        delta: int,
        **extra,
    ) -> MovementResult:
        records = self._load_records()
        record = self._record(records, location_id, item_id)
        now = self.clock.now()
        if movement_type == MovementType.SALE:
            record.last_sale_at = now
        elif movement_type == MovementType.RESTOCK:
            record.last_restocked_at = now
        movement = self._movement(record, movement_type, delta, **extra)
        self._commit(records, [movement])

        warning = None
        if record.is_negative:
            warning = f"Negative stock for {item_id} at {location_id}: {record.quantity} units"
            logger.warning(warning)
        return MovementResult(record=record, movement=movement, warning=warning)

    # --- Movements -------------------------------------------------------

    def record_sale(
        self,
        location_id: str,
        item_id: str,
        quantity: int,
        order_id: str | None = None,
    ) -> MovementResult:
        """Deduct a sale. Negative stock is permitted; the result carries a warning."""
        return self._apply(location_id, item_id, MovementType.SALE, -quantity, related_order_id=order_id)

    def record_restock(
        self,
        location_id: str,
        item_id: str,
        quantity: int,
        notes: str | None = None,
    ) -> MovementResult:
        if quantity <= 0:
            raise ValueError("Restock quantity must be positive")
        result = self._apply(location_id, item_id, MovementType.RESTOCK, quantity, notes=notes)
        logger.info(f"Restocked {quantity} x {item_id} at {location_id} (now {result.new_stock})")
        return result

    def record_waste(
        self,
        location_id: str,
        item_id: str,
        quantity: int,
        notes: str | None = None,
    ) -> MovementResult:
        if quantity <= 0:
            raise ValueError("Waste quantity must be positive")
        return self._apply(location_id, item_id, MovementType.WASTE, -quantity, notes=notes)

    def adjust_stock(
        self,
        location_id: str,
        item_id: str,
        delta: int,
        notes: str | None = None,
    ) -> MovementResult:
        return self._apply(location_id, item_id, MovementType.ADJUSTMENT, delta, notes=notes)

    def set_stock(
        self,
        location_id: str,
        item_id: str,
        quantity: int,
        min_stock: int | None = None,
        max_stock: int | None = None,
    ) -> MovementResult:
        """Set an absolute quantity (recount). Recorded as an adjustment of the difference."""
        records = self._load_records()
        record = self._record(records, location_id, item_id)
        if min_stock is not None:
            record.min_stock = min_stock
        if max_stock is not None:
            record.max_stock = max_stock
        movement = self._movement(
            record, MovementType.ADJUSTMENT, quantity - record.quantity, notes="Stock set to absolute quantity"
        )
        self._commit(records, [movement])
        return MovementResult(record=record, movement=movement)

    def transfer_stock(
        self,
        from_location_id: str,
        to_location_id: str,
        item_id: str,
        quantity: int,
        notes: str | None = None,
    ) -> TransferResult:
        """
        Move stock between two locations. Fails with InsufficientStockError, leaving both
        sides untouched, when the source holds fewer units than requested.
        """
        if quantity <= 0:
            raise ValueError("Transfer quantity must be positive")
        if from_location_id == to_location_id:
            raise ValueError("Cannot transfer stock to the same location")

        records = self._load_records()
        available = records[(from_location_id, item_id)].quantity if (from_location_id, item_id) in records else 0
        if available < quantity:
            raise InsufficientStockError(from_location_id, item_id, available, quantity)

        source = self._record(records, from_location_id, item_id)
        destination = self._record(records, to_location_id, item_id)
        destination.last_restocked_at = self.clock.now()
        outgoing = self._movement(
            source, MovementType.TRANSFER_OUT, -quantity, related_location_id=to_location_id, notes=notes
        )
        incoming = self._movement(
            destination, MovementType.TRANSFER_IN, quantity, related_location_id=from_location_id, notes=notes
        )
        self._commit(records, [outgoing, incoming])
        logger.info(f"Transferred {quantity} x {item_id} from {from_location_id} to {to_location_id}")
        return TransferResult(source=source, destination=destination, outgoing=outgoing, incoming=incoming)

    def movements(self, location_id: str | None = None, item_id: str | None = None) -> list[StockMovement]:
        return [
            m
            for m in self._load_movements()
            if (location_id is None or m.location_id == location_id) and (item_id is None or m.item_id == item_id)
        ]

    def reconstruct_quantity(self, location_id: str, item_id: str) -> int:
        """Quantity rebuilt from the audit trail alone, starting from zero."""
        return sum(m.quantity for m in self.movements(location_id, item_id))

    # --- Queries ---------------------------------------------------------

    def stock_by_location(self, item_id: str) -> list[tuple[Location, int]]:
        """Stock of an item at every active location (0 where there is no record)."""
        records = self._load_records()
        return [
            (loc, records[(loc.location_id, item_id)].quantity if (loc.location_id, item_id) in records else 0)
            for loc in self.list_locations(active_only=True)
        ]

    def find_alternative_locations(
        self,
        exclude_location_id: str,
        item_id: str,
        minimum_stock: int = 1,
    ) -> list[tuple[Location, int]]:
        """Other active locations holding at least ``minimum_stock`` units, most stock first."""
        candidates = [
            (loc, stock)
            for loc, stock in self.stock_by_location(item_id)
            if loc.location_id != exclude_location_id and stock >= minimum_stock
        ]
        return sorted(candidates, key=lambda pair: pair[1], reverse=True)

    def low_stock_records(self, location_id: str) -> list[InventoryRecord]:
        """Records at or below 150% of their minimum, lowest relative stock first."""
        low = [r for r in self.records_for_location(location_id) if r.quantity <= r.min_stock * LOW_STOCK_FACTOR]
        return sorted(low, key=lambda r: r.percent_of_min())
