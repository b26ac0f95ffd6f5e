"""
Threshold registry.
Per-item severity thresholds over a global default, with optional per-location
overrides that can only narrow the absolute minimum.
"""

import logging
from dataclasses import fields
from typing import Any

from config.config import DEFAULT_THRESHOLDS
from models.exceptions import PersistenceCorruptionError, ValidationError
from models.inventory import StockThresholds
from utils.persistence import JsonBlobStore

logger = logging.getLogger(__name__)

THRESHOLDS_KEY = "thresholds"
DEFAULT_THRESHOLDS_KEY = "thresholds_default"
OVERRIDES_KEY = "thresholds_location_overrides"

THRESHOLD_FIELDS = tuple(f.name for f in fields(StockThresholds))


def validate_thresholds(thresholds: StockThresholds) -> None:
    """Raise ValidationError listing every offending field."""
    bad = []
    for name in THRESHOLD_FIELDS:
        value = getattr(thresholds, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            bad.append(name)
    if "pack_size" not in bad and thresholds.pack_size < 1:
        bad.append("pack_size")
    if not bad and thresholds.reorder_point > 0 and thresholds.min_absolute > thresholds.reorder_point:
        bad.extend(["min_absolute", "reorder_point"])
    if bad:
        raise ValidationError(f"Invalid thresholds: {', '.join(bad)}", fields=bad)


def _clean(partial: dict[str, Any]) -> dict[str, Any]:
    unknown = [k for k in partial if k not in THRESHOLD_FIELDS]
    if unknown:
        raise ValidationError(f"Unknown threshold fields: {', '.join(unknown)}", fields=unknown)
    return {k: v for k, v in partial.items() if v is not None}


class ThresholdRegistry:
    def __init__(self, store: JsonBlobStore):
        self.store = store

    def _parse(self, key: str, data: Any, base: StockThresholds) -> StockThresholds:
        if not isinstance(data, dict):
            return base
        try:
            values = {k: int(v) for k, v in data.items() if k in THRESHOLD_FIELDS and v is not None}
        except (TypeError, ValueError) as e:
            logger.warning(f"Recovered from corrupted blob, using defaults: {PersistenceCorruptionError(key, str(e))}")
            return base
        return base.merged(**values)

    def get_default_thresholds(self) -> StockThresholds:
        data = self.store.load(DEFAULT_THRESHOLDS_KEY, dict)
        return self._parse(DEFAULT_THRESHOLDS_KEY, data, DEFAULT_THRESHOLDS)

    def set_default_thresholds(self, **partial) -> StockThresholds:
        merged = self.get_default_thresholds().merged(**_clean(partial))
        validate_thresholds(merged)
        self.store.save(DEFAULT_THRESHOLDS_KEY, merged.to_dict())
        logger.info(f"Default thresholds updated: {merged.to_dict()}")
        return merged

    def get_thresholds(self, item_id: str) -> StockThresholds:
        """Thresholds for an item, or the global default when none are stored."""
        entry = self.store.load(THRESHOLDS_KEY, dict).get(item_id)
        return self._parse(THRESHOLDS_KEY, entry, self.get_default_thresholds())

    def set_thresholds(self, item_id: str, **partial) -> StockThresholds:
        """Merge ``partial`` over the item's current thresholds, validate and persist."""
        merged = self.get_thresholds(item_id).merged(**_clean(partial))
        validate_thresholds(merged)
        all_thresholds = self.store.load(THRESHOLDS_KEY, dict)
        all_thresholds[item_id] = merged.to_dict()
        self.store.save(THRESHOLDS_KEY, all_thresholds)
        logger.info(f"Thresholds for {item_id} updated: {merged.to_dict()}")
        return merged

    def list_thresholds(self) -> dict[str, StockThresholds]:
        return {item_id: self.get_thresholds(item_id) for item_id in self.store.load(THRESHOLDS_KEY, dict)}

    def get_location_override(self, item_id: str, location_id: str) -> dict[str, int]:
        overrides = self.store.load(OVERRIDES_KEY, dict)
        entry = overrides.get(item_id, {})
        override = entry.get(location_id) if isinstance(entry, dict) else None
        return dict(override) if isinstance(override, dict) else {}

    def set_location_override(self, item_id: str, location_id: str, **partial) -> StockThresholds:
        """Store a per-location override and return the thresholds it resolves to."""
        cleaned = _clean(partial)
        overrides = self.store.load(OVERRIDES_KEY, dict)
        item_overrides = overrides.get(item_id) if isinstance(overrides.get(item_id), dict) else {}
        combined = {**self.get_location_override(item_id, location_id), **cleaned}
        resolved = self._apply_override(self.get_thresholds(item_id), combined)
        validate_thresholds(resolved)
        item_overrides[location_id] = combined
        overrides[item_id] = item_overrides
        self.store.save(OVERRIDES_KEY, overrides)
        return resolved

    def clear_location_override(self, item_id: str, location_id: str) -> bool:
        overrides = self.store.load(OVERRIDES_KEY, dict)
        item_overrides = overrides.get(item_id)
        if not isinstance(item_overrides, dict) or location_id not in item_overrides:
            return False
        del item_overrides[location_id]
        if not item_overrides:
            del overrides[item_id]
        self.store.save(OVERRIDES_KEY, overrides)
        return True

    def resolve(self, item_id: str, location_id: str | None = None) -> StockThresholds:
        """Item thresholds with the location override applied, if any."""
        thresholds = self.get_thresholds(item_id)
        if location_id is None:
            return thresholds
        override = self.get_location_override(item_id, location_id)
        if not override:
            return thresholds
        resolved = self._apply_override(thresholds, override)
        try:
            validate_thresholds(resolved)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid override for {item_id}@{location_id}: {e}")
            return thresholds
        return resolved

    def _apply_override(self, base: StockThresholds, override: dict[str, Any]) -> StockThresholds:
        parsed = self._parse(OVERRIDES_KEY, override, base)
        if "min_absolute" in override:
            # Narrow only
            parsed = parsed.merged(min_absolute=min(base.min_absolute, parsed.min_absolute))
        return parsed
