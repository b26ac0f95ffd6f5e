import logging

import pytest

from agents.thresholds import OVERRIDES_KEY, THRESHOLDS_KEY, ThresholdRegistry, validate_thresholds
from connectors.kv_store import InMemoryKeyValueStore
from models.exceptions import ValidationError
from models.inventory import StockThresholds
from utils.persistence import JsonBlobStore


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def registry(kv):
    return ThresholdRegistry(JsonBlobStore(kv))


def test_unknown_item_gets_global_default(registry):
    assert registry.get_thresholds("lager") == StockThresholds(5, 20, 10, 1, 6)


def test_set_thresholds_merges_partial(registry):
    registry.set_thresholds("lager", reorder_point=30)
    updated = registry.set_thresholds("lager", pack_size=12)
    assert updated.reorder_point == 30
    assert updated.pack_size == 12
    assert updated.min_absolute == 5
    assert registry.get_thresholds("lager") == updated
    assert set(registry.list_thresholds()) == {"lager"}


def test_default_thresholds_apply_to_items_without_entry(registry):
    registry.set_default_thresholds(reorder_point=40)
    assert registry.get_thresholds("ipa").reorder_point == 40


@pytest.mark.parametrize(
    "partial, bad_fields",
    [
        ({"min_absolute": -1}, ["min_absolute"]),
        ({"pack_size": 0}, ["pack_size"]),
        ({"lead_time_days": "two"}, ["lead_time_days"]),
        ({"safety_stock": True}, ["safety_stock"]),
        ({"min_absolute": 25}, ["min_absolute", "reorder_point"]),
    ],
)
def test_invalid_thresholds_rejected_and_not_persisted(registry, kv, partial, bad_fields):
    with pytest.raises(ValidationError) as excinfo:
        registry.set_thresholds("lager", **partial)
    assert excinfo.value.fields == bad_fields
    assert THRESHOLDS_KEY not in kv.raw


def test_unknown_field_rejected(registry):
    with pytest.raises(ValidationError) as excinfo:
        registry.set_thresholds("lager", colour="amber")
    assert excinfo.value.fields == ["colour"]


def test_min_above_reorder_allowed_when_reorder_is_zero():
    validate_thresholds(StockThresholds(min_absolute=5, reorder_point=0))


def test_override_can_only_narrow_minimum(registry):
    registry.set_thresholds("lager", min_absolute=5, reorder_point=20)

    registry.set_location_override("lager", "terrace", min_absolute=3)
    assert registry.resolve("lager", "terrace").min_absolute == 3

    resolved = registry.set_location_override("lager", "rooftop", min_absolute=8)
    assert resolved.min_absolute == 5
    assert registry.resolve("lager", "rooftop").min_absolute == 5


def test_override_replaces_other_fields(registry):
    registry.set_location_override("lager", "terrace", reorder_point=35, pack_size=24)
    resolved = registry.resolve("lager", "terrace")
    assert resolved.reorder_point == 35
    assert resolved.pack_size == 24
    assert registry.resolve("lager", "main").reorder_point == 20
    assert registry.resolve("lager").reorder_point == 20


def test_override_accumulates_and_clears(registry):
    registry.set_location_override("lager", "terrace", reorder_point=35)
    registry.set_location_override("lager", "terrace", pack_size=24)
    assert registry.get_location_override("lager", "terrace") == {"reorder_point": 35, "pack_size": 24}

    assert registry.clear_location_override("lager", "terrace") is True
    assert registry.clear_location_override("lager", "terrace") is False
    assert registry.resolve("lager", "terrace") == registry.get_thresholds("lager")


def test_invalid_override_rejected(registry):
    with pytest.raises(ValidationError):
        registry.set_location_override("lager", "terrace", reorder_point=-5)
    assert registry.get_location_override("lager", "terrace") == {}


def test_stored_override_made_invalid_is_ignored(registry, caplog):
    registry.set_location_override("lager", "terrace", reorder_point=8)
    # Raising the item minimum above the override's reorder point
    registry.set_thresholds("lager", min_absolute=10)
    with caplog.at_level(logging.WARNING):
        resolved = registry.resolve("lager", "terrace")
    assert resolved.reorder_point == 20
    assert "Ignoring invalid override" in caplog.text


def test_corrupted_blob_falls_back_to_default(kv, registry, caplog):
    kv.raw[THRESHOLDS_KEY] = "<<<"
    kv.raw[OVERRIDES_KEY] = "[]"
    with caplog.at_level(logging.WARNING):
        assert registry.get_thresholds("lager") == StockThresholds()
        assert registry.resolve("lager", "main") == StockThresholds()
    assert "Recovered from corrupted blob" in caplog.text


def test_corrupted_entry_value_falls_back_to_default(kv, registry, caplog):
    kv.raw[THRESHOLDS_KEY] = '{"lager": {"min_absolute": "lots"}}'
    with caplog.at_level(logging.WARNING):
        assert registry.get_thresholds("lager") == StockThresholds()
    assert "thresholds" in caplog.text
