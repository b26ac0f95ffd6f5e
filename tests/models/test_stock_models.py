from datetime import datetime, timedelta

from models.enums import MovementType, NotificationPhase, Severity
from models.inventory import InventoryRecord, StockMovement, StockThresholds
from models.notifications import NotificationState
from models.sales import SalesVelocity

NOW = datetime(2024, 1, 5, 20, 0)


def test_severity_ordering():
    assert Severity.CRITICAL.is_worse_than(Severity.WARNING)
    assert Severity.WARNING.is_worse_than(Severity.INFO)
    assert Severity.INFO.is_worse_than(None)
    assert not Severity.WARNING.is_worse_than(Severity.WARNING)
    assert not Severity.OK.is_worse_than(None)
    assert sorted(Severity, key=lambda s: s.rank) == [
        Severity.OK,
        Severity.INFO,
        Severity.WARNING,
        Severity.CRITICAL,
    ]


def test_thresholds_merged_ignores_none_and_unknown_fields():
    base = StockThresholds()
    merged = base.merged(reorder_point=30, pack_size=None, colour="red")
    assert merged.reorder_point == 30
    assert merged.pack_size == 6
    assert base.reorder_point == 20


def test_thresholds_from_dict_uses_base():
    base = StockThresholds(min_absolute=2, reorder_point=8)
    thresholds = StockThresholds.from_dict({"pack_size": 12}, base=base)
    assert thresholds == StockThresholds(min_absolute=2, reorder_point=8, pack_size=12)


def test_inventory_record_from_dict_defaults():
    record = InventoryRecord.from_dict({"location_id": "main", "item_id": "lager"})
    assert record.quantity == 0
    assert record.min_stock == 5
    assert record.max_stock == 100
    assert record.last_sale_at is None


def test_inventory_record_negative_and_percent():
    record = InventoryRecord("main", "lager", quantity=-2, min_stock=4)
    assert record.is_negative
    assert record.percent_of_min() == -50
    assert InventoryRecord("main", "lager", quantity=3, min_stock=0).percent_of_min() == 100.0


def test_stock_movement_serialises_enum_and_timestamp():
    movement = StockMovement(
        location_id="main",
        item_id="lager",
        movement_type=MovementType.SALE,
        quantity=-3,
        previous_stock=10,
        new_stock=7,
        created_at=NOW,
    )
    data = movement.to_dict()
    assert data["movement_type"] == "sale"
    assert data["created_at"] == "2024-01-05T20:00:00"
    assert movement.movement_id.startswith("mov-")
    assert StockMovement.from_dict(data) == movement


def test_sales_velocity_daily_consumption_and_empty():
    assert SalesVelocity(item_id="lager", ewma=2.5).daily_consumption == 60
    empty = SalesVelocity.empty("lager", location_id="main", peak_hour=21)
    assert empty.ewma == 0
    assert empty.peak_hour == 21
    assert empty.peak_inferred is False


def make_notification_state(**overrides) -> NotificationState:
    data = {
        "key": "lager@main",
        "item_id": "lager",
        "location_id": "main",
        "last_notified_at": NOW,
        "last_severity": Severity.CRITICAL,
        "cooldown_until": NOW + timedelta(minutes=15),
        "notification_count": 1,
    }
    data.update(overrides)
    return NotificationState(**data)


def test_notification_state_phases():
    state = make_notification_state()
    assert state.notification_id == "lager@main"
    assert state.phase == NotificationPhase.NOTIFIED

    escalated = make_notification_state(escalated_at=NOW + timedelta(minutes=10))
    assert escalated.phase == NotificationPhase.ESCALATED

    # A newer notification re-arms escalation
    renotified = make_notification_state(
        escalated_at=NOW, last_notified_at=NOW + timedelta(minutes=30)
    )
    assert renotified.phase == NotificationPhase.NOTIFIED

    acknowledged = make_notification_state(acknowledged=True, escalated_at=NOW + timedelta(minutes=10))
    assert acknowledged.phase == NotificationPhase.ACKNOWLEDGED


def test_notification_state_cooldown():
    state = make_notification_state()
    assert state.in_cooldown(NOW + timedelta(minutes=14))
    assert not state.in_cooldown(NOW + timedelta(minutes=15))


def test_notification_state_round_trip_through_json():
    state = make_notification_state(acknowledged=True, acknowledged_by="luis", acknowledged_at=NOW)
    restored = NotificationState.model_validate(state.model_dump(mode="json"))
    assert restored == state
