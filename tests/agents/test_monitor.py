import logging
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from agents.monitor import AGGREGATION_TASK, CHECK_TASK, DIGEST_TASK, ESCALATION_TASK, StockMonitor
from agents.routing import RecipientRegistry
from config.config import MonitorConfig, OrchestratorConfig
from connectors.channels import InAppInbox, LoggingChannelSender
from connectors.kv_store import InMemoryKeyValueStore
from models.enums import ChannelKind, NotificationPhase, Severity, StaffRole, StockEventType
from models.exceptions import InsufficientStockError
from models.notifications import Recipient
from utils.clock import FakeClock

START = datetime(2024, 1, 5, 20, 0)


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def inbox():
    return InAppInbox()


@pytest.fixture
def push():
    return LoggingChannelSender("push")


@pytest.fixture
def make_monitor(clock, inbox, push):
    def _make(config: MonitorConfig | None = None, **orchestrator_config) -> StockMonitor:
        orchestrator_config.setdefault("aggregation_enabled", False)
        monitor = StockMonitor(
            kv=InMemoryKeyValueStore(),
            clock=clock,
            senders={ChannelKind.IN_APP: inbox, ChannelKind.PUSH: push},
            recipients=RecipientRegistry(
                [
                    Recipient(recipient_id="ana", role=StaffRole.STOCKROOM),
                    Recipient(recipient_id="luis", role=StaffRole.MANAGER),
                ]
            ),
            config=config,
            orchestrator_config=OrchestratorConfig(**orchestrator_config),
        )
        monitor.ledger.create_location("Main bar", location_id="main")
        monitor.ledger.create_location("Terrace", location_id="terrace")
        monitor.ledger.register_item("lager", "Lager 33cl", category_id="beer")
        monitor.ledger.register_item("crisps", "Crisps", category_id="snacks")
        return monitor

    return _make


@pytest.fixture
def monitor(make_monitor):
    return make_monitor()


# --- Event-driven evaluation ---------------------------------------------


@pytest.mark.asyncio
async def test_sale_below_reorder_point_notifies(monitor, inbox):
    await monitor.set_stock("lager", "main", 25)
    assert monitor.last_results == {}

    result = await monitor.record_sale("lager", 8, location_id="main")
    assert result.new_stock == 17

    outcome = monitor.last_results["lager@main"]
    assert outcome.notified is True
    assert inbox.notifications[0].title == "[WARNING] Lager 33cl: 17 units"

    state = monitor.get_state("lager", "main")
    assert state.severity == Severity.WARNING
    assert state.ewma > 0
    assert state.coverage_hours == 5


@pytest.mark.asyncio
async def test_selling_out_is_critical(monitor):
    await monitor.set_stock("lager", "main", 6)
    await monitor.record_sale("lager", 6, location_id="main")
    assert monitor.get_state("lager", "main").severity == Severity.CRITICAL
    assert monitor.orchestrator.get_state("lager@main").last_severity == Severity.CRITICAL


@pytest.mark.asyncio
async def test_sale_through_register_uses_mapped_location(monitor):
    monitor.ledger.assign_register("pos-7", "terrace")
    await monitor.set_stock("lager", "terrace", 30)
    await monitor.record_sale("lager", 2, register_id="pos-7", order_id="order-9")

    assert monitor.ledger.get_stock("terrace", "lager") == 28
    assert monitor.ledger.movements("terrace", "lager")[-1].related_order_id == "order-9"
    assert monitor.tracker.history("lager", "terrace")[0].quantity == 2


@pytest.mark.asyncio
async def test_unknown_register_falls_back_to_first_location(monitor, caplog):
    await monitor.set_stock("lager", "main", 30)
    with caplog.at_level(logging.WARNING):
        await monitor.record_sale("lager", 1, register_id="pos-unknown")
    assert monitor.ledger.get_stock("main", "lager") == 29
    assert "pos-unknown is not assigned" in caplog.text


@pytest.mark.asyncio
async def test_restock_clears_alert_state(monitor):
    await monitor.set_stock("lager", "main", 2)
    await monitor.record_restock("lager", 30, location_id="main")
    assert monitor.get_state("lager", "main").severity == Severity.OK


@pytest.mark.asyncio
async def test_transfer_evaluates_both_locations(monitor):
    await monitor.set_stock("lager", "terrace", 40)
    await monitor.set_stock("lager", "main", 30)
    evaluated = []

    async def on_evaluated(event):
        evaluated.append((event.item_id, event.location_id))

    monitor.event_bus.subscribe(StockEventType.STATE_EVALUATED, on_evaluated)
    result = await monitor.transfer_stock("terrace", "main", "lager", 12)

    assert result.source.quantity == 28
    assert result.destination.quantity == 42
    assert evaluated == [("lager", "terrace"), ("lager", "main")]


@pytest.mark.asyncio
async def test_failed_transfer_publishes_nothing(monitor):
    await monitor.set_stock("lager", "terrace", 3)
    listener = AsyncMock()
    monitor.event_bus.subscribe(StockEventType.STOCK_TRANSFERRED, listener)

    with pytest.raises(InsufficientStockError):
        await monitor.transfer_stock("terrace", "main", "lager", 5)

    listener.assert_not_awaited()
    assert monitor.ledger.get_stock("terrace", "lager") == 3
    assert monitor.ledger.get_stock("main", "lager") == 0


@pytest.mark.asyncio
async def test_unmonitored_categories_are_not_notified(make_monitor, inbox):
    monitor = make_monitor(MonitorConfig(monitored_categories=["beer"]))
    await monitor.set_stock("crisps", "main", 1)

    assert monitor.get_state("crisps", "main").severity == Severity.CRITICAL
    assert "crisps@main" not in monitor.last_results
    assert inbox.notifications == []


@pytest.mark.asyncio
async def test_thresholds_through_monitor(monitor):
    monitor.set_thresholds("lager", reorder_point=10, min_absolute=2)
    assert monitor.get_thresholds("lager").reorder_point == 10
    await monitor.set_stock("lager", "main", 15)
    assert monitor.get_state("lager", "main").severity == Severity.OK


@pytest.mark.asyncio
async def test_get_states_covers_every_active_location(monitor):
    await monitor.set_stock("lager", "main", 3)
    await monitor.set_stock("lager", "terrace", 50)
    states = monitor.get_states("lager")
    assert [(s.location_id, s.severity) for s in states] == [("main", Severity.CRITICAL), ("terrace", Severity.OK)]
    assert states[0].alternative_locations[0].location_id == "terrace"


@pytest.mark.asyncio
async def test_acknowledge_through_monitor(monitor):
    await monitor.set_stock("lager", "main", 1)
    assert [s.key for s in monitor.list_unacknowledged()] == ["lager@main"]
    assert await monitor.acknowledge("lager@main", acknowledged_by="luis") is True
    assert monitor.list_unacknowledged() == []


# --- Periodic work -------------------------------------------------------


@pytest.mark.asyncio
async def test_force_check_and_status(monitor):
    await monitor.set_stock("lager", "main", 2)
    await monitor.set_stock("lager", "terrace", 12)
    await monitor.set_stock("crisps", "main", 40)

    batch = await monitor.force_check()
    assert [s.severity for s in batch.alerts] == [Severity.CRITICAL, Severity.WARNING]
    assert [state.key for state, _ in monitor.current_alerts()] == ["lager@main", "lager@terrace"]

    status = monitor.status()
    assert status.running is False
    assert status.last_check_at == START
    assert status.next_check_at is None
    assert (status.alerts_count, status.critical_count, status.warning_count, status.info_count) == (2, 1, 1, 0)
    assert status.unacknowledged_count == 2


@pytest.mark.asyncio
async def test_start_registers_tasks_and_runs_first_check(monitor, clock):
    assert monitor.start() is True
    assert set(monitor.scheduler.tasks) == {CHECK_TASK, DIGEST_TASK, ESCALATION_TASK}

    ran = await monitor.run_pending()
    assert ran == [CHECK_TASK]
    status = monitor.status()
    assert status.running is True
    assert status.last_check_at == START
    assert status.next_check_at == START + timedelta(minutes=15)

    monitor.stop()
    assert monitor.scheduler.tasks == {}
    assert monitor.status().running is False


def test_start_refused_when_orchestrator_disabled(make_monitor):
    monitor = make_monitor(enabled=False)
    assert monitor.start() is False
    assert monitor.scheduler.tasks == {}


def test_aggregation_task_registered_when_enabled(make_monitor):
    monitor = make_monitor(aggregation_enabled=True)
    monitor.start()
    assert AGGREGATION_TASK in monitor.scheduler.tasks


@pytest.mark.asyncio
async def test_scheduled_escalation(monitor, clock):
    monitor.start()
    await monitor.run_pending()
    await monitor.set_stock("lager", "main", 0)

    clock.advance(minutes=11)
    ran = await monitor.run_pending()
    assert ESCALATION_TASK in ran
    assert monitor.list_unacknowledged()[0].phase == NotificationPhase.ESCALATED


@pytest.mark.asyncio
async def test_digest_after_check(monitor, inbox):
    assert await monitor.run_digest() is False

    await monitor.set_stock("lager", "main", 2)
    await monitor.force_check()
    assert await monitor.run_digest() is True
    assert inbox.notifications[-1].digest is True
    assert await monitor.run_digest() is False
    assert monitor.status().last_digest_at == START


@pytest.mark.asyncio
async def test_shutdown_flushes_buffered_alerts(make_monitor, push):
    monitor = make_monitor(aggregation_enabled=True)
    monitor.start()
    await monitor.set_stock("lager", "main", 12)
    assert push.sent == []

    await monitor.shutdown()
    assert len(push.sent) == 2
    assert monitor.status().running is False
