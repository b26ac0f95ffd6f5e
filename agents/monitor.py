"""
Module: agents.monitor

StockMonitor wires the engine together: ledger and velocity writes publish events,
an in-order subscriber re-evaluates the affected (item, location) and hands non-ok
states to the orchestrator, and a scheduler runs the periodic safety check, digest,
escalation sweep and aggregation flush.
"""

import logging
from datetime import timedelta

from agents.composer import AlertComposer, AlertPair
from agents.evaluator import StockStateEvaluator
from agents.ledger import InventoryLedger
from agents.notifications import NotificationOrchestrator
from agents.replenishment import ReplenishmentCalculator
from agents.routing import RecipientRegistry
from agents.thresholds import ThresholdRegistry
from agents.velocity import SalesVelocityTracker
from config.config import (
    EvaluatorConfig,
    MonitorConfig,
    OrchestratorConfig,
    ReplenishmentConfig,
    VelocityConfig,
)
from connectors.channels import ChannelSender
from connectors.kv_store import InMemoryKeyValueStore
from models.enums import ChannelKind, Severity, StockEventType
from models.events import StockEvent
from models.inventory import MovementResult, StockThresholds, TransferResult
from models.notifications import NotificationState, OrchestrationResult
from models.state import EvaluationBatch, MonitorStatus, StockState
from utils.clock import Clock, SystemClock
from utils.event_bus import EventBus
from utils.persistence import JsonBlobStore, KeyValueStore
from utils.scheduler import Scheduler

logger = logging.getLogger(__name__)

CHECK_TASK = "stock_check"
DIGEST_TASK = "digest"
ESCALATION_TASK = "escalation"
AGGREGATION_TASK = "aggregation_flush"

STOCK_CHANGE_EVENTS = (
    StockEventType.SALE_RECORDED,
    StockEventType.STOCK_RESTOCKED,
    StockEventType.STOCK_TRANSFERRED,
    StockEventType.STOCK_ADJUSTED,
)


class StockMonitor:
    """
    Composition root. Build one per application with its store, clock, composer and
    senders; there is no module-level state.
    """

    def __init__(
        self,
        kv: KeyValueStore | None = None,
        clock: Clock | None = None,
        composer: AlertComposer | None = None,
        senders: dict[ChannelKind, ChannelSender] | None = None,
        recipients: RecipientRegistry | None = None,
        config: MonitorConfig | None = None,
        orchestrator_config: OrchestratorConfig | None = None,
        evaluator_config: EvaluatorConfig | None = None,
        velocity_config: VelocityConfig | None = None,
        replenishment_config: ReplenishmentConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self.clock = clock or SystemClock()
        self.config = config or MonitorConfig()
        self.store = JsonBlobStore(kv or InMemoryKeyValueStore())
        self.event_bus = event_bus or EventBus()

        self.tracker = SalesVelocityTracker(self.store, self.clock, velocity_config)
        self.ledger = InventoryLedger(self.store, self.clock)
        self.thresholds = ThresholdRegistry(self.store)
        self.calculator = ReplenishmentCalculator(self.clock, replenishment_config)
        self.evaluator = StockStateEvaluator(
            self.ledger,
            self.tracker,
            self.thresholds,
            clock=self.clock,
            config=evaluator_config,
            calculator=self.calculator,
        )
        self.orchestrator = NotificationOrchestrator(
            self.store,
            clock=self.clock,
            composer=composer,
            senders=senders,
            recipients=recipients,
            config=orchestrator_config,
            event_bus=self.event_bus,
        )
        self.scheduler = Scheduler(self.clock)

        self.running = False
        self.last_check_at = None
        self._current_alerts: list[AlertPair] = []
        self.last_results: dict[str, OrchestrationResult] = {}

        for event_type in STOCK_CHANGE_EVENTS:
            self.event_bus.subscribe(event_type, self._on_stock_changed)

    # --- Event-driven evaluation -----------------------------------------

    def _is_monitored(self, item_id: str) -> bool:
        if not self.config.monitored_categories:
            return True
        item = self.ledger.get_item(item_id)
        return item is not None and item.category_id in self.config.monitored_categories

    async def _on_stock_changed(self, event: StockEvent) -> None:
        locations = [event.location_id]
        if event.event_type == StockEventType.STOCK_TRANSFERRED:
            locations.append(event.payload.get("to_location_id"))
        for location_id in locations:
            if location_id and event.item_id:
                await self.evaluate_and_notify(event.item_id, location_id)

    async def evaluate_and_notify(self, item_id: str, location_id: str) -> OrchestrationResult | None:
        """Evaluate one (item, location) and orchestrate it when it needs attention."""
        state, velocity = self.evaluator.evaluate_with_velocity(location_id, item_id)
        await self.event_bus.publish(
            StockEvent(
                event_type=StockEventType.STATE_EVALUATED,
                item_id=item_id,
                location_id=location_id,
                payload={"severity": state.severity.value, "available": state.available},
                timestamp=self.clock.now(),
            )
        )
        if state.severity == Severity.OK or not self._is_monitored(item_id):
            return None
        recommendation = self.calculator.recommend(state, velocity)
        result = await self.orchestrator.orchestrate(state, recommendation, velocity)
        self.last_results[state.key] = result
        return result

    async def _publish(self, event_type: StockEventType, item_id: str, location_id: str, **payload) -> None:
        await self.event_bus.publish(
            StockEvent(
                event_type=event_type,
                item_id=item_id,
                location_id=location_id,
                payload=payload,
                timestamp=self.clock.now(),
            )
        )

    # --- Writes ----------------------------------------------------------

    def _resolve_location(self, location_id: str | None, register_id: str | None) -> str:
        if location_id:
            return location_id
        if register_id:
            mapped = self.ledger.location_for_register(register_id)
            if mapped:
                return mapped
            logger.warning(f"Register {register_id} is not assigned to a location")
        active = self.ledger.list_locations(active_only=True)
        return active[0].location_id if active else self.evaluator.config.default_location_id

    async def record_sale(
        self,
        item_id: str,
        quantity: int,
        location_id: str | None = None,
        order_id: str | None = None,
        register_id: str | None = None,
    ) -> MovementResult:
        location_id = self._resolve_location(location_id, register_id)
        result = self.ledger.record_sale(location_id, item_id, quantity, order_id=order_id)
        self.tracker.record_sale(item_id, quantity, location_id=location_id)
        await self._publish(StockEventType.SALE_RECORDED, item_id, location_id, quantity=quantity)
        return result

    async def record_restock(
        self,
        item_id: str,
        quantity: int,
        location_id: str | None = None,
        notes: str | None = None,
    ) -> MovementResult:
        location_id = self._resolve_location(location_id, None)
        result = self.ledger.record_restock(location_id, item_id, quantity, notes=notes)
        await self._publish(StockEventType.STOCK_RESTOCKED, item_id, location_id, quantity=quantity)
        return result

    async def transfer_stock(
        self,
        from_location_id: str,
        to_location_id: str,
        item_id: str,
        quantity: int,
        notes: str | None = None,
    ) -> TransferResult:
        result = self.ledger.transfer_stock(from_location_id, to_location_id, item_id, quantity, notes=notes)
        await self._publish(
            StockEventType.STOCK_TRANSFERRED,
            item_id,
            from_location_id,
            quantity=quantity,
            to_location_id=to_location_id,
        )
        return result

    async def set_stock(
        self,
        item_id: str,
        location_id: str,
        quantity: int,
        min_stock: int | None = None,
        max_stock: int | None = None,
    ) -> MovementResult:
        result = self.ledger.set_stock(location_id, item_id, quantity, min_stock=min_stock, max_stock=max_stock)
        await self._publish(StockEventType.STOCK_ADJUSTED, item_id, location_id, quantity=quantity)
        return result

    # --- Queries ---------------------------------------------------------

    def get_state(self, item_id: str, location_id: str) -> StockState:
        return self.evaluator.evaluate(location_id, item_id)

    def get_states(self, item_id: str) -> list[StockState]:
        return self.evaluator.evaluate_all_locations(item_id)

    def get_thresholds(self, item_id: str) -> StockThresholds:
        return self.thresholds.get_thresholds(item_id)

    def set_thresholds(self, item_id: str, **partial) -> StockThresholds:
        return self.thresholds.set_thresholds(item_id, **partial)

    def list_unacknowledged(self) -> list[NotificationState]:
        return self.orchestrator.list_unacknowledged()

    async def acknowledge(self, notification_id: str, acknowledged_by: str | None = None) -> bool:
        return await self.orchestrator.acknowledge(notification_id, acknowledged_by)

    def current_alerts(self) -> list[AlertPair]:
        """Alerts found by the last check."""
        return list(self._current_alerts)

    def status(self) -> MonitorStatus:
        severities = [state.severity for state, _ in self._current_alerts]
        next_check = self.scheduler.next_run_at(CHECK_TASK) if self.running else None
        return MonitorStatus(
            running=self.running,
            last_check_at=self.last_check_at,
            next_check_at=next_check,
            last_digest_at=self.orchestrator.last_digest_at(),
            alerts_count=len(severities),
            critical_count=severities.count(Severity.CRITICAL),
            warning_count=severities.count(Severity.WARNING),
            info_count=severities.count(Severity.INFO),
            unacknowledged_count=len(self.orchestrator.list_unacknowledged()),
        )

    # --- Periodic work ---------------------------------------------------

    async def force_check(self) -> EvaluationBatch:
        """Evaluate and orchestrate everything now, bypassing the timer."""
        batch = self.evaluator.evaluate_all(monitored_categories=self.config.monitored_categories)
        self.last_check_at = self.clock.now()
        self._current_alerts = batch.pairs()
        _, notified = await self.orchestrator.process_batch(self._current_alerts)
        logger.info(
            f"Stock check complete: {len(batch.alerts)} alerts, "
            f"{sum(1 for s in batch.alerts if s.severity == Severity.CRITICAL)} critical, {notified} notified"
        )
        return batch

    async def run_digest(self) -> bool:
        if not self._current_alerts:
            return False
        return await self.orchestrator.send_digest(self._current_alerts)

    async def run_escalation(self) -> list[NotificationState]:
        escalated = await self.orchestrator.run_escalation()
        if escalated:
            logger.info(f"Escalated {len(escalated)} unacknowledged critical alert(s)")
        return escalated

    def start(self) -> bool:
        """Register the periodic tasks. The first safety check runs on the next ``run_pending``."""
        if not self.orchestrator.config.enabled:
            logger.info("Orchestrator disabled, stock monitor not started")
            return False
        self.stop()
        self.scheduler.add_task(
            CHECK_TASK,
            timedelta(minutes=self.config.check_interval_minutes),
            self.force_check,
            run_immediately=True,
        )
        if self.orchestrator.config.digest_enabled:
            self.scheduler.add_task(DIGEST_TASK, timedelta(minutes=self.config.digest_interval_minutes), self.run_digest)
        self.scheduler.add_task(
            ESCALATION_TASK, timedelta(minutes=self.config.escalation_check_minutes), self.run_escalation
        )
        if self.orchestrator.config.aggregation_enabled:
            self.scheduler.add_task(
                AGGREGATION_TASK,
                timedelta(seconds=self.config.aggregation_poll_seconds),
                self.orchestrator.flush_aggregation,
            )
        self.running = True
        logger.info(f"Stock monitor started, check every {self.config.check_interval_minutes} min")
        return True

    def stop(self) -> None:
        for name in (CHECK_TASK, DIGEST_TASK, ESCALATION_TASK, AGGREGATION_TASK):
            self.scheduler.remove_task(name)
        if self.running:
            logger.info("Stock monitor stopped")
        self.running = False

    async def run_pending(self) -> list[str]:
        return await self.scheduler.run_pending()

    async def shutdown(self) -> None:
        """Stop the periodic tasks and deliver anything still buffered."""
        self.stop()
        await self.orchestrator.aggregator.flush_all()
