"""
Notification orchestrator.
Decides whether, how and to whom a stock alert is sent: cooldowns, quiet hours,
per-location aggregation, escalation of unacknowledged critical alerts and the
periodic digest. Per (item, location) memory lives in NotificationState.
"""

import asyncio
import logging
from datetime import datetime, timedelta

import pydantic

from agents.aggregation import AlertAggregator
from agents.composer import AlertComposer, AlertPair, TemplateAlertComposer
from agents.routing import RecipientRegistry, channel_allows
from config.config import OrchestratorConfig
from connectors.channels import ChannelSender, InAppInbox
from models.enums import ChannelKind, Severity, StockEventType
from models.events import StockEvent
from models.notifications import (
    ComposedAlert,
    Notification,
    NotificationState,
    OrchestrationResult,
    PendingAlert,
    Recipient,
)
from models.sales import SalesVelocity
from models.state import ReplenishmentRecommendation, StockState
from utils.clock import Clock, SystemClock
from utils.event_bus import EventBus
from utils.locks import KeyedLock
from utils.persistence import JsonBlobStore

logger = logging.getLogger(__name__)

CONFIG_KEY = "orchestrator_config"
STATES_KEY = "notification_states"
DIGEST_KEY = "last_digest"

Delivery = tuple[list[ChannelKind], list[ChannelKind]]


def _merge(target: Delivery, other: Delivery) -> Delivery:
    delivered = target[0] + [c for c in other[0] if c not in target[0]]
    failed = target[1] + [c for c in other[1] if c not in target[1]]
    return delivered, failed


class NotificationOrchestrator:
    """
    Alert gatekeeper and dispatcher.

    Gates run in order and short-circuit: enabled, severity, cooldown, quiet hours.
    The cooldown check and the state update happen under a per-key lock, before any
    composition or delivery, so a failed delivery still counts as notified.
    """

    def __init__(
        self,
        store: JsonBlobStore,
        clock: Clock | None = None,
        composer: AlertComposer | None = None,
        senders: dict[ChannelKind, ChannelSender] | None = None,
        recipients: RecipientRegistry | None = None,
        config: OrchestratorConfig | None = None,
        templates: TemplateAlertComposer | None = None,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.templates = templates or TemplateAlertComposer()
        self.composer = composer or self.templates
        self.senders: dict[ChannelKind, ChannelSender] = dict(senders or {})
        if ChannelKind.IN_APP not in self.senders:
            self.senders[ChannelKind.IN_APP] = InAppInbox()
        self.recipients = recipients or RecipientRegistry()
        self.config = config or self.load_config()
        self.event_bus = event_bus
        self.aggregator = AlertAggregator(
            self.clock, self._dispatch, window_seconds=self.config.aggregation_window_seconds
        )
        self._locks = KeyedLock()
        self._digest_lock = asyncio.Lock()
        self._escalation_lock = asyncio.Lock()

    # --- Configuration ---------------------------------------------------

    def load_config(self) -> OrchestratorConfig:
        return OrchestratorConfig.from_dict(self.store.load(CONFIG_KEY, dict))

    def save_config(self, config: OrchestratorConfig) -> None:
        self.store.save(CONFIG_KEY, config.to_dict())
        self.config = config
        self.aggregator.window = timedelta(seconds=config.aggregation_window_seconds)

    # --- Notification state ----------------------------------------------

    def _load_states(self) -> dict[str, NotificationState]:
        states = {}
        for key, data in self.store.load(STATES_KEY, dict).items():
            try:
                states[key] = NotificationState.model_validate(data)
            except pydantic.ValidationError as e:
                logger.warning(f"Skipping malformed notification state {key}: {e.error_count()} error(s)")
        return states

    def _save_state(self, state: NotificationState) -> None:
        raw = self.store.load(STATES_KEY, dict)
        raw[state.key] = state.model_dump(mode="json")
        self.store.save(STATES_KEY, raw)

    def get_state(self, key: str) -> NotificationState | None:
        return self._load_states().get(key)

    def list_states(self) -> list[NotificationState]:
        return list(self._load_states().values())

    def list_unacknowledged(self) -> list[NotificationState]:
        return [s for s in self._load_states().values() if not s.acknowledged]

    def _record_notification(self, state: StockState, now: datetime, existing: NotificationState | None) -> None:
        cooldown = timedelta(minutes=self.config.cooldown_for(state.severity))
        self._save_state(
            NotificationState(
                key=state.key,
                item_id=state.item_id,
                location_id=state.location_id,
                last_notified_at=now,
                last_severity=state.severity,
                cooldown_until=now + cooldown,
                notification_count=(existing.notification_count if existing else 0) + 1,
                acknowledged=False,
                escalated_at=existing.escalated_at if existing else None,
                escalation_count=existing.escalation_count if existing else 0,
            )
        )

    # --- Gates -----------------------------------------------------------

    def is_quiet_hours(self, now: datetime | None = None) -> bool:
        return self.config.quiet_hours.contains((now or self.clock.now()).hour)

    def _in_cooldown(self, existing: NotificationState | None, severity: Severity, now: datetime) -> bool:
        if existing is None or not existing.in_cooldown(now):
            return False
        # A strictly worse severity always breaks the cooldown
        return not severity.is_worse_than(existing.last_severity)

    def _quiet_blocks(self, severity: Severity, now: datetime) -> bool:
        if not self.is_quiet_hours(now):
            return False
        return not (severity == Severity.CRITICAL and self.config.quiet_hours.ignore_for_critical)

    # --- Orchestration ---------------------------------------------------

    async def orchestrate(
        self,
        state: StockState,
        recommendation: ReplenishmentRecommendation,
        velocity: SalesVelocity | None = None,
    ) -> OrchestrationResult:
        if not self.config.enabled:
            return OrchestrationResult(notified=False, reason="Orchestrator disabled")
        if state.severity == Severity.OK:
            return OrchestrationResult(notified=False, reason="No alert needed")

        async with self._locks.hold(state.key):
            now = self.clock.now()
            existing = self._load_states().get(state.key)
            if self._in_cooldown(existing, state.severity, now):
                logger.debug(f"{state.key} in cooldown until {existing.cooldown_until}")
                return OrchestrationResult(notified=False, reason="In cooldown")
            if self._quiet_blocks(state.severity, now):
                logger.debug(f"{state.key} suppressed by quiet hours")
                return OrchestrationResult(notified=False, reason="Quiet hours")
            self._record_notification(state, now, existing)

        composed = await self._compose(state, recommendation, velocity)

        delivered, failed = await self._deliver_in_app(
            Notification(
                channel=ChannelKind.IN_APP,
                severity=state.severity,
                title=composed.short_message,
                message=composed.full_message,
                location_id=state.location_id,
                item_ids=[state.item_id],
                created_at=now,
                data={"suggested_qty": recommendation.suggested_qty, "reasoning": recommendation.reasoning},
            )
        )

        pending = PendingAlert(state=state, recommendation=recommendation, composed=composed, received_at=now)
        buffered = False
        if self.config.aggregation_enabled:
            external = await self.aggregator.add(pending)
            if external is None:
                buffered = True
            else:
                delivered, failed = _merge((delivered, failed), external)
        else:
            delivered, failed = _merge((delivered, failed), await self._dispatch([pending]))

        logger.info(
            f"Alert {state.severity.value} for {state.key} notified via "
            f"{[c.value for c in delivered]}{' (external buffered)' if buffered else ''}"
        )
        await self._publish(
            StockEventType.ALERT_NOTIFIED,
            state.item_id,
            state.location_id,
            {"severity": state.severity.value, "buffered": buffered},
        )
        return OrchestrationResult(
            notified=True,
            channels=delivered,
            failed_channels=failed,
            buffered=buffered,
            composed=composed,
        )

    async def process_batch(self, pairs: list[AlertPair], velocities: dict[str, SalesVelocity] | None = None) -> tuple[int, int]:
        """Orchestrate several alerts in order. Returns (processed, notified)."""
        notified = 0
        for state, recommendation in pairs:
            velocity = (velocities or {}).get(state.key)
            result = await self.orchestrate(state, recommendation, velocity)
            if result.notified:
                notified += 1
        return len(pairs), notified

    async def _compose(
        self,
        state: StockState,
        recommendation: ReplenishmentRecommendation,
        velocity: SalesVelocity | None,
    ) -> ComposedAlert:
        if self.composer is self.templates:
            return self.templates.render(state, recommendation)
        try:
            return await asyncio.wait_for(
                self.composer.compose(state, recommendation, velocity),
                timeout=self.config.composer_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Composer timed out for {state.key}, using template")
        except Exception as e:
            logger.warning(f"Composer failed for {state.key}, using template: {e}")
        return self.templates.render(state, recommendation)

    # --- Delivery --------------------------------------------------------

    async def _send(self, channel: ChannelKind, recipient: Recipient | None, notification: Notification) -> bool:
        sender = self.senders.get(channel)
        if sender is None:
            logger.debug(f"No sender configured for {channel.value}")
            return False
        recipient_id = recipient.recipient_id if recipient else "all"
        try:
            if await sender.send(channel, recipient, notification):
                return True
            logger.warning(f"Delivery via {channel.value} to {recipient_id} reported failure")
        except Exception as e:
            logger.warning(f"Delivery via {channel.value} to {recipient_id} failed: {e}")
        return False

    async def _deliver_in_app(self, notification: Notification) -> Delivery:
        if await self._send(ChannelKind.IN_APP, None, notification):
            return [ChannelKind.IN_APP], []
        return [], [ChannelKind.IN_APP]

    async def _fan_out(
        self,
        recipients: list[Recipient],
        severity: Severity,
        title: str,
        message: str,
        location_id: str | None,
        item_ids: list[str],
        aggregated: bool = False,
        escalation: bool = False,
    ) -> Delivery:
        delivered: list[ChannelKind] = []
        failed: list[ChannelKind] = []
        for recipient in recipients:
            for channel in recipient.channels:
                if not channel_allows(channel, severity) or channel not in self.senders:
                    continue
                notification = Notification(
                    channel=channel,
                    recipient_id=recipient.recipient_id,
                    recipient_role=recipient.role,
                    severity=severity,
                    title=title,
                    message=message,
                    location_id=location_id,
                    item_ids=item_ids,
                    aggregated=aggregated,
                    escalation=escalation,
                    created_at=self.clock.now(),
                )
                if await self._send(channel, recipient, notification):
                    if channel not in delivered:
                        delivered.append(channel)
                elif channel not in failed:
                    failed.append(channel)
        return delivered, failed

    async def _dispatch(self, alerts: list[PendingAlert]) -> Delivery:
        """External fan-out of one location's flushed alerts."""
        if len(alerts) == 1:
            alert = alerts[0]
            return await self._fan_out(
                self.recipients.eligible(alert.severity, alert.location_id, self.config.routes),
                alert.severity,
                alert.composed.short_message,
                alert.composed.channel_message,
                alert.location_id,
                [alert.state.item_id],
            )
        worst = max(alerts, key=lambda a: a.severity.rank)
        title, body = self.templates.compose_aggregate(alerts)
        logger.info(f"Aggregated {len(alerts)} alerts for location {worst.location_id}")
        return await self._fan_out(
            self.recipients.eligible(worst.severity, worst.location_id, self.config.routes),
            worst.severity,
            title,
            body,
            worst.location_id,
            [a.state.item_id for a in alerts],
            aggregated=True,
        )

    async def flush_aggregation(self) -> int:
        """Scheduler hook: deliver every buffered location whose window has elapsed."""
        return await self.aggregator.flush_due()

    # --- Acknowledgment --------------------------------------------------

    async def acknowledge(self, notification_id: str, acknowledged_by: str | None = None) -> bool:
        """Stop escalation for one notification. The cooldown is left untouched."""
        async with self._locks.hold(notification_id):
            state = self._load_states().get(notification_id)
            if state is None:
                return False
            state.acknowledged = True
            state.acknowledged_at = self.clock.now()
            state.acknowledged_by = acknowledged_by
            self._save_state(state)
        logger.info(f"Alert {notification_id} acknowledged by {acknowledged_by or 'unknown'}")
        await self._publish(StockEventType.ALERT_ACKNOWLEDGED, state.item_id, state.location_id, {})
        return True

    async def acknowledge_item(self, item_id: str, acknowledged_by: str | None = None) -> int:
        """Acknowledge the item at every location. Returns how many states changed."""
        keys = [s.key for s in self._load_states().values() if s.item_id == item_id and not s.acknowledged]
        count = 0
        for key in keys:
            if await self.acknowledge(key, acknowledged_by):
                count += 1
        return count

    # --- Escalation ------------------------------------------------------

    def _due_for_escalation(self, state: NotificationState, now: datetime) -> bool:
        if state.acknowledged or state.last_severity != Severity.CRITICAL:
            return False
        if now - state.last_notified_at <= timedelta(minutes=self.config.escalation_after_minutes):
            return False
        # Once per notification episode
        return state.escalated_at is None or state.escalated_at < state.last_notified_at

    def check_for_escalation(self) -> list[NotificationState]:
        """Unacknowledged critical states past the escalation threshold and not yet escalated."""
        now = self.clock.now()
        return [s for s in self._load_states().values() if self._due_for_escalation(s, now)]

    async def run_escalation(self) -> list[NotificationState]:
        """Re-route due critical alerts to the escalation role. Never touches cooldowns."""
        if not self.config.escalation_enabled:
            return []
        escalated = []
        async with self._escalation_lock:
            for candidate in self.check_for_escalation():
                async with self._locks.hold(candidate.key):
                    now = self.clock.now()
                    state = self._load_states().get(candidate.key)
                    if state is None or not self._due_for_escalation(state, now):
                        continue
                    state.escalated_at = now
                    state.escalation_count += 1
                    self._save_state(state)
                escalated.append(state)
                await self._deliver_escalation(state, now)
        return escalated

    async def _deliver_escalation(self, state: NotificationState, now: datetime) -> None:
        minutes = int((now - state.last_notified_at).total_seconds() // 60)
        title, body = self.templates.compose_escalation(state, minutes)
        await self._deliver_in_app(
            Notification(
                channel=ChannelKind.IN_APP,
                severity=Severity.CRITICAL,
                title=title,
                message=body,
                location_id=state.location_id,
                item_ids=[state.item_id],
                escalation=True,
                created_at=now,
            )
        )
        targets = self.recipients.for_role(self.config.escalation_role, state.location_id)
        if not targets:
            logger.warning(f"No recipients with role '{self.config.escalation_role.value}' to escalate {state.key}")
        await self._fan_out(
            targets,
            Severity.CRITICAL,
            title,
            body,
            state.location_id,
            [state.item_id],
            escalation=True,
        )
        logger.info(f"Escalated {state.key} to {self.config.escalation_role.value} after {minutes} min")
        await self._publish(StockEventType.ALERT_ESCALATED, state.item_id, state.location_id, {"minutes": minutes})

    # --- Digest ----------------------------------------------------------

    def last_digest_at(self) -> datetime | None:
        value = self.store.load(DIGEST_KEY, dict).get("last_digest_at")
        try:
            return datetime.fromisoformat(value) if value else None
        except (TypeError, ValueError):
            return None

    async def send_digest(self, alerts: list[AlertPair]) -> bool:
        """One summary of all active alerts, at most once per digest interval."""
        if not self.config.digest_enabled or not alerts:
            return False
        async with self._digest_lock:
            now = self.clock.now()
            last = self.last_digest_at()
            if last is not None and now - last < timedelta(minutes=self.config.digest_interval_minutes):
                logger.debug("Digest skipped, interval not elapsed")
                return False
            self.store.save(DIGEST_KEY, {"last_digest_at": now.isoformat()})

        text = await self._compose_digest(alerts, now)
        worst = max((state.severity for state, _ in alerts), key=lambda s: s.rank)
        item_ids = sorted({state.item_id for state, _ in alerts})
        title = f"Stock summary: {len(alerts)} active alert(s)"
        delivered, _ = await self._deliver_in_app(
            Notification(
                channel=ChannelKind.IN_APP,
                severity=worst,
                title=title,
                message=text,
                item_ids=item_ids,
                digest=True,
                created_at=now,
            )
        )
        for recipient in self.recipients.eligible(worst, None, self.config.routes):
            for channel in recipient.channels:
                if channel in (ChannelKind.IN_APP, ChannelKind.SMS):
                    continue
                notification = Notification(
                    channel=channel,
                    recipient_id=recipient.recipient_id,
                    recipient_role=recipient.role,
                    severity=worst,
                    title=title,
                    message=text,
                    item_ids=item_ids,
                    digest=True,
                    created_at=now,
                )
                if await self._send(channel, recipient, notification) and channel not in delivered:
                    delivered.append(channel)
        logger.info(f"Digest sent with {len(alerts)} alert(s) via {[c.value for c in delivered]}")
        await self._publish(StockEventType.DIGEST_SENT, None, None, {"alerts": len(alerts)})
        return bool(delivered)

    async def _compose_digest(self, alerts: list[AlertPair], now: datetime) -> str:
        compose_digest = getattr(self.composer, "compose_digest", None)
        if compose_digest is None or self.composer is self.templates:
            return self.templates.compose_digest(alerts, now)
        try:
            return await asyncio.wait_for(compose_digest(alerts, now), timeout=self.config.composer_timeout_seconds)
        except Exception as e:
            logger.warning(f"Digest composer failed, using template: {e}")
            return self.templates.compose_digest(alerts, now)

    async def _publish(self, event_type: StockEventType, item_id, location_id, payload: dict) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            StockEvent(
                event_type=event_type,
                item_id=item_id,
                location_id=location_id,
                payload=payload,
                timestamp=self.clock.now(),
            )
        )
