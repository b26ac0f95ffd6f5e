"""
End-to-end demo of the stock alert engine on a virtual clock.

Two bar stations sell beer through a busy night; the demo shows warnings being
aggregated, a critical alert flushing immediately, cooldowns, escalation of an
unacknowledged critical alert and the hourly digest.

Run with: python -m demos.stock_monitor_demo
Set OPENAI_API_KEY to have alerts worded by the LLM composer; templates are used otherwise.
STOCK_ALERT_LLM_ENABLED=0 forces the templates even when a key is set.
Set REDIS_URL to persist state in Redis instead of memory.
"""

import asyncio
import os
from datetime import datetime

from agents.composer import LLMAlertComposer
from agents.monitor import StockMonitor
from agents.routing import RecipientRegistry
from config.config import ComposerConfig, MonitorConfig
from connectors.channels import InAppInbox, LoggingChannelSender
from connectors.kv_store import InMemoryKeyValueStore, RedisKeyValueStore
from models.enums import ChannelKind, StaffRole
from models.notifications import Recipient
from utils.clock import FakeClock
from utils.env import env_flag
from utils.logger import get_logger

logger = get_logger("stock-monitor-demo")


def build_monitor(clock: FakeClock, inbox: InAppInbox, external: LoggingChannelSender) -> StockMonitor:
    kv = RedisKeyValueStore() if os.getenv("REDIS_URL") else InMemoryKeyValueStore()
    recipients = RecipientRegistry(
        [
            Recipient(recipient_id="ana", role=StaffRole.STOCKROOM, channels=[ChannelKind.PUSH]),
            Recipient(recipient_id="luis", role=StaffRole.MANAGER, channels=[ChannelKind.PUSH, ChannelKind.SMS]),
            # Rejected: front-line staff never receive stock alerts
            Recipient(recipient_id="pablo", role=StaffRole.BARTENDER, channels=[ChannelKind.PUSH]),
        ]
    )
    llm_enabled = env_flag("STOCK_ALERT_LLM_ENABLED", default=bool(os.getenv("OPENAI_API_KEY")))
    composer = LLMAlertComposer(ComposerConfig(enabled=llm_enabled))
    return StockMonitor(
        kv=kv,
        clock=clock,
        composer=composer,
        senders={
            ChannelKind.IN_APP: inbox,
            ChannelKind.PUSH: external,
            ChannelKind.SMS: external,
        },
        recipients=recipients,
        config=MonitorConfig(monitored_categories=["beer"]),
    )


async def main() -> None:
    clock = FakeClock(datetime(2024, 1, 5, 21, 0))  # Friday night
    inbox = InAppInbox()
    external = LoggingChannelSender("demo")
    monitor = build_monitor(clock, inbox, external)

    main_bar = monitor.ledger.create_location("Main bar", location_id="main")
    terrace = monitor.ledger.create_location("Terrace", location_id="terrace")
    monitor.ledger.register_item("lager", "Lager 33cl", category_id="beer")
    monitor.ledger.register_item("ipa", "IPA 33cl", category_id="beer")
    monitor.thresholds.set_thresholds("lager", min_absolute=6, reorder_point=24, pack_size=12, safety_stock=12)

    await monitor.set_stock("lager", main_bar.location_id, 40)
    await monitor.set_stock("ipa", main_bar.location_id, 30)
    await monitor.set_stock("lager", terrace.location_id, 60)
    monitor.start()
    await monitor.run_pending()

    logger.info("--- Rush hour: steady sales at the main bar ---")
    for _ in range(6):
        clock.advance(minutes=5)
        await monitor.record_sale("lager", 3, location_id=main_bar.location_id)
        await monitor.record_sale("ipa", 3, location_id=main_bar.location_id)
        await monitor.run_pending()

    state = monitor.get_state("lager", main_bar.location_id)
    logger.info(
        f"Lager @ main: {state.available} units, severity={state.severity.value}, "
        f"coverage={state.coverage_hours}h, alternatives={[a.location_id for a in state.alternative_locations]}"
    )

    logger.info("--- Lager runs out ---")
    clock.advance(minutes=2)
    await monitor.record_sale("lager", state.available, location_id=main_bar.location_id)

    logger.info("--- Nobody acknowledges; escalation sweep ---")
    clock.advance(minutes=11)
    await monitor.run_pending()
    for pending in monitor.list_unacknowledged():
        logger.info(f"Unacknowledged: {pending.key} ({pending.phase.value}, count={pending.notification_count})")

    logger.info("--- Stock moved from the terrace and alert acknowledged ---")
    await monitor.transfer_stock(terrace.location_id, main_bar.location_id, "lager", 24)
    await monitor.acknowledge(f"lager@{main_bar.location_id}", acknowledged_by="luis")

    clock.advance(minutes=60)
    await monitor.run_pending()

    status = monitor.status()
    logger.info(
        f"Status: running={status.running} alerts={status.alerts_count} critical={status.critical_count} "
        f"unacknowledged={status.unacknowledged_count}"
    )
    logger.info(f"In-app notifications: {len(inbox.notifications)}, external sends: {len(external.sent)}")
    for notification in inbox.latest(5):
        logger.info(f"  [{notification.severity.value}] {notification.title}")

    await monitor.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
