"""
Alert aggregation.
Debounced per-location buffer: bursts of non-critical alerts at one location are held
for a rolling window and dispatched together; a critical alert flushes immediately.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from models.enums import Severity
from models.notifications import PendingAlert
from utils.clock import Clock

logger = logging.getLogger(__name__)

# Receives the flushed alerts of one location; one alert means "not aggregated"
DispatchCallback = Callable[[list[PendingAlert]], Awaitable[Any]]


class AlertAggregator:
    def __init__(self, clock: Clock, dispatch: DispatchCallback, window_seconds: int = 30):
        self.clock = clock
        self.dispatch = dispatch
        self.window = timedelta(seconds=window_seconds)
        self._buffers: dict[str, list[PendingAlert]] = {}
        self._deadlines: dict[str, datetime] = {}

    async def add(self, alert: PendingAlert) -> Any:
        """
        Buffer an alert. Each arrival resets its location's deadline.
        A critical alert flushes the location's whole buffer, itself included, and the
        dispatch result is returned; otherwise returns None.
        """
        location_id = alert.location_id
        self._buffers.setdefault(location_id, []).append(alert)
        if alert.severity == Severity.CRITICAL:
            logger.debug(f"Critical alert for {alert.state.key}, flushing {location_id} now")
            return await self._flush(location_id)
        self._deadlines[location_id] = self.clock.now() + self.window
        return None

    async def flush_due(self) -> int:
        """Flush every location whose window has elapsed. Returns the number of flushed locations."""
        now = self.clock.now()
        due = [loc for loc, deadline in self._deadlines.items() if deadline <= now]
        for location_id in due:
            await self._flush(location_id)
        return len(due)

    async def flush_all(self) -> int:
        locations = list(self._buffers)
        for location_id in locations:
            await self._flush(location_id)
        return len(locations)

    def pending(self, location_id: str | None = None) -> int:
        if location_id is not None:
            return len(self._buffers.get(location_id, []))
        return sum(len(b) for b in self._buffers.values())

    def deadline(self, location_id: str) -> datetime | None:
        return self._deadlines.get(location_id)

    async def _flush(self, location_id: str) -> Any:
        # Detach before awaiting so arrivals during dispatch start a new window
        alerts = self._buffers.pop(location_id, [])
        self._deadlines.pop(location_id, None)
        if not alerts:
            return None
        logger.debug(f"Flushing {len(alerts)} alert(s) for location {location_id}")
        return await self.dispatch(alerts)
