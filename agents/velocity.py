"""
Sales velocity tracking.
Keeps a rolling 7-day log of sale events and derives windowed sums, an EWMA
hourly rate, a trend and peak usage times from it.
"""

import logging
from datetime import datetime, timedelta

import numpy as np

from config.config import VelocityConfig
from models.enums import Trend
from models.sales import SalesEvent, SalesVelocity
from utils.clock import Clock, SystemClock
from utils.persistence import JsonBlobStore

logger = logging.getLogger(__name__)

SALES_HISTORY_KEY = "sales_history"

# Windows in hours, finest first. EWMA folds from the last towards the first.
WINDOW_HOURS = (1, 2, 4, 24)
TREND_CHANGE_THRESHOLD = 0.2


class SalesVelocityTracker:
    """
    Rolling sales log with velocity derivation.

    Events older than the retention window are purged lazily whenever a sale is recorded;
    there is no background sweep for this store.
    """

    def __init__(
        self,
        store: JsonBlobStore,
        clock: Clock | None = None,
        config: VelocityConfig | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.config = config or VelocityConfig()

    def _load(self) -> list[SalesEvent]:
        raw = self.store.load(SALES_HISTORY_KEY, list, expected_type=list)
        events = []
        for entry in raw:
            try:
                events.append(SalesEvent.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed sale event {entry!r}: {e}")
        return events

    def _save(self, events: list[SalesEvent]) -> None:
        self.store.save(SALES_HISTORY_KEY, [e.to_dict() for e in events])

    def record_sale(
        self,
        item_id: str,
        quantity: int,
        location_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> SalesEvent:
        """Append a sale (negative quantity = return) and purge expired events."""
        now = self.clock.now()
        event = SalesEvent(
            item_id=item_id,
            quantity=quantity,
            timestamp=timestamp or now,
            location_id=location_id,
        )
        cutoff = now - timedelta(days=self.config.retention_days)
        events = [e for e in self._load() if e.timestamp > cutoff]
        events.append(event)
        self._save(events)
        logger.debug(f"Recorded sale of {quantity} x {item_id} at {location_id or 'unassigned'}")
        return event

    def history(self, item_id: str | None = None, location_id: str | None = None) -> list[SalesEvent]:
        """Retained events, optionally filtered by item and location."""
        events = self._load()
        if item_id is not None:
            events = [e for e in events if e.item_id == item_id]
        if location_id is not None:
            events = [e for e in events if e.location_id == location_id]
        return events

    def last_sale_at(self, item_id: str, location_id: str | None = None) -> datetime | None:
        events = self.history(item_id, location_id)
        if not events:
            return None
        return max(e.timestamp for e in events)

    def calculate_velocity(self, item_id: str, location_id: str | None = None) -> SalesVelocity:
        """
        Derive the velocity of an item, item-wide or at one location.

        Window sums use ``now - timestamp < window``. The EWMA starts from the 24h
        hourly rate and folds towards the 1h rate with smoothing factor ``alpha``.
        Trend compares the last 2h rate with the rate of the 22 hours before it and
        stays stable when there is no older activity.
        """
        events = self.history(item_id, location_id)
        if not events:
            return SalesVelocity.empty(
                item_id,
                location_id=location_id,
                peak_hour=self.config.default_peak_hour,
                peak_day_of_week=self.config.default_peak_day_of_week,
            )

        now = self.clock.now()
        sums = {
            hours: sum(e.quantity for e in events if now - e.timestamp < timedelta(hours=hours))
            for hours in WINDOW_HOURS
        }
        last_1h, last_2h, last_4h, last_24h = (sums[h] for h in WINDOW_HOURS)

        alpha = self.config.alpha
        hourly_rates = [sums[h] / h for h in WINDOW_HOURS]
        ewma = hourly_rates[-1]
        for rate in reversed(hourly_rates[:-1]):
            ewma = alpha * rate + (1 - alpha) * ewma

        peak_hour, peak_day, inferred = self._peaks(events)

        velocity = SalesVelocity(
            item_id=item_id,
            location_id=location_id,
            last_1h=last_1h,
            last_2h=last_2h,
            last_4h=last_4h,
            last_24h=last_24h,
            ewma=ewma,
            trend=self._trend(last_2h, last_24h),
            peak_hour=peak_hour,
            peak_day_of_week=peak_day,
            peak_inferred=inferred,
        )
        logger.debug(
            f"Velocity {item_id}@{location_id or '*'}: 1h={last_1h} 2h={last_2h} 4h={last_4h} "
            f"24h={last_24h} ewma={ewma:.2f} trend={velocity.trend.value}"
        )
        return velocity

    @staticmethod
    def _trend(last_2h: int, last_24h: int) -> Trend:
        recent_rate = last_2h / 2
        older_rate = (last_24h - last_2h) / 22
        if older_rate <= 0:
            return Trend.STABLE
        change = (recent_rate - older_rate) / older_rate
        if change > TREND_CHANGE_THRESHOLD:
            return Trend.RISING
        if change < -TREND_CHANGE_THRESHOLD:
            return Trend.FALLING
        return Trend.STABLE

    def _peaks(self, events: list[SalesEvent]) -> tuple[int, int, bool]:
        """
        Argmax of quantity per hour of day and, independently, per weekday. Each falls
        back to its configured default when none of its buckets is positive;
        ``inferred`` is True only when both were observed.
        """
        quantities = np.array([e.quantity for e in events], dtype=float)
        by_hour = np.bincount([e.timestamp.hour for e in events], weights=quantities, minlength=24)
        by_day = np.bincount([e.timestamp.weekday() for e in events], weights=quantities, minlength=7)

        hour_inferred = by_hour.max() > 0
        day_inferred = by_day.max() > 0
        peak_hour = int(np.argmax(by_hour)) if hour_inferred else self.config.default_peak_hour
        peak_day = int(np.argmax(by_day)) if day_inferred else self.config.default_peak_day_of_week
        return peak_hour, peak_day, bool(hour_inferred and day_inferred)
