"""
Stock state evaluator.
Combines ledger stock, thresholds and sales velocity into a point-in-time severity
classification. States are always recomputed from current data, never cached.
"""

import logging
from collections.abc import Callable

from agents.ledger import InventoryLedger
from agents.replenishment import ReplenishmentCalculator
from agents.thresholds import ThresholdRegistry
from agents.velocity import SalesVelocityTracker
from config.config import EvaluatorConfig
from models.enums import Severity, Trend
from models.inventory import StockThresholds
from models.sales import SalesVelocity
from models.state import AlternativeLocation, EvaluationBatch, StockState
from utils.clock import Clock, SystemClock
from utils.math_utils import round_half_up

logger = logging.getLogger(__name__)

# (location_id, item_id) -> units
QuantityProvider = Callable[[str, str], int]

INFO_PERCENT_OF_REORDER = 150


def coverage_hours(available: int, ewma: float) -> int | None:
    """Hours until stock runs out at the current rate; None without consumption."""
    if ewma > 0:
        return round_half_up(available / ewma)
    return None


def percent_of_reorder(available: int, reorder_point: int) -> int:
    if reorder_point > 0:
        return round_half_up(available / reorder_point * 100)
    return 100


def classify(
    available: int,
    thresholds: StockThresholds,
    coverage: int | None,
    percent: int,
    trend: Trend,
) -> Severity:
    """First matching rule wins."""
    if available <= 0:
        return Severity.CRITICAL
    if available < thresholds.min_absolute:
        return Severity.CRITICAL
    if coverage is not None and coverage < 1:
        return Severity.CRITICAL
    if available < thresholds.reorder_point:
        return Severity.WARNING
    if coverage is not None and coverage < 4:
        return Severity.WARNING
    if trend == Trend.RISING and percent < INFO_PERCENT_OF_REORDER:
        return Severity.INFO
    return Severity.OK


class StockStateEvaluator:
    """
    Evaluates (location, item) pairs.

    ``reserved_provider`` and ``in_transit_provider`` are extension points for
    reservation and purchase-order systems; both default to 0.
    """

    def __init__(
        self,
        ledger: InventoryLedger,
        tracker: SalesVelocityTracker,
        registry: ThresholdRegistry,
        clock: Clock | None = None,
        config: EvaluatorConfig | None = None,
        calculator: ReplenishmentCalculator | None = None,
        reserved_provider: QuantityProvider | None = None,
        in_transit_provider: QuantityProvider | None = None,
    ):
        self.ledger = ledger
        self.tracker = tracker
        self.registry = registry
        self.clock = clock or SystemClock()
        self.config = config or EvaluatorConfig()
        self.calculator = calculator or ReplenishmentCalculator(clock=self.clock)
        self.reserved_provider = reserved_provider
        self.in_transit_provider = in_transit_provider

    def velocity(self, item_id: str, location_id: str) -> SalesVelocity:
        if not self.config.velocity_enabled:
            return SalesVelocity.empty(
                item_id,
                location_id=location_id,
                peak_hour=self.tracker.config.default_peak_hour,
                peak_day_of_week=self.tracker.config.default_peak_day_of_week,
            )
        return self.tracker.calculate_velocity(item_id, location_id)

    def evaluate(
        self,
        location_id: str,
        item_id: str,
        thresholds: StockThresholds | None = None,
    ) -> StockState:
        return self.evaluate_with_velocity(location_id, item_id, thresholds)[0]

    def evaluate_with_velocity(
        self,
        location_id: str,
        item_id: str,
        thresholds: StockThresholds | None = None,
    ) -> tuple[StockState, SalesVelocity]:
        """Evaluate and also return the velocity the state was computed from."""
        thresholds = thresholds or self.registry.resolve(item_id, location_id)
        velocity = self.velocity(item_id, location_id)
        record = self.ledger.get_record(location_id, item_id)

        on_hand = record.quantity if record else 0
        reserved = self.reserved_provider(location_id, item_id) if self.reserved_provider else 0
        in_transit = self.in_transit_provider(location_id, item_id) if self.in_transit_provider else 0
        available = on_hand - reserved + in_transit

        coverage = coverage_hours(available, velocity.ewma)
        percent = percent_of_reorder(available, thresholds.reorder_point)
        severity = classify(available, thresholds, coverage, percent, velocity.trend)

        alternatives = [
            AlternativeLocation(location_id=loc.location_id, location_name=loc.name, stock=stock)
            for loc, stock in self.ledger.find_alternative_locations(
                location_id, item_id, self.config.alternative_min_stock
            )
        ]

        location = self.ledger.get_location(location_id)
        item = self.ledger.get_item(item_id)
        last_sale_at = self.tracker.last_sale_at(item_id, location_id) or (record.last_sale_at if record else None)

        state = StockState(
            item_id=item_id,
            item_name=item.name if item else item_id,
            category_id=item.category_id if item else None,
            location_id=location_id,
            location_name=location.name if location else location_id,
            on_hand=on_hand,
            reserved=reserved,
            in_transit=in_transit,
            available=available,
            thresholds=thresholds,
            severity=severity,
            coverage_hours=coverage,
            percent_of_reorder=percent,
            ewma=velocity.ewma,
            trend=velocity.trend,
            alternative_locations=alternatives,
            last_updated=self.clock.now(),
            last_sale_at=last_sale_at,
        )
        logger.debug(
            f"Evaluated {state.key}: available={available} severity={severity.value} "
            f"coverage={coverage} percent={percent}"
        )
        return state, velocity

    def evaluate_item(self, item_id: str) -> StockState:
        """Single-location evaluation at the first active location or the implicit default one."""
        active = self.ledger.list_locations(active_only=True)
        location_id = active[0].location_id if active else self.config.default_location_id
        return self.evaluate(location_id, item_id)

    def evaluate_all_locations(self, item_id: str) -> list[StockState]:
        return [self.evaluate(loc.location_id, item_id) for loc in self.ledger.list_locations(active_only=True)]

    def _monitored(self, item_id: str, item_ids, monitored_categories) -> bool:
        if item_ids is not None and item_id not in item_ids:
            return False
        if monitored_categories:
            item = self.ledger.get_item(item_id)
            return item is not None and item.category_id in monitored_categories
        return True

    def evaluate_all(
        self,
        item_ids: list[str] | None = None,
        monitored_categories: list[str] | None = None,
    ) -> EvaluationBatch:
        """
        Evaluate every item with a record at every active location.
        Alerts are the non-ok states, most severe first, each with a recommendation.
        """
        batch = EvaluationBatch()
        for location in self.ledger.list_locations(active_only=True):
            for record in self.ledger.records_for_location(location.location_id):
                if not self._monitored(record.item_id, item_ids, monitored_categories):
                    continue
                state, velocity = self.evaluate_with_velocity(location.location_id, record.item_id)
                batch.states.append(state)
                if state.severity != Severity.OK:
                    batch.alerts.append(state)
                    batch.recommendations.append(self.calculator.recommend(state, velocity))

        batch.alerts.sort(key=lambda s: s.severity.rank, reverse=True)
        order = {(s.item_id, s.location_id): i for i, s in enumerate(batch.alerts)}
        batch.recommendations.sort(key=lambda r: order[(r.item_id, r.location_id)])
        logger.info(
            f"Evaluated {len(batch.states)} stock states, {len(batch.alerts)} need attention"
        )
        return batch
