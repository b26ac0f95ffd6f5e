"""
Replenishment calculator.
Turns an evaluated stock state and its velocity into an auditable order recommendation.
"""

import logging
import math
from datetime import timedelta

from config.config import ReplenishmentConfig
from models.enums import ReplenishmentAction, Severity, Urgency
from models.sales import SalesVelocity
from models.state import ReplenishmentRecommendation, StockState
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


def round_up_to_pack(quantity: int, pack_size: int) -> int:
    pack_size = max(pack_size, 1)
    return math.ceil(quantity / pack_size) * pack_size


class ReplenishmentCalculator:
    """
    Computes how much to order so stock covers lead time plus a fixed buffer.

    The reasoning string lists every intermediate figure and is identical for identical
    inputs; the estimated arrival date depends on the clock and is kept out of it.
    """

    def __init__(self, clock: Clock | None = None, config: ReplenishmentConfig | None = None):
        self.clock = clock or SystemClock()
        self.config = config or ReplenishmentConfig()

    def recommend(self, state: StockState, velocity: SalesVelocity) -> ReplenishmentRecommendation:
        thresholds = state.thresholds
        available = state.available

        daily_consumption = velocity.ewma * 24
        coverage_days = thresholds.lead_time_days + self.config.buffer_days
        target_stock = math.ceil(daily_consumption * coverage_days) + thresholds.safety_stock

        needed = max(0, target_stock - available)
        if needed > 0:
            needed = round_up_to_pack(needed, thresholds.pack_size)
        # Never recommend less than one reorder batch
        if 0 < needed < thresholds.reorder_point:
            needed = round_up_to_pack(thresholds.reorder_point, thresholds.pack_size)

        if state.severity == Severity.CRITICAL:
            urgency = Urgency.IMMEDIATE
        elif state.severity == Severity.WARNING:
            urgency = Urgency.TODAY
        else:
            urgency = Urgency.PLANNED

        # Same-day purchase is impossible with a lead time, so move stock from a sibling first
        action = ReplenishmentAction.ORDER
        transfer_from = None
        if urgency == Urgency.IMMEDIATE and thresholds.lead_time_days > 0:
            action = ReplenishmentAction.TRANSFER
            if state.alternative_locations:
                transfer_from = state.alternative_locations[0].location_id

        reasoning = ". ".join(
            [
                f"Current stock: {available} units",
                f"EWMA velocity: {velocity.ewma:.1f} units/hour",
                f"Estimated daily consumption: {daily_consumption:.0f} units",
                f"Target coverage: {coverage_days} days",
                f"Target stock: {target_stock} units",
                f"Quantity to order: {needed} units (packs of {thresholds.pack_size})",
            ]
        )

        recommendation = ReplenishmentRecommendation(
            item_id=state.item_id,
            location_id=state.location_id,
            suggested_qty=needed,
            coverage_days=coverage_days,
            target_stock=target_stock,
            estimated_arrival=(self.clock.now() + timedelta(days=thresholds.lead_time_days)).date(),
            urgency=urgency,
            action=action,
            transfer_from_location_id=transfer_from,
            reasoning=reasoning,
        )
        logger.debug(f"Recommendation for {state.key}: {needed} units, {urgency.value}, {action.value}")
        return recommendation
