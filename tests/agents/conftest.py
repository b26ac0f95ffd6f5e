from datetime import date, datetime

import pytest

from models.enums import ReplenishmentAction, Severity, Urgency
from models.inventory import StockThresholds
from models.state import ReplenishmentRecommendation, StockState

URGENCY_BY_SEVERITY = {
    Severity.CRITICAL: Urgency.IMMEDIATE,
    Severity.WARNING: Urgency.TODAY,
    Severity.INFO: Urgency.PLANNED,
    Severity.OK: Urgency.PLANNED,
}


@pytest.fixture
def make_alert():
    """Factory for (StockState, ReplenishmentRecommendation) pairs."""

    def _make(
        item_id: str = "lager",
        location_id: str = "main",
        severity: Severity = Severity.WARNING,
        available: int = 15,
        suggested_qty: int = 24,
        coverage_hours: int | None = None,
        now: datetime = datetime(2024, 1, 5, 20, 0),
    ) -> tuple[StockState, ReplenishmentRecommendation]:
        state = StockState(
            item_id=item_id,
            item_name=item_id.capitalize(),
            location_id=location_id,
            location_name=location_id.capitalize(),
            on_hand=available,
            available=available,
            thresholds=StockThresholds(),
            severity=severity,
            coverage_hours=coverage_hours,
            percent_of_reorder=round(available / 20 * 100),
            last_updated=now,
        )
        recommendation = ReplenishmentRecommendation(
            item_id=item_id,
            location_id=location_id,
            suggested_qty=suggested_qty,
            coverage_days=4,
            target_stock=suggested_qty + available,
            estimated_arrival=date(2024, 1, 6),
            urgency=URGENCY_BY_SEVERITY[severity],
            action=ReplenishmentAction.ORDER,
            reasoning=f"Current stock: {available} units. Quantity to order: {suggested_qty} units (packs of 6)",
        )
        return state, recommendation

    return _make
