"""
Derived, never-persisted models: the evaluated stock state of an item at a location
and the replenishment recommendation built from it.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .enums import ReplenishmentAction, Severity, Trend, Urgency
from .inventory import StockThresholds


class AlternativeLocation(BaseModel):
    """Another active location holding stock of the same item"""

    location_id: str
    location_name: str
    stock: int


class StockState(BaseModel):
    """Point-in-time evaluation of an item at a location. Always recomputed fresh."""

    item_id: str
    item_name: str
    category_id: str | None = None
    location_id: str
    location_name: str

    on_hand: int
    reserved: int = 0
    in_transit: int = 0
    available: int  # on_hand - reserved + in_transit

    thresholds: StockThresholds

    severity: Severity
    coverage_hours: int | None = None  # None when there is no consumption
    percent_of_reorder: int

    ewma: float = 0.0
    trend: Trend = Trend.STABLE

    alternative_locations: list[AlternativeLocation] = Field(default_factory=list)

    last_updated: datetime
    last_sale_at: datetime | None = None

    @property
    def key(self) -> str:
        return f"{self.item_id}@{self.location_id}"


class ReplenishmentRecommendation(BaseModel):
    """Auditable order recommendation. ``reasoning`` is byte-identical for identical inputs."""

    item_id: str
    location_id: str
    suggested_qty: int
    coverage_days: int
    target_stock: int
    estimated_arrival: date
    urgency: Urgency
    action: ReplenishmentAction
    transfer_from_location_id: str | None = None
    reasoning: str


class EvaluationBatch(BaseModel):
    """Result of a sweep: every state, the non-ok ones sorted by severity, and their recommendations."""

    states: list[StockState] = Field(default_factory=list)
    alerts: list[StockState] = Field(default_factory=list)
    recommendations: list[ReplenishmentRecommendation] = Field(default_factory=list)

    def pairs(self) -> list[tuple[StockState, ReplenishmentRecommendation]]:
        by_key = {(r.item_id, r.location_id): r for r in self.recommendations}
        return [
            (state, by_key[(state.item_id, state.location_id)])
            for state in self.alerts
            if (state.item_id, state.location_id) in by_key
        ]


class MonitorStatus(BaseModel):
    """Snapshot of the stock monitor for dashboards"""

    running: bool
    last_check_at: datetime | None = None
    next_check_at: datetime | None = None
    last_digest_at: datetime | None = None
    alerts_count: int = 0
    critical_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    unacknowledged_count: int = 0
