"""
Centralized Enum definitions for the project.
"""

from enum import Enum


class Severity(str, Enum):
    """Severity of an evaluated stock state, ordered from harmless to urgent"""

    OK = "ok"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def is_worse_than(self, other: "Severity | None") -> bool:
        """True when this severity is strictly worse than ``other`` (None counts as ok)."""
        return self.rank > (other.rank if other is not None else 0)


_SEVERITY_RANK = {
    Severity.OK: 0,
    Severity.INFO: 1,
    Severity.WARNING: 2,
    Severity.CRITICAL: 3,
}


class Trend(str, Enum):
    """Direction of recent sales velocity"""

    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"


class Urgency(str, Enum):
    """How soon a replenishment should happen"""

    IMMEDIATE = "immediate"
    TODAY = "today"
    PLANNED = "planned"


class ReplenishmentAction(str, Enum):
    """Recommended way to replenish a location"""

    ORDER = "order"  # Purchase from supplier
    TRANSFER = "transfer"  # Move stock from a sibling location


class MovementType(str, Enum):
    """Types of stock movements recorded in the ledger"""

    SALE = "sale"
    RESTOCK = "restock"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    ADJUSTMENT = "adjustment"  # Manual correction or absolute recount
    WASTE = "waste"  # Breakage, spillage


class ChannelKind(str, Enum):
    """Delivery channels for notifications"""

    IN_APP = "in_app"
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    WEBHOOK = "webhook"


class StaffRole(str, Enum):
    """Staff roles used for notification routing"""

    ADMIN = "admin"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    STOCKROOM = "stockroom"
    BARTENDER = "bartender"
    CASHIER = "cashier"


# Front-line roles never receive stock alerts, whatever the routing configuration says.
FRONT_LINE_ROLES = frozenset({StaffRole.CASHIER, StaffRole.BARTENDER})


class NotificationPhase(str, Enum):
    """Lifecycle of the per (item, location) notification memory"""

    IDLE = "idle"
    NOTIFIED = "notified"
    ACKNOWLEDGED = "acknowledged"
    ESCALATED = "escalated"


class StockEventType(str, Enum):
    """Types of events published on the internal event bus"""

    SALE_RECORDED = "sale.recorded"
    STOCK_RESTOCKED = "stock.restocked"
    STOCK_TRANSFERRED = "stock.transferred"
    STOCK_ADJUSTED = "stock.adjusted"
    STATE_EVALUATED = "state.evaluated"
    ALERT_NOTIFIED = "alert.notified"
    ALERT_ESCALATED = "alert.escalated"
    ALERT_ACKNOWLEDGED = "alert.acknowledged"
    DIGEST_SENT = "digest.sent"
