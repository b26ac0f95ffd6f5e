"""
Data models for notification routing, composition and anti-spam memory.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ChannelKind, NotificationPhase, Severity, StaffRole
from .state import ReplenishmentRecommendation, StockState


class NotificationState(BaseModel):
    """
    Anti-spam and escalation memory for one (item, location).
    Created on first alert; acknowledgment halts escalation but never clears the cooldown.
    """

    key: str
    item_id: str
    location_id: str
    last_notified_at: datetime
    last_severity: Severity
    cooldown_until: datetime
    notification_count: int = 0
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    escalated_at: datetime | None = None
    escalation_count: int = 0

    @property
    def notification_id(self) -> str:
        return self.key

    @property
    def phase(self) -> NotificationPhase:
        if self.acknowledged:
            return NotificationPhase.ACKNOWLEDGED
        if self.escalated_at is not None and self.escalated_at >= self.last_notified_at:
            return NotificationPhase.ESCALATED
        return NotificationPhase.NOTIFIED

    def in_cooldown(self, now: datetime) -> bool:
        return now < self.cooldown_until


class Recipient(BaseModel):
    """A staff member who can receive external notifications"""

    recipient_id: str
    role: StaffRole
    channels: list[ChannelKind] = Field(default_factory=lambda: [ChannelKind.PUSH])
    location_ids: list[str] | None = None  # None = every location
    address: dict[ChannelKind, str] = Field(default_factory=dict)  # email, phone, webhook URL, push token


class ComposedAlert(BaseModel):
    """Human-readable renderings of one alert"""

    short_message: str  # Push notification (~100 chars)
    full_message: str  # Alert panel
    channel_message: str  # Messaging apps / SMS
    explanation: str  # Answer to "why?"
    from_template: bool = False


class PendingAlert(BaseModel):
    """An alert that passed every gate and awaits external fan-out"""

    state: StockState
    recommendation: ReplenishmentRecommendation
    composed: ComposedAlert
    received_at: datetime

    @property
    def severity(self) -> Severity:
        return self.state.severity

    @property
    def location_id(self) -> str:
        return self.state.location_id


class Notification(BaseModel):
    """A rendered message addressed to one recipient on one channel"""

    notification_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    channel: ChannelKind
    recipient_id: str | None = None  # None for broadcast (in-app)
    recipient_role: StaffRole | None = None
    severity: Severity
    title: str
    message: str
    location_id: str | None = None
    item_ids: list[str] = Field(default_factory=list)
    aggregated: bool = False
    escalation: bool = False
    digest: bool = False
    created_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)


class OrchestrationResult(BaseModel):
    """Outcome of one orchestrate() call"""

    notified: bool
    reason: str | None = None
    channels: list[ChannelKind] = Field(default_factory=list)
    failed_channels: list[ChannelKind] = Field(default_factory=list)
    buffered: bool = False  # External fan-out deferred to the aggregation window
    composed: ComposedAlert | None = None
