"""
Data models for events published on the internal event bus.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import StockEventType


class StockEvent(BaseModel):
    """Event describing a change to stock or to the alert lifecycle."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: StockEventType
    item_id: str | None = None
    location_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)
