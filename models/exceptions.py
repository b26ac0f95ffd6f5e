"""
Exception taxonomy for the stock alert engine.

Only boundary operations (transfers, persistence commits, threshold writes) raise
to callers. Corruption, composer and channel errors are recovered where they occur
and only logged.
"""


class StockAlertError(Exception):
    """Base class for every error raised by this project."""


class ValidationError(StockAlertError):
    """Thresholds or other configuration failed validation."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class InsufficientStockError(StockAlertError):
    """A transfer asked for more units than the source location holds."""

    def __init__(self, location_id: str, item_id: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock at location {location_id} for item {item_id}. "
            f"Available: {available}, requested: {requested}"
        )
        self.location_id = location_id
        self.item_id = item_id
        self.available = available
        self.requested = requested


class PersistenceCorruptionError(StockAlertError):
    """A stored blob could not be decoded into the expected structure."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupted data under key '{key}': {reason}")
        self.key = key
        self.reason = reason


class ComposerUnavailableError(StockAlertError):
    """The external text composer is disabled, unreachable or returned nothing."""


class ChannelDeliveryError(StockAlertError):
    """A channel sender failed to deliver a notification."""

    def __init__(self, channel: str, recipient_id: str | None, reason: str):
        super().__init__(f"Delivery via {channel} to {recipient_id or 'broadcast'} failed: {reason}")
        self.channel = channel
        self.recipient_id = recipient_id
        self.reason = reason
