"""
Module: connectors.channels

Channel senders. Each implements ``async send(channel, recipient, message) -> bool``
for one or more channel kinds. Transport failures raise ``ChannelDeliveryError``;
the orchestrator records them without rolling back its cooldown bookkeeping.
"""

import asyncio
import logging
from typing import Protocol

import httpx

from models.enums import ChannelKind
from models.exceptions import ChannelDeliveryError
from models.notifications import Notification, Recipient

logger = logging.getLogger(__name__)


class ChannelSender(Protocol):
    async def send(self, channel: ChannelKind, recipient: Recipient | None, message: Notification) -> bool: ...


class InAppInbox:
    """
    In-app notification feed shown in the staff dashboard. Delivery is local and never fails.
    """

    def __init__(self, max_items: int = 500):
        self.max_items = max_items
        self.notifications: list[Notification] = []
        self._read: set[str] = set()

    async def send(self, channel: ChannelKind, recipient: Recipient | None, message: Notification) -> bool:
        self.notifications.append(message)
        if len(self.notifications) > self.max_items:
            dropped = self.notifications[: len(self.notifications) - self.max_items]
            self.notifications = self.notifications[-self.max_items :]
            self._read.difference_update(n.notification_id for n in dropped)
        return True

    def unread(self) -> list[Notification]:
        return [n for n in self.notifications if n.notification_id not in self._read]

    def mark_read(self, notification_id: str) -> bool:
        if any(n.notification_id == notification_id for n in self.notifications):
            self._read.add(notification_id)
            return True
        return False

    def latest(self, limit: int = 20) -> list[Notification]:
        return list(reversed(self.notifications[-limit:]))


class LoggingChannelSender:
    """
    Writes notifications to the log instead of an external provider. Used for
    push/email/SMS in development and demos; keeps what it sent for inspection.
    """

    def __init__(self, name: str = "log"):
        self.name = name
        self.sent: list[tuple[ChannelKind, str | None, Notification]] = []

    async def send(self, channel: ChannelKind, recipient: Recipient | None, message: Notification) -> bool:
        recipient_id = recipient.recipient_id if recipient else None
        self.sent.append((channel, recipient_id, message))
        logger.info(f"[{self.name}] {channel.value} -> {recipient_id or 'all'}: {message.title}")
        return True


class WebhookChannelSender:
    """
    Posts notifications as JSON to the recipient's webhook address (or a default URL).
    """

    def __init__(
        self,
        default_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ):
        self.default_url = default_url
        self._client = client
        self.timeout = timeout

    async def send(self, channel: ChannelKind, recipient: Recipient | None, message: Notification) -> bool:
        url = (recipient.address.get(ChannelKind.WEBHOOK) if recipient else None) or self.default_url
        recipient_id = recipient.recipient_id if recipient else None
        if not url:
            raise ChannelDeliveryError(channel.value, recipient_id, "no webhook URL configured")
        payload = message.model_dump(mode="json")
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChannelDeliveryError(
                channel.value, recipient_id, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChannelDeliveryError(channel.value, recipient_id, str(exc) or type(exc).__name__) from exc
        return True


class RetryingChannelSender:
    """
    Bounded retry around another sender. A ``False`` result or a
    ``ChannelDeliveryError`` is retried with exponential back-off; the last
    failure is raised as ``ChannelDeliveryError``.
    """

    def __init__(self, inner: ChannelSender, attempts: int = 3, backoff: float = 0.5):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.inner = inner
        self.attempts = attempts
        self.backoff = backoff

    async def send(self, channel: ChannelKind, recipient: Recipient | None, message: Notification) -> bool:
        recipient_id = recipient.recipient_id if recipient else None
        reason = "sender reported failure"
        for attempt in range(1, self.attempts + 1):
            try:
                if await self.inner.send(channel, recipient, message):
                    return True
                reason = "sender reported failure"
            except ChannelDeliveryError as exc:
                reason = exc.reason
            logger.warning(
                f"Delivery via {channel.value} to {recipient_id or 'all'} failed "
                f"(attempt {attempt}/{self.attempts}): {reason}"
            )
            if attempt < self.attempts:
                await asyncio.sleep(self.backoff * (2 ** (attempt - 1)))
        raise ChannelDeliveryError(channel.value, recipient_id, reason)
