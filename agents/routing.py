"""
Recipient routing.
Decides who receives external notifications, on which channels, for which severities.
Front-line roles never receive stock alerts whatever the routing configuration says.
"""

from __future__ import annotations

import logging

from models.enums import FRONT_LINE_ROLES, ChannelKind, Severity, StaffRole
from models.notifications import Recipient

logger = logging.getLogger(__name__)

# Channels restricted to a subset of severities; unlisted channels carry any routed severity
CHANNEL_SEVERITIES: dict[ChannelKind, frozenset[Severity]] = {
    ChannelKind.SMS: frozenset({Severity.CRITICAL}),
    ChannelKind.EMAIL: frozenset({Severity.CRITICAL}),
}


def channel_allows(channel: ChannelKind, severity: Severity) -> bool:
    """Whether an external channel may carry an alert of this severity. In-app is never fanned out here."""
    if channel == ChannelKind.IN_APP:
        return False
    allowed = CHANNEL_SEVERITIES.get(channel)
    return allowed is None or severity in allowed


class RecipientRegistry:
    def __init__(self, recipients: list[Recipient] | None = None):
        self._recipients: dict[str, Recipient] = {}
        for recipient in recipients or []:
            self.register(recipient)

    def register(self, recipient: Recipient) -> bool:
        """Add or replace a recipient. Front-line roles are rejected."""
        if recipient.role in FRONT_LINE_ROLES:
            logger.warning(
                f"Rejected recipient {recipient.recipient_id}: role '{recipient.role.value}' cannot receive stock alerts"
            )
            return False
        self._recipients[recipient.recipient_id] = recipient
        return True

    def unregister(self, recipient_id: str) -> bool:
        return self._recipients.pop(recipient_id, None) is not None

    def get(self, recipient_id: str) -> Recipient | None:
        return self._recipients.get(recipient_id)

    def list(self, role: StaffRole | None = None) -> list[Recipient]:
        return [r for r in self._recipients.values() if role is None or r.role == role]

    @staticmethod
    def _serves(recipient: Recipient, location_id: str | None) -> bool:
        return recipient.location_ids is None or location_id is None or location_id in recipient.location_ids

    def eligible(
        self,
        severity: Severity,
        location_id: str | None,
        routes: dict[StaffRole, list[Severity]],
    ) -> list[Recipient]:
        """Recipients whose role is routed for ``severity`` and who cover ``location_id``."""
        return [
            r
            for r in self._recipients.values()
            if r.role not in FRONT_LINE_ROLES
            and severity in routes.get(r.role, [])
            and self._serves(r, location_id)
        ]

    def for_role(self, role: StaffRole, location_id: str | None = None) -> list[Recipient]:
        """Recipients holding ``role`` (escalation targets)."""
        if role in FRONT_LINE_ROLES:
            return []
        return [r for r in self._recipients.values() if r.role == role and self._serves(r, location_id)]
