import logging

import pytest

from agents.routing import RecipientRegistry, channel_allows
from config.config import OrchestratorConfig
from models.enums import ChannelKind, Severity, StaffRole
from models.notifications import Recipient


@pytest.fixture
def routes():
    return OrchestratorConfig().routes


@pytest.fixture
def registry():
    return RecipientRegistry(
        [
            Recipient(recipient_id="ana", role=StaffRole.STOCKROOM),
            Recipient(recipient_id="luis", role=StaffRole.MANAGER, channels=[ChannelKind.PUSH, ChannelKind.SMS]),
            Recipient(recipient_id="marta", role=StaffRole.SUPERVISOR, location_ids=["terrace"]),
        ]
    )


@pytest.mark.parametrize("role", [StaffRole.BARTENDER, StaffRole.CASHIER])
def test_front_line_roles_rejected(role, caplog):
    registry = RecipientRegistry()
    with caplog.at_level(logging.WARNING):
        assert registry.register(Recipient(recipient_id="pablo", role=role)) is False
    assert registry.get("pablo") is None
    assert "cannot receive stock alerts" in caplog.text


def test_front_line_roles_never_eligible_even_if_routed(registry):
    routes = {StaffRole.BARTENDER: [Severity.CRITICAL], StaffRole.MANAGER: [Severity.CRITICAL]}
    registry.register(Recipient(recipient_id="pablo", role=StaffRole.BARTENDER))
    assert [r.recipient_id for r in registry.eligible(Severity.CRITICAL, "main", routes)] == ["luis"]
    assert registry.for_role(StaffRole.BARTENDER) == []


def test_eligible_by_severity(registry, routes):
    assert {r.recipient_id for r in registry.eligible(Severity.WARNING, "main", routes)} == {"ana", "luis"}
    assert {r.recipient_id for r in registry.eligible(Severity.INFO, "main", routes)} == {"ana"}
    assert {r.recipient_id for r in registry.eligible(Severity.CRITICAL, "terrace", routes)} == {"ana", "luis", "marta"}


def test_eligible_respects_locations(registry, routes):
    assert "marta" not in {r.recipient_id for r in registry.eligible(Severity.CRITICAL, "main", routes)}


def test_channel_allows():
    assert channel_allows(ChannelKind.PUSH, Severity.INFO)
    assert channel_allows(ChannelKind.WEBHOOK, Severity.WARNING)
    assert channel_allows(ChannelKind.SMS, Severity.CRITICAL)
    assert not channel_allows(ChannelKind.SMS, Severity.WARNING)
    assert not channel_allows(ChannelKind.EMAIL, Severity.INFO)
    assert not channel_allows(ChannelKind.IN_APP, Severity.CRITICAL)


def test_list_get_unregister(registry):
    assert [r.recipient_id for r in registry.list(StaffRole.MANAGER)] == ["luis"]
    assert len(registry.list()) == 3
    assert registry.unregister("luis") is True
    assert registry.unregister("luis") is False
    assert registry.get("luis") is None


def test_for_role(registry):
    assert [r.recipient_id for r in registry.for_role(StaffRole.MANAGER, "main")] == ["luis"]
    assert registry.for_role(StaffRole.SUPERVISOR, "main") == []
    assert [r.recipient_id for r in registry.for_role(StaffRole.SUPERVISOR, "terrace")] == ["marta"]
