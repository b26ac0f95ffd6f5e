from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from agents.aggregation import AlertAggregator
from agents.composer import TemplateAlertComposer
from models.enums import Severity
from models.notifications import PendingAlert
from utils.clock import FakeClock


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 5, 20, 0))


@pytest.fixture
def dispatch():
    return AsyncMock(return_value="dispatched")


@pytest.fixture
def aggregator(clock, dispatch):
    return AlertAggregator(clock, dispatch, window_seconds=30)


@pytest.fixture
def pending(make_alert, clock):
    templates = TemplateAlertComposer()

    def _make(item_id: str, severity: Severity = Severity.WARNING, location_id: str = "main") -> PendingAlert:
        state, rec = make_alert(item_id, location_id=location_id, severity=severity)
        return PendingAlert(state=state, recommendation=rec, composed=templates.render(state, rec), received_at=clock.now())

    return _make


@pytest.mark.asyncio
async def test_warnings_within_window_are_dispatched_together(aggregator, dispatch, pending, clock):
    for item_id in ("lager", "ipa", "cider"):
        assert await aggregator.add(pending(item_id)) is None
        clock.advance(seconds=5)

    assert await aggregator.flush_due() == 0
    dispatch.assert_not_awaited()
    assert aggregator.pending("main") == 3

    clock.advance(seconds=30)
    assert await aggregator.flush_due() == 1
    dispatch.assert_awaited_once()
    assert [a.state.item_id for a in dispatch.await_args.args[0]] == ["lager", "ipa", "cider"]
    assert aggregator.pending() == 0


@pytest.mark.asyncio
async def test_each_arrival_resets_the_window(aggregator, pending, clock):
    await aggregator.add(pending("lager"))
    clock.advance(seconds=20)
    await aggregator.add(pending("ipa"))
    assert aggregator.deadline("main") == clock.now() + timedelta(seconds=30)

    clock.advance(seconds=20)
    assert await aggregator.flush_due() == 0
    clock.advance(seconds=10)
    assert await aggregator.flush_due() == 1


@pytest.mark.asyncio
async def test_critical_flushes_immediately_with_buffer(aggregator, dispatch, pending):
    await aggregator.add(pending("lager"))
    await aggregator.add(pending("ipa"))
    result = await aggregator.add(pending("cider", severity=Severity.CRITICAL))

    assert result == "dispatched"
    assert [a.state.item_id for a in dispatch.await_args.args[0]] == ["lager", "ipa", "cider"]
    assert aggregator.pending() == 0
    assert aggregator.deadline("main") is None


@pytest.mark.asyncio
async def test_lone_critical_is_dispatched_alone(aggregator, dispatch, pending):
    await aggregator.add(pending("lager", severity=Severity.CRITICAL))
    assert len(dispatch.await_args.args[0]) == 1


@pytest.mark.asyncio
async def test_locations_are_independent(aggregator, dispatch, pending, clock):
    await aggregator.add(pending("lager", location_id="main"))
    clock.advance(seconds=20)
    await aggregator.add(pending("lager", location_id="terrace"))
    await aggregator.add(pending("ipa", location_id="terrace", severity=Severity.CRITICAL))

    # Critical at the terrace leaves the main bar buffer alone
    assert aggregator.pending("main") == 1
    assert [a.location_id for a in dispatch.await_args.args[0]] == ["terrace", "terrace"]

    clock.advance(seconds=10)
    assert await aggregator.flush_due() == 1
    assert [a.location_id for a in dispatch.await_args.args[0]] == ["main"]


@pytest.mark.asyncio
async def test_flush_all(aggregator, dispatch, pending):
    await aggregator.add(pending("lager", location_id="main"))
    await aggregator.add(pending("lager", location_id="terrace"))
    assert await aggregator.flush_all() == 2
    assert dispatch.await_count == 2
    assert await aggregator.flush_all() == 0
