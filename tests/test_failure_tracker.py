"""Tests for mailcode_relay.failure_tracker."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from mailcode_relay.failure_tracker import FailureTracker
from mailcode_relay.models import IngestionDegraded, IngestionRecovered

from tests.conftest import RecordingSink


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def tracker(sink: RecordingSink, clock: FakeClock) -> FailureTracker:
    return FailureTracker(sink, clock=clock)


class TestFailureTracker:
    def test_initial_state_is_up(self, tracker: FailureTracker):
        state = tracker.state
        assert state.down is False
        assert state.last_error is None
        assert state.failed_at is None

    @pytest.mark.asyncio
    async def test_success_when_up_emits_nothing(self, tracker: FailureTracker, sink: RecordingSink):
        assert await tracker.record_success() is None
        assert await tracker.record_success() is None
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_first_failure_emits_degraded(
        self, tracker: FailureTracker, sink: RecordingSink, clock: FakeClock
    ):
        event = await tracker.record_failure("connection refused")
        assert isinstance(event, IngestionDegraded)
        assert event.error_text == "connection refused"
        assert event.since == clock.now
        assert sink.events == [event]

        state = tracker.state
        assert state.down is True
        assert state.last_error == "connection refused"
        assert state.failed_at == clock.now

    @pytest.mark.asyncio
    async def test_repeated_failures_alert_once(self, tracker: FailureTracker, sink: RecordingSink):
        await tracker.record_failure("first")
        assert await tracker.record_failure("second") is None
        assert await tracker.record_failure("third") is None
        assert len(sink.events) == 1
        # the first error is the one kept
        assert tracker.state.last_error == "first"

    @pytest.mark.asyncio
    async def test_failures_then_success_emit_one_of_each(
        self, tracker: FailureTracker, sink: RecordingSink, clock: FakeClock
    ):
        for _ in range(3):
            await tracker.record_failure("timeout")
            clock.advance(10)
        await tracker.record_success()

        assert [type(e) for e in sink.events] == [IngestionDegraded, IngestionRecovered]
        recovered = sink.events[1]
        assert isinstance(recovered, IngestionRecovered)
        assert recovered.down_duration_seconds == pytest.approx(30.0)
        assert recovered.since == datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
        assert recovered.recovered_at == clock.now

    @pytest.mark.asyncio
    async def test_recovery_clears_state(self, tracker: FailureTracker):
        await tracker.record_failure("boom")
        await tracker.record_success()
        state = tracker.state
        assert state.down is False
        assert state.last_error is None
        assert state.failed_at is None

    @pytest.mark.asyncio
    async def test_second_outage_alerts_again(
        self, tracker: FailureTracker, sink: RecordingSink, clock: FakeClock
    ):
        await tracker.record_failure("a")
        clock.advance(5)
        await tracker.record_success()
        await tracker.record_success()
        clock.advance(5)
        await tracker.record_failure("b")
        clock.advance(7)
        await tracker.record_success()

        kinds = [e.kind for e in sink.events]
        assert kinds == [
            "ingestion_degraded",
            "ingestion_recovered",
            "ingestion_degraded",
            "ingestion_recovered",
        ]
        assert sink.events[3].down_duration_seconds == pytest.approx(7.0)

    @pytest.mark.asyncio
    async def test_alert_count_matches_transitions(
        self, tracker: FailureTracker, sink: RecordingSink
    ):
        sequence = [False, False, True, True, False, True, False, False, False, True]
        transitions_down = transitions_up = 0
        down = False
        for ok in sequence:
            if ok:
                await tracker.record_success()
                if down:
                    transitions_up += 1
                down = False
            else:
                await tracker.record_failure("err")
                if not down:
                    transitions_down += 1
                down = True

        degraded = [e for e in sink.events if isinstance(e, IngestionDegraded)]
        recovered = [e for e in sink.events if isinstance(e, IngestionRecovered)]
        assert len(degraded) == transitions_down == 3
        assert len(recovered) == transitions_up == 3

    @pytest.mark.asyncio
    async def test_state_is_a_copy(self, tracker: FailureTracker):
        state = tracker.state
        state.down = True
        assert tracker.is_down is False

    @pytest.mark.asyncio
    async def test_undelivered_alert_still_transitions(self, clock: FakeClock):
        sink = RecordingSink(accept=False)
        tracker = FailureTracker(sink, clock=clock)
        await tracker.record_failure("x")
        assert tracker.is_down
        await tracker.record_success()
        assert not tracker.is_down
        assert len(sink.events) == 2
