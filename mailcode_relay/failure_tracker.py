"""Up/down state machine for the mailbox query path.

One degraded alert is sent on the transition into ``down`` and one
recovered alert on the transition back; repeated failures or successes
in the same state send nothing.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

import structlog

from .interface import NotificationSink
from .models import FailureState, IngestionDegraded, IngestionRecovered

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class FailureTracker:
    """Records query outcomes and emits degraded/recovered alerts.

    The state change happens before the alert is awaited, so a second
    caller on the same event loop always sees the new state.
    """

    def __init__(
        self,
        sink: NotificationSink,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._state = FailureState()

    @property
    def state(self) -> FailureState:
        return replace(self._state)

    @property
    def is_down(self) -> bool:
        return self._state.down

    async def record_failure(self, error_text: str) -> IngestionDegraded | None:
        if self._state.down:
            logger.debug("ingestion_still_down", error=error_text)
            return None

        now = self._clock()
        self._state = FailureState(down=True, last_error=error_text, failed_at=now)
        event = IngestionDegraded(error_text=error_text, since=now)
        logger.warning("ingestion_degraded", error=error_text, since=now.isoformat())
        await self._sink.deliver(event)
        return event

    async def record_success(self) -> IngestionRecovered | None:
        if not self._state.down:
            return None

        failed_at = self._state.failed_at
        assert failed_at is not None
        now = self._clock()
        down_seconds = round((now - failed_at).total_seconds(), 3)
        event = IngestionRecovered(
            since=failed_at,
            recovered_at=now,
            down_duration_seconds=down_seconds,
        )
        logger.info(
            "ingestion_recovered",
            down_seconds=down_seconds,
            last_error=self._state.last_error,
        )
        self._state = FailureState()
        await self._sink.deliver(event)
        return event
