"""One poll cycle: query → fetch → extract → notify → mark consumed."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import structlog

from .errors import BodyDecodeError, MailboxError
from .extractor import extract_verification_code
from .failure_tracker import FailureTracker
from .interface import MailboxClient, NotificationSink
from .models import CodeFound, CycleReport
from .parser import to_inbound

logger = structlog.get_logger()

DEFAULT_MAX_RESULTS = 20


class IngestionPipeline:
    """Runs poll cycles against one mailbox.

    Only the query outcome feeds the :class:`FailureTracker`.  Errors on a
    single message are logged and counted, and the batch continues.
    Messages are handled one at a time in the order the mailbox returned
    them.
    """

    def __init__(
        self,
        mailbox: MailboxClient,
        sink: NotificationSink,
        tracker: FailureTracker,
        *,
        query: str | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self._mailbox = mailbox
        self._sink = sink
        self._tracker = tracker
        self._query = query or mailbox.default_query
        self._max_results = max_results
        self._last_report: CycleReport | None = None

    @property
    def query(self) -> str:
        return self._query

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    async def run_cycle(self, stop_event: asyncio.Event | None = None) -> CycleReport:
        """Execute one cycle and return its counters.

        When *stop_event* is set mid-batch, the cycle ends after the
        message in progress; the rest stay unread for the next run.
        """
        report = CycleReport()
        try:
            await self._run(report, stop_event)
        finally:
            report.finished_at = datetime.now(UTC)
            self._last_report = report
        return report

    async def _run(self, report: CycleReport, stop_event: asyncio.Event | None) -> None:
        try:
            message_ids = await self._mailbox.query_unread(self._query, self._max_results)
        except MailboxError as exc:
            report.query_error = str(exc)
            logger.error("mailbox_query_failed", error=str(exc))
            await self._tracker.record_failure(str(exc))
            return

        await self._tracker.record_success()

        report.messages_found = len(message_ids)
        if not message_ids:
            logger.debug("no_unread_messages")
            return

        logger.info("unread_messages_found", count=len(message_ids))
        for message_id in message_ids:
            if stop_event is not None and stop_event.is_set():
                report.interrupted = True
                logger.info("poll_cycle_interrupted", remaining_from=message_id)
                break
            await self._process_message(message_id, report)

    async def _process_message(self, message_id: str, report: CycleReport) -> None:
        log = logger.bind(message_id=message_id)
        try:
            await self._handle_message(message_id, report, log)
        except Exception:
            report.messages_failed += 1
            log.exception("message_processing_failed")

    async def _handle_message(
        self,
        message_id: str,
        report: CycleReport,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            fetched = await self._mailbox.fetch_message(message_id)
            message = to_inbound(fetched)
        except MailboxError as exc:
            report.messages_failed += 1
            log.warning("message_fetch_failed", error=str(exc))
            return
        except BodyDecodeError as exc:
            report.messages_failed += 1
            log.warning("message_decode_failed", error=str(exc))
            return

        result = extract_verification_code(message.subject, message.body)
        if result is None:
            report.messages_ignored += 1
            log.debug("message_not_relevant", subject=message.subject)
            return

        log.info(
            "verification_message_found",
            subject=message.subject,
            sender=message.sender,
            classification=result.classification.value,
        )

        if result.code:
            event = CodeFound(code=result.code, sender=message.sender, timestamp=message.timestamp)
            if await self._sink.deliver(event):
                report.codes_delivered += 1
            else:
                report.delivery_failures += 1
                log.warning("verification_code_not_delivered")

        try:
            await self._mailbox.mark_consumed(message_id)
        except MailboxError as exc:
            report.messages_failed += 1
            log.warning("mark_consumed_failed", error=str(exc))
            return
        report.messages_consumed += 1
        log.debug("message_marked_consumed")
