"""IMAP mailbox client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import email.parser
import imaplib
from collections.abc import Callable
from typing import TypeVar

import structlog

from .config import ImapConfig
from .errors import ConfigurationError, MailboxError
from .interface import MailboxClient
from .models import FetchedMessage

logger = structlog.get_logger()

T = TypeVar("T")

# IMAP OR is binary and prefix: OR a (OR b (OR c d))
DEFAULT_IMAP_QUERY = (
    'UNSEEN OR FROM "openai" OR SUBJECT "verification" '
    'OR SUBJECT "verify" SUBJECT "confirm"'
)


class ImapMailboxClient(MailboxClient):
    """Async-friendly IMAP client.

    All blocking ``imaplib`` operations run via ``asyncio.to_thread()``
    and are serialized by a lock, since one IMAP connection cannot carry
    interleaved commands.  Messages are fetched with ``BODY.PEEK[]`` so
    that only :meth:`mark_consumed` sets ``\\Seen``.
    """

    default_query = DEFAULT_IMAP_QUERY

    def __init__(self, config: ImapConfig) -> None:
        if not config.host or not config.username or config.password is None:
            raise ConfigurationError("IMAP_HOST, IMAP_USERNAME and IMAP_PASSWORD are required")
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect eagerly; failures are retried on the next operation."""
        try:
            await self._call("connect", lambda: None)
        except MailboxError as exc:
            logger.warning("imap_initial_connect_failed", error=str(exc))

    async def stop(self) -> None:
        async with self._lock:
            if self._conn is not None:
                await asyncio.to_thread(self._disconnect_sync)
                self._conn = None
                logger.info("imap_disconnected")

    def _connect_sync(self) -> None:
        assert self._config.host is not None
        assert self._config.password is not None
        if self._config.use_ssl:
            conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                self._config.host,
                self._config.port,
                timeout=self._config.timeout_seconds,
            )
        else:
            conn = imaplib.IMAP4(
                self._config.host,
                self._config.port,
                timeout=self._config.timeout_seconds,
            )
        conn.login(self._config.username, self._config.password.get_secret_value())
        status, _ = conn.select(self._config.mailbox)
        if status != "OK":
            raise imaplib.IMAP4.error(f"cannot select mailbox {self._config.mailbox}")
        self._conn = conn
        logger.info("imap_connected", host=self._config.host, mailbox=self._config.mailbox)

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        """Run *fn* in a worker thread, connecting first if needed.

        Any protocol or socket error drops the connection and is raised as
        :class:`MailboxError`.
        """
        async with self._lock:
            try:
                if self._conn is None:
                    await asyncio.to_thread(self._connect_sync)
                return await asyncio.to_thread(fn)
            except (imaplib.IMAP4.error, OSError) as exc:
                if self._conn is not None:
                    await asyncio.to_thread(self._disconnect_sync)
                    self._conn = None
                raise MailboxError(operation, f"{type(exc).__name__}: {exc}") from exc

    # ------------------------------------------------------------------
    # MailboxClient
    # ------------------------------------------------------------------

    async def query_unread(self, filter_expression: str, max_results: int) -> list[str]:
        uids = await self._call("query", lambda: self._search_sync(filter_expression))
        return uids[:max_results]

    async def fetch_message(self, message_id: str) -> FetchedMessage:
        raw_bytes = await self._call("fetch", lambda: self._fetch_sync(message_id))
        headers = email.parser.BytesHeaderParser().parsebytes(raw_bytes)
        return FetchedMessage(
            message_id=message_id,
            headers={k: str(v) for k, v in headers.items()},
            raw_body=raw_bytes,
            body_encoding="rfc822",
        )

    async def mark_consumed(self, message_id: str) -> None:
        await self._call("mark_consumed", lambda: self._store_seen_sync(message_id))

    async def profile(self) -> str:
        return self._config.username or ""

    # ------------------------------------------------------------------
    # Synchronous helpers (run in thread)
    # ------------------------------------------------------------------

    def _search_sync(self, criteria: str) -> list[str]:
        assert self._conn is not None
        status, data = self._conn.uid("SEARCH", None, criteria)
        if status != "OK":
            raise imaplib.IMAP4.error(f"SEARCH returned {status}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    def _fetch_sync(self, uid: str) -> bytes:
        assert self._conn is not None
        status, msg_data = self._conn.uid("FETCH", uid, "(BODY.PEEK[])")
        if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            raise imaplib.IMAP4.error(f"FETCH {uid} returned no message")
        return msg_data[0][1]

    def _store_seen_sync(self, uid: str) -> None:
        assert self._conn is not None
        status, _ = self._conn.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        if status != "OK":
            raise imaplib.IMAP4.error(f"STORE {uid} returned {status}")
