"""Adapter interfaces the pipeline depends on.

Concrete mailbox clients wrap a provider (Gmail REST, IMAP); concrete
sinks deliver :data:`~mailcode_relay.models.NotificationEvent` payloads
somewhere a human will see them.
"""

from __future__ import annotations

import abc

from .models import FetchedMessage, NotificationEvent


class MailboxClient(abc.ABC):
    """Query, fetch and mark-consumed operations against one mailbox.

    Every operation raises :class:`~mailcode_relay.errors.MailboxError` on
    transport failure and nothing else.
    """

    #: Filter used by the pipeline when no query is configured.
    default_query: str = ""

    async def start(self) -> None:
        """Open connections.  The default does nothing."""

    async def stop(self) -> None:
        """Release connections.  The default does nothing."""

    @abc.abstractmethod
    async def query_unread(self, filter_expression: str, max_results: int) -> list[str]:
        """Return identifiers of unread messages matching *filter_expression*."""
        ...

    @abc.abstractmethod
    async def fetch_message(self, message_id: str) -> FetchedMessage:
        """Return headers and the still-encoded body of one message."""
        ...

    @abc.abstractmethod
    async def mark_consumed(self, message_id: str) -> None:
        """Flag a message so later unread queries no longer return it."""
        ...

    async def search(self, query: str, max_results: int) -> list[str]:
        """Run an arbitrary provider query.  Defaults to :meth:`query_unread`."""
        return await self.query_unread(query, max_results)

    async def profile(self) -> str:
        """Return the mailbox address, used to verify connectivity."""
        raise NotImplementedError(f"{type(self).__name__} does not expose a profile")


class NotificationSink(abc.ABC):
    """Fire-and-forget delivery of notification events."""

    @property
    def configured(self) -> bool:
        return True

    async def start(self) -> None:
        """Open connections.  The default does nothing."""

    async def stop(self) -> None:
        """Release connections.  The default does nothing."""

    @abc.abstractmethod
    async def deliver(self, event: NotificationEvent) -> bool:
        """Deliver *event*; return whether it was accepted.

        Implementations log failures and return ``False`` instead of raising.
        """
        ...
