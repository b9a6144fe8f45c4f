"""Exception hierarchy for the relay.

``MailboxError`` and ``BodyDecodeError`` are recoverable per message or per
cycle.  ``ConfigurationError`` stops the pipeline from starting but never
the process.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(RelayError):
    """Required settings or credentials are missing."""


class MailboxError(RelayError):
    """A mailbox query, fetch, or mark-consumed call failed in transport."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail


class BodyDecodeError(RelayError):
    """A message body could not be decoded from its transport encoding."""


class AuthorizationError(RelayError):
    """OAuth token refresh or code exchange failed."""
