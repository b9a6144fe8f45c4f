"""Mailcode Relay — forward mailbox verification codes to a webhook.

Public API re-exported here for convenience::

    from mailcode_relay import IngestionPipeline, extract_verification_code
"""

from .config import (
    DiscordConfig,
    GmailConfig,
    ImapConfig,
    PollingConfig,
    RelayConfig,
    RetryConfig,
)
from .discord import DiscordWebhookSink
from .errors import (
    AuthorizationError,
    BodyDecodeError,
    ConfigurationError,
    MailboxError,
    RelayError,
)
from .extractor import extract_verification_code
from .failure_tracker import FailureTracker
from .gmail_client import GmailClient
from .imap_client import ImapMailboxClient
from .interface import MailboxClient, NotificationSink
from .logging import setup_logging
from .models import (
    Classification,
    CodeFound,
    CycleReport,
    FailureState,
    FetchedMessage,
    InboundMessage,
    IngestionDegraded,
    IngestionRecovered,
    NotificationEvent,
    VerificationResult,
)
from .oauth import AuthorizationSession, GoogleOAuthCredentials
from .pipeline import IngestionPipeline
from .scheduler import PollScheduler
from .service import RelayService

__all__ = [
    "AuthorizationError",
    "AuthorizationSession",
    "BodyDecodeError",
    "Classification",
    "CodeFound",
    "ConfigurationError",
    "CycleReport",
    "DiscordConfig",
    "DiscordWebhookSink",
    "FailureState",
    "FailureTracker",
    "FetchedMessage",
    "GmailClient",
    "GmailConfig",
    "GoogleOAuthCredentials",
    "ImapConfig",
    "ImapMailboxClient",
    "InboundMessage",
    "IngestionDegraded",
    "IngestionPipeline",
    "IngestionRecovered",
    "MailboxClient",
    "MailboxError",
    "NotificationEvent",
    "NotificationSink",
    "PollScheduler",
    "PollingConfig",
    "RelayConfig",
    "RelayError",
    "RelayService",
    "RetryConfig",
    "VerificationResult",
    "extract_verification_code",
    "setup_logging",
]
