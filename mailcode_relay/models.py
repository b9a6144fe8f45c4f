"""Data models for the ingestion pipeline and its notification events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class Classification(str, Enum):
    """Verdict for a message the extractor considers relevant."""

    HAS_CODE = "has_code"
    NO_CODE = "no_code"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of running the extractor on a relevant message."""

    code: str | None

    @property
    def classification(self) -> Classification:
        return Classification.HAS_CODE if self.code else Classification.NO_CODE


@dataclass
class FetchedMessage:
    """Message detail as returned by a mailbox adapter, body still encoded."""

    message_id: str
    headers: dict[str, str]
    raw_body: str | bytes
    body_encoding: Literal["base64url", "rfc822"] = "base64url"


@dataclass
class InboundMessage:
    """A decoded message, alive for a single cycle."""

    message_id: str
    subject: str
    sender: str
    timestamp: str
    body: str = ""


@dataclass
class FailureState:
    """Health of the ingestion path.

    ``last_error`` and ``failed_at`` are only meaningful while ``down``.
    """

    down: bool = False
    last_error: str | None = None
    failed_at: datetime | None = None


# ------------------------------------------------------------------
# Notification events
# ------------------------------------------------------------------


class CodeFound(BaseModel):
    """A verification code was extracted from an inbound message."""

    kind: Literal["code_found"] = "code_found"
    code: str = Field(description="Extracted verification code")
    sender: str = Field(description="From header of the source message")
    timestamp: str = Field(description="Date header of the source message")


class IngestionDegraded(BaseModel):
    """The mailbox query started failing."""

    kind: Literal["ingestion_degraded"] = "ingestion_degraded"
    error_text: str = Field(description="Error reported by the first failed query")
    since: datetime = Field(description="When the first failure was observed (UTC)")


class IngestionRecovered(BaseModel):
    """The mailbox query succeeded again after an outage."""

    kind: Literal["ingestion_recovered"] = "ingestion_recovered"
    since: datetime = Field(description="When the outage began (UTC)")
    recovered_at: datetime = Field(description="When the first successful query ran (UTC)")
    down_duration_seconds: float = Field(description="Length of the outage in seconds")


NotificationEvent = Annotated[
    CodeFound | IngestionDegraded | IngestionRecovered,
    Field(discriminator="kind"),
]


# ------------------------------------------------------------------
# Cycle reporting
# ------------------------------------------------------------------


class CycleReport(BaseModel):
    """Counters describing one pipeline cycle."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    messages_found: int = 0
    codes_delivered: int = 0
    delivery_failures: int = 0
    messages_consumed: int = 0
    messages_ignored: int = 0
    messages_failed: int = 0
    query_error: str | None = None
    interrupted: bool = False


class ServiceStatus(str, Enum):
    """Runtime status of the relay process."""

    STARTING = "starting"
    SETUP_REQUIRED = "setup_required"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class OAuthTokens:
    """Tokens returned by Google's token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int = 3600
    scope: str = ""
