"""Shared test fixtures for the mailcode_relay test suite."""

from __future__ import annotations

import base64
import os
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from mailcode_relay.config import (
    DiscordConfig,
    GmailConfig,
    ImapConfig,
    PollingConfig,
    RelayConfig,
    RetryConfig,
)
from mailcode_relay.errors import MailboxError
from mailcode_relay.interface import MailboxClient, NotificationSink
from mailcode_relay.models import FetchedMessage, NotificationEvent


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep a developer's .env and exported settings out of the tests."""
    monkeypatch.chdir(tmp_path)
    for prefix in ("GMAIL_", "IMAP_", "DISCORD_", "POLL_", "RETRY_", "RELAY_"):
        for key in list(os.environ):
            if key.startswith(prefix):
                monkeypatch.delenv(key, raising=False)


@pytest.fixture
def gmail_config() -> GmailConfig:
    return GmailConfig(
        client_id="client-id.apps.googleusercontent.com",
        client_secret="client-secret",
        refresh_token="refresh-token",
        api_base_url="https://gmail.test/gmail/v1",
        token_url="https://oauth.test/token",
        auth_url="https://accounts.test/o/oauth2/v2/auth",
        redirect_uri="http://localhost:3000/oauth/callback",
        timeout_seconds=2.0,
    )


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
        mailbox="INBOX",
    )


@pytest.fixture
def discord_config() -> DiscordConfig:
    return DiscordConfig(webhook_url="https://discord.test/api/webhooks/1/token")


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.05,
        multiplier=2.0,
    )


@pytest.fixture
def relay_config(
    gmail_config: GmailConfig,
    discord_config: DiscordConfig,
    retry_config: RetryConfig,
) -> RelayConfig:
    return RelayConfig(
        mailbox_backend="gmail",
        control_port=18080,
        gmail=gmail_config,
        discord=discord_config,
        polling=PollingConfig(interval_seconds=10.0, max_results=20),
        retry=retry_config,
    )


# ------------------------------------------------------------------
# In-memory adapters
# ------------------------------------------------------------------


def encode_body(text: str) -> str:
    """Encode text the way Gmail returns ``body.data`` (unpadded base64url)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_fetched(
    message_id: str = "msg-1",
    *,
    subject: str | None = "OpenAI Verification",
    body: str = "Your code is 482913. Expires soon.",
    sender: str = "OpenAI <noreply@openai.com>",
    date: str = "Mon, 02 Jun 2025 12:00:00 +0000",
) -> FetchedMessage:
    headers = {"From": sender, "Date": date}
    if subject is not None:
        headers["Subject"] = subject
    return FetchedMessage(
        message_id=message_id,
        headers=headers,
        raw_body=encode_body(body),
        body_encoding="base64url",
    )


class FakeMailbox(MailboxClient):
    """Dict-backed mailbox that records every call."""

    default_query = "is:unread"

    def __init__(self, messages: list[FetchedMessage] | None = None) -> None:
        self.messages: dict[str, FetchedMessage] = {m.message_id: m for m in messages or []}
        self.consumed: list[str] = []
        self.queries: list[tuple[str, int]] = []
        self.query_errors: list[MailboxError] = []
        self.fetch_errors: dict[str, MailboxError] = {}
        self.mark_errors: dict[str, MailboxError] = {}

    async def query_unread(self, filter_expression: str, max_results: int) -> list[str]:
        self.queries.append((filter_expression, max_results))
        if self.query_errors:
            raise self.query_errors.pop(0)
        unread = [mid for mid in self.messages if mid not in self.consumed]
        return unread[:max_results]

    async def fetch_message(self, message_id: str) -> FetchedMessage:
        if message_id in self.fetch_errors:
            raise self.fetch_errors[message_id]
        return self.messages[message_id]

    async def mark_consumed(self, message_id: str) -> None:
        if message_id in self.mark_errors:
            raise self.mark_errors[message_id]
        self.consumed.append(message_id)

    async def profile(self) -> str:
        return "me@example.com"


class RecordingSink(NotificationSink):
    """Notification sink that keeps every event it is handed."""

    def __init__(self, *, accept: bool = True) -> None:
        self.events: list[NotificationEvent] = []
        self.accept = accept

    async def deliver(self, event: NotificationEvent) -> bool:
        self.events.append(event)
        return self.accept


@pytest.fixture
def fake_mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def build_plain_email(
    *,
    subject: str = "Verify your email",
    from_addr: str = "noreply@openai.com",
    body: str = "Your verification code is 123456.",
) -> bytes:
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = "me@example.com"
    msg["Date"] = "Mon, 02 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def build_multipart_email(*, body_text: str = "Code: 654321", body_html: str = "<p>x</p>") -> bytes:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = "Confirm your account"
    msg["From"] = "noreply@openai.com"
    msg["To"] = "me@example.com"
    msg["Date"] = "Mon, 02 Jun 2025 12:00:00 +0000"
    msg.attach(MIMEText(body_html, "html"))
    msg.attach(MIMEText(body_text, "plain"))
    return msg.as_bytes()
