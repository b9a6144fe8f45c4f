"""Relay configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars or a
``.env`` file in the working directory.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


def _settings(prefix: str) -> dict:
    return {"env_prefix": prefix, "env_file": ".env", "extra": "ignore"}


class GmailConfig(BaseSettings):
    """Gmail REST API and Google OAuth settings."""

    model_config = _settings("GMAIL_")

    client_id: str | None = Field(default=None, description="OAuth client ID")
    client_secret: SecretStr | None = Field(default=None, description="OAuth client secret")
    refresh_token: SecretStr | None = Field(
        default=None,
        description="Long-lived refresh token produced by the setup flow",
    )
    user_id: str = Field(default="me", description="Gmail user ID for API paths")
    api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1",
        description="Gmail REST API base URL",
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="Google OAuth token endpoint",
    )
    auth_url: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth",
        description="Google OAuth consent endpoint",
    )
    redirect_uri: str = Field(
        default="http://localhost:3000/oauth/callback",
        description="Redirect URI registered for the OAuth client",
    )
    scopes: list[str] = Field(
        default_factory=lambda: ["https://www.googleapis.com/auth/gmail.modify"],
        description="OAuth scopes requested during setup",
    )
    timeout_seconds: float = Field(default=5.0, description="HTTP request timeout")


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = _settings("IMAP_")

    host: str | None = Field(default=None, description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str | None = Field(default=None, description="IMAP login username")
    password: SecretStr | None = Field(default=None, description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")
    timeout_seconds: float = Field(default=5.0, description="Socket timeout")


class DiscordConfig(BaseSettings):
    """Discord webhook notification settings."""

    model_config = _settings("DISCORD_")

    webhook_url: SecretStr | None = Field(
        default=None,
        description="Discord webhook URL; notifications are disabled when unset",
    )
    timeout_seconds: float = Field(default=5.0, description="HTTP request timeout")
    footer: str = Field(default="mailcode-relay", description="Embed footer text")


class PollingConfig(BaseSettings):
    """Poll loop settings."""

    model_config = _settings("POLL_")

    interval_seconds: float = Field(default=10.0, description="Seconds between poll cycles")
    max_results: int = Field(default=20, description="Maximum messages per cycle")
    query: str | None = Field(
        default=None,
        description="Mailbox filter; the backend default is used when unset",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = _settings("RETRY_")

    max_attempts: int = Field(default=3, description="Maximum attempts per token refresh")
    initial_wait_seconds: float = Field(
        default=0.5,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=2.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class RelayConfig(BaseSettings):
    """Root configuration for the relay process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = _settings("RELAY_")

    mailbox_backend: Literal["gmail", "imap"] = Field(
        default="gmail",
        description="Which mailbox adapter to poll",
    )
    control_host: str = Field(default="127.0.0.1", description="Bind address of the control API")
    control_port: int = Field(default=3000, description="Port of the control API")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    gmail: GmailConfig = Field(default_factory=GmailConfig)
    imap: ImapConfig = Field(default_factory=ImapConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
