"""Discord webhook implementation of :class:`NotificationSink`."""

from __future__ import annotations

import email.utils
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from .config import DiscordConfig
from .interface import NotificationSink
from .models import CodeFound, IngestionDegraded, IngestionRecovered, NotificationEvent

logger = structlog.get_logger()

COLOR_CODE = 0xFF6B35
COLOR_DEGRADED = 0xE74C3C
COLOR_RECOVERED = 0x2ECC71

# Discord rejects embed field values longer than this.
FIELD_VALUE_LIMIT = 1024


def humanize_duration(seconds: float) -> str:
    """``3723.4`` -> ``"1h 2m 3s"``."""
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes or hours:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def format_mail_date(value: str) -> str:
    """Render an RFC 2822 Date header as UTC; unparsable values pass through."""
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def _truncate(text: str) -> str:
    if len(text) <= FIELD_VALUE_LIMIT:
        return text
    return text[: FIELD_VALUE_LIMIT - 1] + "…"


def _iso(ts: datetime) -> str:
    return ts.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_embed(event: NotificationEvent, *, footer: str) -> dict[str, Any]:
    """Render one notification event as a Discord embed."""
    if isinstance(event, CodeFound):
        title = "🔑 Verification code"
        color = COLOR_CODE
        fields = [
            {"name": "Code", "value": f"**{event.code}**", "inline": False},
            {"name": "From", "value": _truncate(event.sender), "inline": True},
            {"name": "Received", "value": format_mail_date(event.timestamp), "inline": True},
        ]
    elif isinstance(event, IngestionDegraded):
        title = "⚠️ Mailbox ingestion degraded"
        color = COLOR_DEGRADED
        fields = [
            {"name": "Error", "value": _truncate(event.error_text), "inline": False},
            {"name": "Since", "value": _iso(event.since), "inline": True},
        ]
    elif isinstance(event, IngestionRecovered):
        title = "✅ Mailbox ingestion recovered"
        color = COLOR_RECOVERED
        fields = [
            {"name": "Down since", "value": _iso(event.since), "inline": True},
            {"name": "Recovered at", "value": _iso(event.recovered_at), "inline": True},
            {
                "name": "Downtime",
                "value": humanize_duration(event.down_duration_seconds),
                "inline": True,
            },
        ]
    else:
        raise TypeError(f"unsupported event type: {type(event).__name__}")

    return {
        "title": title,
        "color": color,
        "fields": fields,
        "timestamp": datetime.now(UTC).isoformat(),
        "footer": {"text": footer},
    }


class DiscordWebhookSink(NotificationSink):
    """POSTs each event as a single-embed webhook message.

    Delivery is attempted once.  Without a webhook URL the sink is
    disabled and every event is dropped with a log line.
    """

    def __init__(self, config: DiscordConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return self._config.webhook_url is not None

    async def start(self) -> None:
        if not self.configured:
            logger.info("notification_sink_disabled", reason="no_webhook_url")
            return
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        logger.info("discord_sink_started")

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("discord_sink_stopped")

    async def deliver(self, event: NotificationEvent) -> bool:
        if self._config.webhook_url is None:
            logger.warning("notification_sink_disabled", event_kind=event.kind)
            return False
        if self._client is None:
            await self.start()
        assert self._client is not None

        body = {"embeds": [build_embed(event, footer=self._config.footer)]}
        try:
            response = await self._client.post(
                self._config.webhook_url.get_secret_value(),
                json=body,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "notification_delivery_failed",
                event_kind=event.kind,
                status_code=exc.response.status_code,
            )
            return False
        except httpx.HTTPError as exc:
            logger.error(
                "notification_delivery_failed",
                event_kind=event.kind,
                error=type(exc).__name__,
            )
            return False

        logger.info("notification_delivered", event_kind=event.kind)
        return True
