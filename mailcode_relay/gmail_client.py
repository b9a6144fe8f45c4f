"""Async Gmail REST client implementing :class:`MailboxClient`."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from .config import GmailConfig
from .errors import AuthorizationError, MailboxError
from .interface import MailboxClient
from .models import FetchedMessage
from .oauth import GoogleOAuthCredentials

logger = structlog.get_logger()

DEFAULT_GMAIL_QUERY = (
    "is:unread AND (from:openai OR from:noreply@openai.com OR "
    "subject:verification OR subject:verify OR subject:confirm)"
)


def _extract_encoded_body(payload: dict[str, Any]) -> str:
    """Return ``body.data`` of the payload, else of its first text/plain part."""
    data = (payload.get("body") or {}).get("data")
    if data:
        return data
    for part in payload.get("parts") or []:
        if part.get("mimeType") == "text/plain":
            part_data = (part.get("body") or {}).get("data")
            if part_data:
                return part_data
    return ""


class GmailClient(MailboxClient):
    """Talks to ``gmail.googleapis.com`` with a bearer token.

    A 401 response drops the cached access token so the next call
    refreshes it; the failing call itself is reported as a
    :class:`MailboxError`.
    """

    default_query = DEFAULT_GMAIL_QUERY

    def __init__(
        self,
        config: GmailConfig,
        credentials: GoogleOAuthCredentials,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        if self._client is not None:
            return
        await self._credentials.start()
        self._client = httpx.AsyncClient(
            base_url=f"{self._config.api_base_url}/users/{self._config.user_id}",
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info("gmail_client_started", user_id=self._config.user_id)

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("gmail_client_stopped")
        await self._credentials.stop()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        if self._client is None:
            await self.start()
        assert self._client is not None

        try:
            token = await self._credentials.access_token()
            response = await self._client.request(
                method,
                path,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
            if response.status_code == 401:
                self._credentials.invalidate()
            response.raise_for_status()
            return response.json() if response.content else {}
        except AuthorizationError as exc:
            raise MailboxError(operation, str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            raise MailboxError(operation, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise MailboxError(operation, f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise MailboxError(operation, f"invalid JSON response: {exc}") from exc

    # ------------------------------------------------------------------
    # MailboxClient
    # ------------------------------------------------------------------

    async def query_unread(self, filter_expression: str, max_results: int) -> list[str]:
        data = await self._request(
            "query",
            "GET",
            "/messages",
            params={"q": filter_expression, "maxResults": max_results},
        )
        return [m["id"] for m in data.get("messages") or [] if m.get("id")]

    async def fetch_message(self, message_id: str) -> FetchedMessage:
        data = await self._request(
            "fetch",
            "GET",
            f"/messages/{message_id}",
            params={"format": "full"},
        )
        payload = data.get("payload") or {}
        headers = {
            h["name"]: h.get("value", "")
            for h in payload.get("headers") or []
            if h.get("name")
        }
        return FetchedMessage(
            message_id=message_id,
            headers=headers,
            raw_body=_extract_encoded_body(payload),
            body_encoding="base64url",
        )

    async def mark_consumed(self, message_id: str) -> None:
        await self._request(
            "mark_consumed",
            "POST",
            f"/messages/{message_id}/modify",
            json={"removeLabelIds": ["UNREAD"]},
        )

    async def profile(self) -> str:
        data = await self._request("profile", "GET", "/profile")
        return str(data.get("emailAddress", ""))
