"""Google OAuth for the Gmail adapter.

:class:`GoogleOAuthCredentials` turns a stored refresh token into
short-lived access tokens.  :class:`AuthorizationSession` runs the
one-off consent flow that produces the refresh token in the first place;
it lives only as long as a single setup attempt.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from urllib.parse import urlencode

import httpx
import structlog

from .config import GmailConfig, RetryConfig
from .errors import AuthorizationError, ConfigurationError
from .models import OAuthTokens
from .retry import with_retry

logger = structlog.get_logger()

# Refresh this many seconds before Google says the token expires.
_EXPIRY_MARGIN_SECONDS = 60.0


def _parse_tokens(payload: dict) -> OAuthTokens:
    try:
        return OAuthTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=int(payload.get("expires_in", 3600)),
            scope=payload.get("scope", ""),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthorizationError(f"malformed token response: {exc}") from exc


async def _post_token_request(
    client: httpx.AsyncClient,
    token_url: str,
    form: dict[str, str],
) -> OAuthTokens:
    response = await client.post(token_url, data=form)
    if response.status_code >= 400:
        raise AuthorizationError(
            f"token endpoint returned {response.status_code}: {response.text}"
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise AuthorizationError("token endpoint returned invalid JSON") from exc
    return _parse_tokens(payload)


class GoogleOAuthCredentials:
    """Refresh-token credentials with a cached access token."""

    def __init__(
        self,
        config: GmailConfig,
        retry_config: RetryConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.client_id or config.client_secret is None:
            raise ConfigurationError("GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET are required")
        if config.refresh_token is None:
            raise ConfigurationError("GMAIL_REFRESH_TOKEN is required")
        self._config = config
        self._retry_config = retry_config
        self._client = client
        self._owns_client = client is None
        self._access_token: str | None = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def invalidate(self) -> None:
        """Forget the cached access token (e.g. after a 401)."""
        self._access_token = None
        self._expires_at = 0.0

    async def access_token(self) -> str:
        """Return a valid access token, refreshing it when needed."""
        async with self._lock:
            if self._access_token is None or time.monotonic() >= self._expires_at:
                await self._refresh()
            assert self._access_token is not None
            return self._access_token

    async def _refresh(self) -> None:
        if self._client is None:
            await self.start()
        assert self._client is not None
        assert self._config.client_secret is not None
        assert self._config.refresh_token is not None

        form = {
            "grant_type": "refresh_token",
            "client_id": self._config.client_id or "",
            "client_secret": self._config.client_secret.get_secret_value(),
            "refresh_token": self._config.refresh_token.get_secret_value(),
        }

        @with_retry(
            self._retry_config,
            operation="token_refresh",
            retryable_exceptions=(httpx.TransportError,),
        )
        async def _request() -> OAuthTokens:
            return await _post_token_request(self._client, self._config.token_url, form)

        try:
            tokens = await _request()
        except httpx.HTTPError as exc:
            raise AuthorizationError(f"token refresh failed: {exc}") from exc

        self._access_token = tokens.access_token
        self._expires_at = time.monotonic() + max(tokens.expires_in - _EXPIRY_MARGIN_SECONDS, 0.0)
        logger.debug("oauth_access_token_refreshed", expires_in=tokens.expires_in)


class AuthorizationSession:
    """A single consent-flow attempt.

    Build one per setup, send the user to :meth:`authorization_url`, then
    call :meth:`exchange` with the code Google hands back.  The session
    expires after ``ttl_seconds`` and refuses a mismatched ``state``.
    """

    def __init__(
        self,
        config: GmailConfig,
        *,
        ttl_seconds: float = 600.0,
        redirect_uri: str | None = None,
    ) -> None:
        if not config.client_id or config.client_secret is None:
            raise ConfigurationError("GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET are required")
        self._config = config
        self.redirect_uri = redirect_uri or config.redirect_uri
        self.state = secrets.token_urlsafe(24)
        self._created_at = time.monotonic()
        self._ttl_seconds = ttl_seconds
        self.completed = False

    @property
    def expired(self) -> bool:
        return time.monotonic() - self._created_at > self._ttl_seconds

    def authorization_url(self) -> str:
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._config.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": self.state,
        }
        return f"{self._config.auth_url}?{urlencode(params)}"

    async def exchange(
        self,
        code: str,
        *,
        state: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> OAuthTokens:
        """Trade an authorization code for tokens.

        *state* is checked when given; the terminal flow has none to check.
        """
        if self.completed:
            raise AuthorizationError("authorization session already used")
        if self.expired:
            raise AuthorizationError("authorization session expired")
        if state is not None and not secrets.compare_digest(state, self.state):
            raise AuthorizationError("state mismatch")
        if not code:
            raise AuthorizationError("authorization code is empty")

        assert self._config.client_secret is not None
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._config.client_id or "",
            "client_secret": self._config.client_secret.get_secret_value(),
            "redirect_uri": self.redirect_uri,
        }

        owns_client = client is None
        http = client or httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_seconds))
        try:
            tokens = await _post_token_request(http, self._config.token_url, form)
        except httpx.HTTPError as exc:
            raise AuthorizationError(f"code exchange failed: {exc}") from exc
        finally:
            if owns_client:
                await http.aclose()

        if not tokens.refresh_token:
            raise AuthorizationError("no refresh token returned; revoke access and retry")
        self.completed = True
        logger.info("oauth_authorization_completed", scope=tokens.scope)
        return tokens
