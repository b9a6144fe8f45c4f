"""Backoff for transient HTTP failures, driven by :class:`RetryConfig`."""

from __future__ import annotations

from collections.abc import Callable

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retrying_after_error",
            operation=operation,
            attempt=state.attempt_number,
            wait_seconds=round(state.next_action.sleep, 3) if state.next_action else None,
            error=type(exc).__name__ if exc else None,
        )

    return before_sleep


def with_retry(
    config: RetryConfig,
    *,
    operation: str = "request",
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable:
    """Return a tenacity decorator that retries *retryable_exceptions*.

    Each wait is logged as ``retrying_after_error`` tagged with *operation*.
    After ``max_attempts`` the last exception is re-raised unchanged.

    Usage::

        @with_retry(config.retry, operation="token_refresh",
                    retryable_exceptions=(httpx.TransportError,))
        async def refresh() -> OAuthTokens: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry(operation),
        reraise=True,
    )
