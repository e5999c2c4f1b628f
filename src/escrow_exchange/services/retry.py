"""Caller-side retry of transient store failures.

The core never retries on its own. Surfaces (HTTP routes, MCP tools) wrap a
whole service call, so every attempt re-reads and re-validates under fresh
locks. Only TransientStoreError is retried; every other error is final.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from escrow_exchange.config import get_settings
from escrow_exchange.domain.exceptions import TransientStoreError
from escrow_exchange.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "store.retrying",
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


async def run_with_retry(operation: Callable[[], Awaitable[T]]) -> T:
    """Await operation(), retrying with exponential backoff on TransientStoreError."""
    settings = get_settings()
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(settings.store_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.store_retry_min_wait_seconds,
            min=settings.store_retry_min_wait_seconds,
            max=settings.store_retry_max_wait_seconds,
        ),
        retry=retry_if_exception_type(TransientStoreError),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await operation()
    raise AssertionError("unreachable")  # pragma: no cover
