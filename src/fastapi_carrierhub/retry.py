"""Exponential backoff for idempotent provider calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from fastapi_carrierhub.exceptions import (
    ProviderAuthError,
    ProviderRequestError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    ProviderRequestError,
    ProviderTimeoutError,
)


def compute_backoff_delay(
    attempt: int,
    backoff_seconds: float,
    max_backoff_seconds: float | None = None,
) -> float:
    """Compute the delay before retry number ``attempt``.

    delay = backoff_seconds * 2^(attempt - 1), capped at max_backoff_seconds
    """
    delay = backoff_seconds * (2 ** (attempt - 1))
    if max_backoff_seconds is not None:
        delay = min(delay, max_backoff_seconds)
    return delay


async def retry_with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    backoff_seconds: float,
    max_backoff_seconds: float | None = None,
    retry_on: tuple[type[Exception], ...] = RETRYABLE_ERRORS,
    description: str = "provider call",
) -> T:
    """Run ``call`` until it succeeds or ``max_attempts`` is reached.

    Only for calls without carrier-side effects: never wrap shipment
    creation, whose retries belong to the orchestrator's fallback.
    Authentication failures are never retried.
    """
    attempt = 1
    while True:
        try:
            return await call()
        except ProviderAuthError:
            raise
        except retry_on as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "%s failed after %d attempts: %s",
                    description,
                    attempt,
                    exc,
                )
                raise
            delay = compute_backoff_delay(
                attempt, backoff_seconds, max_backoff_seconds
            )
            logger.info(
                "%s attempt %d failed: %s; retrying in %.2fs",
                description,
                attempt,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1
