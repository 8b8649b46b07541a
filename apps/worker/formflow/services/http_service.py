"""HTTP helpers with retry/backoff for external integrations."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

from formflow.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Transport errors and retryable statuses are retried; the last response
    (or error) is returned/raised once attempts run out.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    attempts = max(1, max_attempts if max_attempts is not None else settings.RETRY_MAX_ATTEMPTS)
    base = base_delay if base_delay is not None else settings.RETRY_BASE_DELAY
    ceiling = max_delay if max_delay is not None else settings.RETRY_MAX_DELAY

    for attempt in range(attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= attempts - 1:
                raise
            delay = _backoff_delay(attempt, base, ceiling)
            logger.warning("HTTP request failed, retrying", exc_info=exc)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < attempts - 1:
            delay = _backoff_delay(attempt, base, ceiling)
            logger.warning("HTTP request returned %s, retrying", response.status_code)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response
