"""
Exponential-backoff wrapper for outbound provider calls.

Retries rate-limited (429) and server-side (5xx) responses as well as
transport errors. Anything else is returned to the caller untouched so
each connector can map provider-specific failures itself.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from config.settings import config

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _retry_after(resp: httpx.Response) -> Optional[float]:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def backoff_delay(attempt: int, base: float, multiplier: float) -> float:
    """Delay before retry number ``attempt`` (0-based)."""
    return base * (multiplier ** attempt)


async def request_with_backoff(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    multiplier: Optional[float] = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send ``method url`` through ``client``, retrying transient failures.

    Returns the last response once retries are exhausted; re-raises the
    last transport error if no response was ever received.
    """
    max_retries = config.default_max_retries if max_retries is None else max_retries
    base_delay = config.default_backoff_base if base_delay is None else base_delay
    multiplier = config.default_backoff_multiplier if multiplier is None else multiplier

    for attempt in range(max_retries + 1):
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= max_retries:
                raise
            delay = backoff_delay(attempt, base_delay, multiplier)
            logger.warning(
                "%s %s attempt %d/%d failed (%s); retrying in %.2fs",
                method, url, attempt + 1, max_retries + 1, exc, delay,
            )
            await asyncio.sleep(delay)
            continue

        if resp.status_code not in RETRYABLE_STATUS or attempt >= max_retries:
            return resp

        delay = _retry_after(resp)
        if delay is None:
            delay = backoff_delay(attempt, base_delay, multiplier)
        logger.warning(
            "%s %s attempt %d/%d returned %d; retrying in %.2fs",
            method, url, attempt + 1, max_retries + 1, resp.status_code, delay,
        )
        await asyncio.sleep(delay)

    # unreachable: the loop always returns or raises on its final attempt
    raise RuntimeError("request_with_backoff exhausted without a result")
