"""Exponential backoff for calls to the MX Merchant API."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, FrozenSet, Optional

import httpx

from ..errors import TransientNetworkError

logger = logging.getLogger(__name__)

# 429 plus gateway errors. Other statuses are returned to the caller as-is.
RETRYABLE_STATUS: FrozenSet[int] = frozenset({429, 502, 503, 504})


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Seconds to wait from a ``Retry-After`` header, if it is numeric."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    retry_on_status: FrozenSet[int] = RETRYABLE_STATUS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """
    Call ``send`` until it yields a non-retryable response or retries run out.

    Args:
        send: Zero-argument coroutine function issuing one HTTP request.
        max_retries: Retries after the first attempt.
        base_delay: First backoff delay in seconds.
        max_delay: Upper bound for any single delay, Retry-After included.
        backoff_factor: Multiplier applied to the delay after each retry.
        retry_on_status: Status codes that trigger a retry.
        sleep: Awaitable used to wait; tests pass a recorder.

    Returns:
        The last response received. It may still carry a retryable status
        when retries were exhausted.

    Raises:
        TransientNetworkError: If the final attempt failed at the transport level.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")

    delay = base_delay
    for attempt in range(max_retries + 1):
        last_attempt = attempt == max_retries
        try:
            response = await send()
        except httpx.TransportError as e:
            if last_attempt:
                logger.error(f"Transport error after {max_retries + 1} attempts: {e}")
                raise TransientNetworkError(f"{type(e).__name__}: {e}") from e
            logger.warning(
                f"Transport error ({type(e).__name__}) on attempt {attempt + 1}/{max_retries + 1}, "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay + random.uniform(0, 0.2 * delay))
            delay = min(delay * backoff_factor, max_delay)
            continue

        if response.status_code not in retry_on_status or last_attempt:
            if attempt > 0:
                logger.info(f"HTTP {response.status_code} after {attempt + 1} attempts")
            return response

        wait = parse_retry_after(response) if response.status_code == 429 else None
        if wait is None:
            wait = delay + random.uniform(0, 0.2 * delay)
        wait = min(wait, max_delay)
        logger.warning(
            f"HTTP {response.status_code} on attempt {attempt + 1}/{max_retries + 1}, "
            f"retrying in {wait:.1f}s"
        )
        await sleep(wait)
        delay = min(delay * backoff_factor, max_delay)

    raise RuntimeError("unreachable")  # pragma: no cover
