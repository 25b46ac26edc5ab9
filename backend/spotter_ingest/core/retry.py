"""
Retry policy for feed and storage calls.

The wait schedule is a pure function of the attempt number: exponential growth,
capped, with symmetric jitter so that restarts of many loaders do not hit the
feed or the store in lockstep. `retry_async` applies the policy to a coroutine
factory and is independent of what is being retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from spotter_ingest.core.logging_setup import log_event

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_FACTOR = 0.4


class RetryPolicy(BaseModel):
    """Bounded exponential backoff with jitter."""
    max_attempts: int = Field(default=4, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=60.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=JITTER_FACTOR, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True)


def compute_backoff(policy: RetryPolicy, attempt: int, rng: Optional[random.Random] = None) -> float:
    """Wait duration (seconds) after the given failed attempt (1-based).

    Base: base_delay * multiplier ** (attempt - 1), capped at max_delay.
    Jitter: +/- jitter * base, result clamped to [0, max_delay].
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    base = min(policy.max_delay_seconds, policy.base_delay_seconds * policy.multiplier ** (attempt - 1))
    spread = base * policy.jitter
    offset = (rng or random).uniform(-spread, spread) if spread else 0.0
    return min(policy.max_delay_seconds, max(0.0, base + offset))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...],
    description: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
    delay_hint: Optional[Callable[[BaseException], Optional[float]]] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Run `operation` until it succeeds or the attempt budget is spent.

    Only exceptions in `retry_on` are retried; anything else propagates on the
    first occurrence. On exhaustion the last retryable error is re-raised.

    Args:
        delay_hint: Optional server-provided minimum wait (e.g. Retry-After).
        on_retry: Called before each sleep with (attempt, error, delay).
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as error:
            if attempt >= policy.max_attempts:
                log_event(
                    logger,
                    "retry_exhausted",
                    level=logging.WARNING,
                    operation=description,
                    attempts=attempt,
                    error=str(error),
                )
                raise
            delay = compute_backoff(policy, attempt, rng)
            hinted = delay_hint(error) if delay_hint is not None else None
            if hinted is not None:
                delay = max(delay, hinted)
            log_event(
                logger,
                "retry_scheduled",
                level=logging.INFO,
                operation=description,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error_type=type(error).__name__,
            )
            if on_retry is not None:
                on_retry(attempt, error, delay)
            await sleep(delay)
