"""Bounded retry with exponential backoff.

``run_with_retry`` awaits a zero-argument coroutine factory up to
``policy.max_attempts`` times, sleeping ``min(max_delay, base * factor**n)``
(optionally jittered by +/-25 %) between attempts.  It never raises for a
failed call: the outcome is reported as a ``RetryOutcome``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from agentic_search.domain.exceptions import (
    ExecutionError,
    NotFoundError,
    SessionCancelledError,
    ValidationError,
)
from agentic_search.infrastructure.cancellation import CancellationToken
from agentic_search.infrastructure.config import RetryConfig

logger = logging.getLogger(__name__)

RETRYABLE_MARKERS: tuple[str, ...] = (
    "network",
    "timeout",
    "connection",
    "econnrefused",
    "etimedout",
    "enotfound",
    "rate limit",
    "temporary",
)


def is_retryable_error(exc: BaseException) -> bool:
    """Default retry predicate.

    Validation, not-found and cancellation errors are final.  Execution
    errors (timeouts included) and builtin connection/timeout errors are
    retried; anything else is retried only if its message looks transient.
    """
    if isinstance(exc, (ValidationError, NotFoundError, SessionCancelledError)):
        return False
    if isinstance(exc, (ExecutionError, TimeoutError, ConnectionError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def is_retryable_tool_error(exc: BaseException) -> bool:
    """Retry predicate for tool invocations.

    Any failure raised by the tool itself counts as an execution error and
    is retried; only validation, not-found and cancellation errors are final.
    """
    return not isinstance(exc, (ValidationError, NotFoundError, SessionCancelledError))


@dataclass(frozen=True)
class RetryOutcome:
    """Result of ``run_with_retry``."""

    success: bool
    value: Any = None
    error: BaseException | None = None
    attempts: int = 0
    total_time_ms: float = 0.0
    delays: tuple[float, ...] = ()


def backoff_delay(
    policy: RetryConfig,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """Delay (seconds) to wait after failed *attempt* (1-based)."""
    delay = policy.delay_for(attempt)
    if policy.jitter and delay > 0:
        r = (rng or random).random()
        delay *= 0.75 + 0.5 * r
    return min(delay, policy.max_delay)


async def run_with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryConfig | None = None,
    *,
    is_retryable: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    cancel_token: CancellationToken | None = None,
    rng: random.Random | None = None,
) -> RetryOutcome:
    """Await ``fn()`` with bounded retries.

    Parameters
    ----------
    fn:
        Zero-argument callable returning an awaitable.  Called once per
        attempt.
    policy:
        Attempts and backoff shape.  Defaults to ``RetryConfig()``.
    is_retryable:
        Predicate deciding whether a failure is worth another attempt.
        Defaults to :func:`is_retryable_error`.
    sleep:
        Awaitable sleep, injectable so tests need not wait.
    cancel_token:
        Checked before every attempt; a cancelled token ends the loop with
        a ``SessionCancelledError``.

    Returns
    -------
    RetryOutcome
        ``attempts`` is the number of times ``fn`` was actually called.
    """
    policy = policy or RetryConfig()
    retryable = is_retryable or is_retryable_error
    start = time.monotonic()
    delays: list[float] = []
    last_error: BaseException | None = None
    attempts = 0

    for attempt in range(1, policy.max_attempts + 1):
        if cancel_token is not None and cancel_token.cancelled:
            last_error = SessionCancelledError()
            break
        attempts = attempt
        try:
            value = await fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_error = exc
            if attempt >= policy.max_attempts or not retryable(exc):
                logger.debug(
                    "Attempt %d/%d failed, giving up: %s",
                    attempt, policy.max_attempts, exc,
                )
                break
            delay = backoff_delay(policy, attempt, rng)
            delays.append(delay)
            logger.debug(
                "Attempt %d/%d failed, retrying in %.3fs: %s",
                attempt, policy.max_attempts, delay, exc,
            )
            await sleep(delay)
            continue
        return RetryOutcome(
            success=True,
            value=value,
            attempts=attempts,
            total_time_ms=(time.monotonic() - start) * 1000.0,
            delays=tuple(delays),
        )

    return RetryOutcome(
        success=False,
        error=last_error,
        attempts=attempts,
        total_time_ms=(time.monotonic() - start) * 1000.0,
        delays=tuple(delays),
    )
