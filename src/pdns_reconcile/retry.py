"""
Retry with exponential backoff for API calls.

Each call runs through an explicit state machine::

    ATTEMPTING(n) -> SUCCESS
                  -> TRANSIENT_FAILURE -> ATTEMPTING(n + 1)
                  -> PERMANENT_FAILURE
                  -> RETRIES_EXHAUSTED   (transient failure on the last attempt)

Only :class:`~pdns_reconcile.models.ApiError` instances whose ``transient``
flag is set are retried; anything else ends the machine immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from .config import RetryPolicy
from .models import ApiError

LOG = logging.getLogger("pdns_reconcile.retry")

Sleep = Callable[[float], Awaitable[Any]]


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"

    @property
    def terminal(self) -> bool:
        return self in {RetryState.SUCCESS, RetryState.PERMANENT_FAILURE, RetryState.RETRIES_EXHAUSTED}


@dataclass
class RetryOutcome:
    """Terminal state of one retried call."""

    state: RetryState
    attempts: int
    error: ApiError | None = None

    @property
    def ok(self) -> bool:
        return self.state is RetryState.SUCCESS


async def call_with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    description: str = "request",
    sleep: Sleep = asyncio.sleep,
) -> RetryOutcome:
    """Run fn until it succeeds, fails permanently, or attempts run out.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt ceiling and backoff parameters.
        description: Human-readable label used in log messages.
        sleep: Awaitable used for backoff pauses (injectable for tests).

    Returns:
        The terminal :class:`RetryOutcome`.
    """
    attempt = 0
    state = RetryState.ATTEMPTING
    error: ApiError | None = None
    while not state.terminal:
        if state is RetryState.TRANSIENT_FAILURE:
            delay = policy.delay_for(attempt)
            LOG.warning(
                "Attempt %d/%d for %s failed (%s), retrying in %.1fs",
                attempt,
                policy.max_attempts,
                description,
                error,
                delay,
            )
            await sleep(delay)
        attempt += 1
        try:
            await fn()
        except ApiError as exc:
            error = exc
            if not exc.transient:
                state = RetryState.PERMANENT_FAILURE
            elif attempt >= policy.max_attempts:
                state = RetryState.RETRIES_EXHAUSTED
                LOG.error("All %d attempts failed for %s: %s", policy.max_attempts, description, exc)
            else:
                state = RetryState.TRANSIENT_FAILURE
        else:
            error = None
            state = RetryState.SUCCESS
    return RetryOutcome(state=state, attempts=attempt, error=error)
