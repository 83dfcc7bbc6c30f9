"""
Bounded async waiting.

Every "wait for an eventually-consistent value" loop in the checkout core
(token write verification, protected-view readiness) goes through poll_until:
a fixed number of attempts, fixed or linearly increasing delay, and an
explicit timed-out outcome instead of polling forever.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_incrementing,
)


class WaitOutcome(str, Enum):
    """Result of a bounded wait."""
    READY = "ready"
    TIMED_OUT = "timed_out"


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    attempts: int,
    interval: float,
    increment: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> WaitOutcome:
    """
    Await `check` until it returns True or the attempts run out.

    The first check runs immediately; subsequent checks are spaced by
    `interval + increment * (n - 1)` seconds. Exceptions raised by `check`
    are not retried and propagate to the caller.

    Args:
        check: Async predicate
        attempts: Maximum number of checks (at least 1)
        interval: Delay before the second check
        increment: Added to the delay after each failed check
        sleep: Sleep coroutine (injectable for tests)

    Returns:
        WaitOutcome.READY or WaitOutcome.TIMED_OUT
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_incrementing(start=interval, increment=increment),
        retry=retry_if_result(lambda ok: not ok),
        retry_error_callback=lambda state: state.outcome.result(),
        sleep=sleep,
    )
    ok = await retrying(check)
    return WaitOutcome.READY if ok else WaitOutcome.TIMED_OUT
