"""Bounded polling for asynchronous platform requests.

Every asynchronous operation the driver submits (catalog, power, destroy
requests) and every reachability probe is driven to completion through
``wait_for``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeAlias

from loguru import logger
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    wait_fixed,
)

from vradriver.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WAIT_TIME,
    DEFAULT_POLL_INTERVAL,
)
from vradriver.core.exceptions import TransientPollError, WaitTimeoutError

Check: TypeAlias = Callable[[], bool]
TickCallback: TypeAlias = Callable[[float, float], None]
ErrorCallback: TypeAlias = Callable[[Exception, int], None]


def wait_for(
    check: Check,
    *,
    max_wait_time: float = DEFAULT_MAX_WAIT_TIME,
    max_retries: int = DEFAULT_MAX_RETRIES,
    interval: float = DEFAULT_POLL_INTERVAL,
    on_tick: TickCallback | None = None,
    on_error: ErrorCallback | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Call ``check`` until it returns True.

    Returns as soon as ``check`` returns True, without sleeping if the first
    call already succeeds. Between unsuccessful calls ``on_tick`` is invoked
    with the elapsed time and the upcoming sleep, then the loop sleeps
    ``interval`` seconds.

    The budget is checked before every sleep: when the next attempt would
    start at or past ``max_wait_time`` the wait gives up instead of sleeping,
    so no attempt ever starts after the deadline. A ``check`` that blocks is
    not interrupted; a check that returns True counts as success even if it
    ran long.

    Exceptions raised by ``check`` are reported through ``on_error`` with the
    running failure count and tolerated while the count stays within
    ``max_retries``: ``max_retries=0`` makes the first exception fatal,
    ``max_retries=N`` allows N+1 raising calls before giving up.

    Args:
        check: Side-effecting predicate, typically refresh-then-test.
        max_wait_time: Overall wall-clock budget in seconds.
        max_retries: Additional raising attempts tolerated.
        interval: Fixed sleep between attempts in seconds.
        on_tick: Progress callback ``(elapsed, interval)``.
        on_error: Error callback ``(error, failure_count)``.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock the budget is measured with.

    Raises:
        WaitTimeoutError: If the budget is spent before ``check`` succeeds.
        TransientPollError: If ``check`` raised more than ``max_retries`` times.
    """
    failures = 0
    start = clock()

    def _elapsed() -> float:
        return clock() - start

    def _tolerate(error: BaseException) -> bool:
        nonlocal failures
        if not isinstance(error, Exception):
            return False
        failures += 1
        if on_error is not None:
            on_error(error, failures)
        return failures <= max_retries

    def _budget_spent(retry_state: RetryCallState) -> bool:
        return _elapsed() + interval >= max_wait_time

    def _tick(retry_state: RetryCallState) -> None:
        if on_tick is not None:
            on_tick(_elapsed(), interval)

    retrying = Retrying(
        retry=retry_if_result(lambda done: done is not True) | retry_if_exception(_tolerate),
        stop=_budget_spent,
        wait=wait_fixed(interval),
        before_sleep=_tick,
        sleep=sleep,
    )

    try:
        retrying(check)
    except RetryError as e:
        elapsed = _elapsed()
        logger.warning(f"Gave up waiting after {elapsed:.0f}/{max_wait_time} seconds")
        raise WaitTimeoutError(elapsed, max_wait_time) from e
    except Exception as e:
        if failures > max_retries:
            logger.warning("Retries exceeded, aborting...")
            raise TransientPollError(failures, e) from e
        raise
