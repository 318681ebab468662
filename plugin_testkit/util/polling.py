"""
Bounded polling for eventually-consistent cluster state.

The orchestrator never retries a failed external command on its own; the
only places it waits on an external actor are the conditions polled here
(pod scheduling, rollout, resource creation, namespace deletion). A poll
that runs out of time raises ClusterConditionTimeoutError carrying the
last observed failure.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from plugin_testkit.exceptions import ClusterConditionTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollSettings:
    """Timeout and interval (seconds) for one polled condition."""

    timeout: float = 60.0
    interval: float = 1.0


class ConditionNotMet(Exception):
    """Raised by a check to signal that the condition is not met yet."""

    pass


def poll_until(
    check: Callable[[], T],
    description: str,
    settings: PollSettings = PollSettings(),
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[Exception, int], None] | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``check`` at a fixed interval until it returns without raising.

    Args:
        check: Callable evaluating the condition. It signals "not yet" by
            raising (ConditionNotMet or any of ``retryable_exceptions``).
        description: Human-readable condition, used in logs and errors
        settings: Timeout and interval
        retryable_exceptions: Exceptions that mean "try again"
        on_retry: Optional callback called on each failed attempt: (error, attempt)
        clock: Monotonic clock (injectable for tests)
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``check`` returned on its first successful call

    Raises:
        ClusterConditionTimeoutError: If the timeout elapses first

    Example:
        poll_until(
            lambda: ensure_operator_running(kubectl),
            "controller pod to be running",
            PollSettings(timeout=120, interval=1),
        )
    """
    deadline = clock() + settings.timeout
    attempt = 0
    last_exception: Exception | None = None

    while True:
        attempt += 1
        try:
            return check()
        except (ConditionNotMet, *retryable_exceptions) as e:
            last_exception = e
            logger.debug("Waiting for %s (attempt %d): %s", description, attempt, e)

            if on_retry is not None:
                on_retry(e, attempt)

        if clock() >= deadline:
            break

        sleep(settings.interval)

    raise ClusterConditionTimeoutError(description, settings.timeout, last_exception)


def poll_for_output(
    fetch: Callable[[], str],
    predicate: Callable[[str], bool],
    description: str,
    settings: PollSettings = PollSettings(),
    **kwargs,
) -> str:
    """
    Poll ``fetch`` until ``predicate`` accepts its output.

    Returns:
        The accepted output
    """

    def check() -> str:
        output = fetch()
        if not predicate(output):
            raise ConditionNotMet(f"unexpected output: {output.strip()[:200]!r}")
        return output

    return poll_until(check, description, settings, **kwargs)
