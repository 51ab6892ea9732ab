from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from graph_alert_collector.utils.logging import get_logger

T = TypeVar("T")

log = get_logger("graph_alert_collector.http.policies")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for throttled responses.

    Delays start at ``initial_delay_ms`` and grow by ``factor`` per retry.
    Once the next delay would pass ``max_delay_ms`` the policy gives up and
    the last response is handed back untouched.
    """

    initial_delay_ms: int = 1000
    max_delay_ms: int = 32000
    factor: int = 2
    retry_statuses: tuple[int, ...] = (429,)

    def __post_init__(self) -> None:
        if self.initial_delay_ms <= 0:
            raise ValueError("initial_delay_ms must be positive")
        if self.factor < 2:
            raise ValueError("factor must be at least 2")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")

    def is_retryable(self, status_code: int) -> bool:
        return status_code in self.retry_statuses


def backoff_delays(policy: RetryPolicy) -> Iterator[int]:
    """Yield the wait in milliseconds before each retry: 1000, 2000, ... up to the cap."""
    delay = policy.initial_delay_ms
    while delay <= policy.max_delay_ms:
        yield delay
        delay *= policy.factor


def call_with_backoff(
    send: Callable[[], T],
    status_of: Callable[[T], int],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``send`` until it returns a non-retryable status or the backoff budget runs out.

    Exceptions raised by ``send`` propagate immediately; only statuses are retried.
    """
    delays = backoff_delays(policy)
    while True:
        result = send()
        status = status_of(result)
        if not policy.is_retryable(status):
            return result

        delay_ms = next(delays, None)
        if delay_ms is None:
            log.warning("Backoff budget exhausted (status=%s), returning last response", status)
            return result

        log.warning("Rate limited (status=%s), retrying in %sms", status, delay_ms)
        sleep(delay_ms / 1000.0)
