from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests.exceptions

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryableHTTPError(requests.exceptions.HTTPError):
    """Raised for 5xx responses that carry no SOAP answer and are safe to retry."""


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a fixed delay between them."""

    max_attempts: int
    delay: float
    retryable_exceptions: tuple[type[Exception], ...]
    retryable_status_codes: frozenset[int] = field(default_factory=frozenset)


AEAT_SUBMIT = RetryPolicy(
    max_attempts=3,
    delay=2.0,
    retryable_exceptions=(
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        RetryableHTTPError,
    ),
    retryable_status_codes=frozenset(range(500, 600)),
)

AEAT_CONNECTIVITY = RetryPolicy(
    max_attempts=2,
    delay=1.0,
    retryable_exceptions=(requests.exceptions.ConnectionError,),
)


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep_func: Callable[[float], object] = time.sleep,
) -> T:
    """Execute *func()* with retry per *policy*, re-raising on exhaustion."""
    last_exc: Exception | None = None
    for attempt in range(policy.max_attempts):
        try:
            return func()
        except policy.retryable_exceptions as exc:
            last_exc = exc
            if attempt < policy.max_attempts - 1:
                logger.warning(
                    "Retry %d/%d after %s (%.1fs delay)",
                    attempt + 1,
                    policy.max_attempts,
                    type(exc).__name__,
                    policy.delay,
                )
                sleep_func(policy.delay)
    raise last_exc  # type: ignore[misc]
