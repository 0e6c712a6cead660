from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from summary_app.exceptions import CompletionError, DeadlineExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    """Bounded exponential backoff for completion calls.

    Only ``CompletionError`` subclasses flagged ``retryable`` (timeouts, 429,
    5xx) are retried. Terminal errors propagate on the first attempt.
    With a ``deadline`` (a ``clock()`` value) no attempt starts after it, and
    a retry whose backoff would end past it is not taken.
    """

    max_retries: int = 2
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def delay_for(self, attempt: int) -> float:
        return min(2 ** attempt * self.base_delay_seconds, self.max_delay_seconds)

    def remaining(self, deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return deadline - self.clock()

    def call(
        self,
        fn: Callable[[], T],
        *,
        label: str = "completion",
        deadline: float | None = None,
    ) -> tuple[T, int]:
        """Run ``fn`` until it succeeds; returns ``(result, attempts)``."""
        for attempt in range(self.max_retries + 1):
            remaining = self.remaining(deadline)
            if remaining is not None and remaining <= 0:
                exc = DeadlineExceededError(f"{label}: deadline passed before attempt {attempt + 1}")
                exc.attempts = attempt
                raise exc
            try:
                return fn(), attempt + 1
            except CompletionError as exc:
                if not exc.retryable or attempt >= self.max_retries:
                    exc.attempts = attempt + 1
                    raise
                delay = self.delay_for(attempt)
                remaining = self.remaining(deadline)
                if remaining is not None and remaining <= delay:
                    logger.warning("%s retryable error: %s; no time left before deadline", label, exc)
                    exc.attempts = attempt + 1
                    raise
                logger.warning(
                    "%s retryable error: %s attempt=%d/%d backoff=%.2fs",
                    label, exc, attempt + 1, self.max_retries + 1, delay,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")
