from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from threading import Lock
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PacingDecision:
    allowed: bool
    limit: int
    remaining: int
    wait_seconds: float


class RequestPacer:
    """In-memory per-key sliding-window pacer for outbound completion calls.

    Keys are usually model names, so a strong and a regular model are paced
    independently. The pacer is process-local; it does not coordinate with
    other workers hitting the same provider account.
    """

    def __init__(
        self,
        requests_per_window: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_window <= 0:
            raise ValueError("requests_per_window must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self._requests_per_window = requests_per_window
        self._window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._events: dict[str, deque[float]] = {}

    def try_acquire(self, key: str = "default", now_seconds: float | None = None) -> PacingDecision:
        now = now_seconds if now_seconds is not None else self._clock()

        with self._lock:
            bucket = self._events.setdefault(key, deque())
            cutoff = now - self._window_seconds

            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= self._requests_per_window:
                return PacingDecision(
                    allowed=False,
                    limit=self._requests_per_window,
                    remaining=0,
                    wait_seconds=max(bucket[0] + self._window_seconds - now, 0.0),
                )

            bucket.append(now)
            return PacingDecision(
                allowed=True,
                limit=self._requests_per_window,
                remaining=self._requests_per_window - len(bucket),
                wait_seconds=0.0,
            )

    def acquire(self, key: str = "default") -> float:
        """Block until a slot is free for ``key``; returns the total time waited."""
        waited = 0.0
        while True:
            decision = self.try_acquire(key)
            if decision.allowed:
                return waited
            logger.info("pacing %s: window full, waiting %.2fs", key, decision.wait_seconds)
            # Small floor so a zero wait never spins.
            delay = max(decision.wait_seconds, 0.01)
            self._sleep(delay)
            waited += delay
