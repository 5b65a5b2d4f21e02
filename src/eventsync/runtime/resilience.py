"""
eventsync.runtime.resilience

Shared resilience utilities: retries, per-host politeness delays.
"""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 4
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 0.5
    max_delay_s: float = 30.0
    jitter: float = 0.25
    retry_on_status: tuple[int, ...] = (408, 429, 500, 502, 503, 504)

    def compute_backoff_s(self, attempt: int) -> float:
        """
        attempt: 1..N
        """
        if self.backoff_mode == "none":
            return 0.0
        if self.backoff_mode == "fixed":
            delay = self.base_delay_s
        else:
            delay = self.base_delay_s * (2 ** max(0, attempt - 1))

        delay = min(delay, self.max_delay_s)
        if self.jitter > 0:
            delay = delay * (1.0 + (random.random() * 2 - 1) * self.jitter)  # +- jitter
        return max(0.0, delay)

    def should_retry_status(self, status_code: int | None) -> bool:
        return status_code is not None and status_code in self.retry_on_status


class RateLimiter:
    """
    Fixed delay plus random jitter between consecutive calls.

    Thread-safe: concurrent callers sharing one limiter are serialized.
    """

    def __init__(self, *, min_delay_s: float = 0.0, jitter_s: float = 0.0) -> None:
        self.min_delay_s = min_delay_s or 0.0
        self.jitter_s = jitter_s or 0.0
        self._last_call_s: float = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            now = time.monotonic()
            since_last = now - self._last_call_s
            target_delay = self.min_delay_s + (
                random.random() * self.jitter_s if self.jitter_s else 0.0
            )
            if self._last_call_s and target_delay > since_last:
                time.sleep(target_delay - since_last)
            self._last_call_s = time.monotonic()


class HostRateLimiter:
    """One RateLimiter per host, created on first use."""

    def __init__(self, *, min_delay_s: float = 0.0, jitter_s: float = 0.0) -> None:
        self.min_delay_s = min_delay_s
        self.jitter_s = jitter_s
        self._limiters: dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def for_url(self, url: str) -> RateLimiter:
        host = (urlparse(url).hostname or "").lower()
        with self._lock:
            limiter = self._limiters.get(host)
            if limiter is None:
                limiter = RateLimiter(min_delay_s=self.min_delay_s, jitter_s=self.jitter_s)
                self._limiters[host] = limiter
            return limiter

    def wait(self, url: str) -> None:
        self.for_url(url).wait()
