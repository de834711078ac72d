# authguard/app/security/rate_limit.py
"""
Fixed-window request counting keyed by (client identity, endpoint).

The counter table is process-local and may be lost on restart. For
multi-instance deployments put a shared atomic-increment store behind
the same check_and_increment() contract.

Expired windows are swept whenever the table doubles past its last
swept size, so it stays proportional to the number of live windows.

Known limitation: a burst straddling a window boundary can pass up to
2 x max_requests in a short span.
"""
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from authguard.app.schemas.security import RateLimitResult


@dataclass(frozen=True)
class RateLimitRule:
    """Per endpoint-class limit, supplied by the caller."""
    window_ms: int = 60 * 1000
    max_requests: int = 100


@dataclass
class _Window:
    count: int
    reset_at_ms: float


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.time, sweep_threshold: int = 1024):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}
        self._sweep_threshold = sweep_threshold
        self._next_sweep = sweep_threshold

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def check_and_increment(
        self,
        client_id: str,
        endpoint: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        key = f"{client_id}:{endpoint}"
        now = self._now_ms()

        with self._lock:
            window = self._windows.get(key)

            if window is None and len(self._windows) >= self._next_sweep:
                self._sweep(now)
                self._next_sweep = max(self._sweep_threshold, 2 * len(self._windows))

            if window is None or now > window.reset_at_ms:
                # First request or window expired
                self._windows[key] = _Window(count=1, reset_at_ms=now + window_ms)
                return RateLimitResult(
                    allowed=True,
                    remaining=max(0, max_requests - 1),
                    limit=max_requests,
                )

            if window.count >= max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after_seconds=max(1, math.ceil((window.reset_at_ms - now) / 1000)),
                    limit=max_requests,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=max_requests - window.count,
                limit=max_requests,
            )

    def check(self, client_id: str, endpoint: str, rule: RateLimitRule) -> RateLimitResult:
        return self.check_and_increment(client_id, endpoint, rule.window_ms, rule.max_requests)

    def prune(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        with self._lock:
            return self._sweep(self._now_ms())

    def _sweep(self, now: float) -> int:
        # Caller holds the lock
        expired = [key for key, window in self._windows.items() if now > window.reset_at_ms]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_sweep = self._sweep_threshold

    @property
    def tracked_windows(self) -> int:
        return len(self._windows)
