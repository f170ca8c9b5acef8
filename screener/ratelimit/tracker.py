"""Upstream request-weight tracking.

Binance meters REST traffic per IP in request weight over a rolling minute
and reports the running total in ``X-MBX-USED-WEIGHT-1M``. The client feeds
every observed header into the tracker; the pipeline consults it between
batches.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Optional

WEIGHT_ENDPOINT = "weight_1m"


@dataclass(frozen=True)
class RateLimitInfo:
    """Budget state for one exchange/endpoint key."""

    exchange: str
    endpoint: str
    limit: int
    remaining: int
    reset_at: float  # Unix timestamp when the window rolls over
    window_seconds: int = 60

    @property
    def used(self) -> int:
        return self.limit - self.remaining

    @property
    def usage_percent(self) -> float:
        if self.limit == 0:
            return 0.0
        return (self.used / self.limit) * 100

    @property
    def reset_in_seconds(self) -> int:
        return max(0, int(math.ceil(self.reset_at - time.time())))

    @property
    def status(self) -> str:
        """ok, warning (>=70%) or critical (>=90%)."""
        usage = self.usage_percent
        if usage >= 90:
            return "critical"
        elif usage >= 70:
            return "warning"
        return "ok"


@dataclass
class RateLimitTracker:
    """Thread-safe rate limit tracker."""

    _limits: dict[str, RateLimitInfo] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def _make_key(self, exchange: str, endpoint: str) -> str:
        return f"{exchange}:{endpoint}"

    def update(
        self,
        exchange: str,
        endpoint: str,
        limit: int,
        remaining: int,
        reset_at: float,
        window_seconds: int = 60,
    ) -> None:
        key = self._make_key(exchange, endpoint)
        with self._lock:
            self._limits[key] = RateLimitInfo(
                exchange=exchange,
                endpoint=endpoint,
                limit=limit,
                remaining=max(0, remaining),
                reset_at=reset_at,
                window_seconds=window_seconds,
            )

    def record_used_weight(
        self,
        exchange: str,
        used_weight: int,
        limit: int,
        *,
        now: float | None = None,
        window_seconds: int = 60,
    ) -> None:
        """Record a used-weight reading; the window resets on the next minute boundary."""
        now = time.time() if now is None else now
        reset_at = (math.floor(now / window_seconds) + 1) * window_seconds
        self.update(
            exchange,
            WEIGHT_ENDPOINT,
            limit=limit,
            remaining=limit - used_weight,
            reset_at=reset_at,
            window_seconds=window_seconds,
        )

    def get(self, exchange: str, endpoint: str = WEIGHT_ENDPOINT) -> Optional[RateLimitInfo]:
        key = self._make_key(exchange, endpoint)
        with self._lock:
            return self._limits.get(key)

    def get_all(self, exchange: Optional[str] = None) -> list[RateLimitInfo]:
        """All tracked entries, optionally filtered by exchange."""
        with self._lock:
            limits = list(self._limits.values())

        if exchange:
            limits = [info for info in limits if info.exchange == exchange]

        return sorted(limits, key=lambda x: (x.exchange, x.endpoint))

    def should_throttle(self, exchange: str, endpoint: str = WEIGHT_ENDPOINT, threshold: float = 0.9) -> bool:
        info = self.get(exchange, endpoint)
        if not info or info.reset_at < time.time():
            return False
        return info.usage_percent >= (threshold * 100)

    def throttle_delay(self, exchange: str, endpoint: str = WEIGHT_ENDPOINT, threshold: float = 0.9) -> float:
        """Seconds to wait before the budget frees up, or 0 when under threshold."""
        if not self.should_throttle(exchange, endpoint, threshold):
            return 0.0
        info = self.get(exchange, endpoint)
        return float(info.reset_in_seconds) if info else 0.0

    def clear_expired(self) -> None:
        now = time.time()
        with self._lock:
            expired_keys = [key for key, info in self._limits.items() if info.reset_at < now]
            for key in expired_keys:
                del self._limits[key]

    def clear(self) -> None:
        with self._lock:
            self._limits.clear()


# Process-wide tracker shared by REST clients and the status route
_tracker = RateLimitTracker()


def get_tracker() -> RateLimitTracker:
    return _tracker
