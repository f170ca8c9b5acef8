"""Open interest percentage change over a look-back window."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Optional, Sequence

from screener.errors import InsufficientHistory
from screener.types import OpenInterestPoint

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

# window -> tolerance around (now - window) for picking the past reading
OI_CHANGE_24H = (DAY_MS, 2 * HOUR_MS)
OI_CHANGE_7D = (7 * DAY_MS, 12 * HOUR_MS)


def find_reading_near(
    history: Sequence[OpenInterestPoint],
    target_ms: int,
    tolerance_ms: int,
) -> Optional[OpenInterestPoint]:
    """Positive reading closest to ``target_ms`` within ``tolerance_ms``."""
    best: Optional[OpenInterestPoint] = None
    best_diff = tolerance_ms
    for point in history:
        value = point.sum_open_interest
        if not (value.is_finite() and value > 0):
            continue
        diff = abs(point.timestamp - target_ms)
        if diff < best_diff:
            best = point
            best_diff = diff
    return best


def compute_oi_change(
    current: Decimal,
    history: Sequence[OpenInterestPoint],
    *,
    now_ms: int,
    window_ms: int,
    tolerance_ms: int,
) -> float:
    """
    Percentage change of open interest since ``now - window``.

    Formula:
        change = (current - past) / past * 100

    Raises:
        InsufficientHistory: No positive reading within the tolerance, or the
            current value is not positive
    """
    if not (current.is_finite() and current > 0):
        raise InsufficientHistory(f"current open interest is not positive: {current}")

    past = find_reading_near(history, now_ms - window_ms, tolerance_ms)
    if past is None:
        raise InsufficientHistory(f"no open interest reading within {tolerance_ms}ms of the window start")

    past_value = float(past.sum_open_interest)
    change = (float(current) - past_value) / past_value * 100
    if not math.isfinite(change):
        raise InsufficientHistory("open interest change is not finite")
    return change
