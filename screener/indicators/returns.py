"""Rolling return indicator.

Usage:
    from screener.indicators.returns import DAILY, WEEKLY, MONTHLY, compute_return

    daily = compute_return(candles, current_price, offset=DAILY)
    monthly = compute_return(candles, current_price, offset=MONTHLY)
"""

from __future__ import annotations

import math
from typing import Sequence

from screener.types import Candle

# Reference close position, counted from the end of the series (1 = latest)
DAILY = 2
WEEKLY = 8
MONTHLY = 30


def compute_return(candles: Sequence[Candle], current_price: float, offset: int) -> float:
    """
    Percentage return of the live price against the close ``offset``
    candles from the end of the series.

    Formula:
        return = (current_price - close[n-offset]) / close[n-offset] * 100

    The latest candle is the current, still-forming period, so the daily
    return uses ``offset=2`` (the previous period's close). Weekly and
    monthly use 8 and 30.

    Args:
        candles: Candles ordered oldest first
        current_price: Live price
        offset: Position of the reference close from the end (>= 1)

    Returns:
        Return in percent, or 0.0 when there are fewer than ``offset``
        candles or the reference close is not a positive number

    Raises:
        ValueError: If offset < 1
    """
    if offset < 1:
        raise ValueError(f"offset must be >= 1, got {offset}")

    if len(candles) < offset:
        return 0.0

    reference = float(candles[-offset].close)
    if not math.isfinite(reference) or reference <= 0:
        return 0.0

    return (current_price - reference) / reference * 100
