"""
VWAP (Volume-Weighted Average Price) indicator module.

Usage:
    from screener.indicators.vwap import compute_vwap

    reading = compute_vwap(daily_candles, current_price, window=30)
    reading.value, reading.distance
"""

from __future__ import annotations

import math
from typing import Sequence

from screener.types import Candle, VwapReading


def compute_vwap(candles: Sequence[Candle], current_price: float, window: int) -> VwapReading:
    """
    Calculate VWAP over the trailing ``window`` candles and the distance of
    the current price from it.

    Formula:
        typical = (high + low + close) / 3
        VWAP = sum(typical * volume) / sum(volume)
        distance = (current_price - VWAP) / VWAP * 100

    Candles with non-finite values or negative volume are ignored. If the
    window holds no volume at all, VWAP falls back to the current price.

    Args:
        candles: Candles ordered oldest first
        current_price: Live price
        window: Number of trailing candles

    Returns:
        VwapReading(value, distance)

    Raises:
        ValueError: If window < 1
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")

    total_price_volume = 0.0
    total_volume = 0.0

    for candle in candles[-window:]:
        high = float(candle.high)
        low = float(candle.low)
        close = float(candle.close)
        volume = float(candle.volume)
        if not all(math.isfinite(v) for v in (high, low, close, volume)) or volume < 0:
            continue

        typical_price = (high + low + close) / 3
        total_price_volume += typical_price * volume
        total_volume += volume

    vwap = total_price_volume / total_volume if total_volume > 0 else current_price
    distance = (current_price - vwap) / vwap * 100 if vwap > 0 else 0.0

    return VwapReading(value=vwap, distance=distance)
