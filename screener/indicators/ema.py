"""
EMA (Exponential Moving Average) indicator module.

The EMA is iterated over every valid close in the series rather than a
fixed window, so longer histories give a better-converged value.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from screener.types import Candle, EmaReading


def valid_closes(candles: Sequence[Candle]) -> list[float]:
    """Closes that are finite and strictly positive, in series order."""
    closes = []
    for candle in candles:
        close = float(candle.close)
        if math.isfinite(close) and close > 0:
            closes.append(close)
    return closes


def _ema(closes: Sequence[float], period: int) -> Optional[float]:
    if len(closes) < period:
        return None

    k = 2 / (period + 1)
    ema = closes[0]
    for close in closes[1:]:
        ema = close * k + ema * (1 - k)

    if not math.isfinite(ema) or ema <= 0:
        return None
    return ema


def compute_ema(candles: Sequence[Candle], period: int, current_price: float) -> float:
    """
    Calculate the EMA of candle closes.

    Formula:
        k = 2 / (period + 1)
        EMA = close * k + EMA_prev * (1 - k), seeded with the first valid close

    Args:
        candles: Candles ordered oldest first
        period: EMA period
        current_price: Fallback value

    Returns:
        EMA value, or ``current_price`` when there are fewer than ``period``
        valid closes or the result is not a positive finite number

    Raises:
        ValueError: If period < 1
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    ema = _ema(valid_closes(candles), period)
    return current_price if ema is None else ema


def compute_ema_reading(
    candles: Sequence[Candle],
    period: int,
    current_price: float,
    *,
    fallback_from_close: bool = False,
) -> EmaReading:
    """EMA plus the distance of the latest close of the same series from it.

    When the EMA falls back to the current price, the distance is measured
    from the latest valid close if ``fallback_from_close`` is set and the
    series has one. Otherwise it is measured from the current price, which
    makes it 0.
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    closes = valid_closes(candles)
    ema = _ema(closes, period)
    if ema is None:
        reference = closes[-1] if fallback_from_close and closes else current_price
        return EmaReading(value=current_price, distance=(reference - current_price) / current_price * 100)

    return EmaReading(value=ema, distance=(closes[-1] - ema) / ema * 100)
