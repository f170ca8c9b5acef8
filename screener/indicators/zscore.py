"""Return z-score against the trailing distribution of daily returns."""

from __future__ import annotations

import math
from typing import Sequence

from screener.errors import InsufficientHistory
from screener.types import Candle


def compute_zscore(candles: Sequence[Candle], current_price: float, lookback: int = 30) -> float:
    """
    Standardize today's return against the last ``lookback`` day-over-day returns.

    Formula:
        r_i = (close_i - close_{i-1}) / close_{i-1} * 100   over the last lookback+1 candles
        mu, sigma = mean and population std-dev of r_i
        today = (current_price - close_last) / close_last * 100
        z = (mu - today) / sigma

    The sign is inverted from the textbook definition: a high z-score means
    the instrument is underperforming its recent mean.

    Raises:
        InsufficientHistory: Fewer than ``lookback`` valid returns, or sigma == 0
    """
    if len(candles) < lookback + 1:
        raise InsufficientHistory(f"need at least {lookback + 1} candles for z-score, got {len(candles)}")

    recent = candles[-(lookback + 1):]
    returns = []
    for prev, curr in zip(recent, recent[1:]):
        prev_close = float(prev.close)
        curr_close = float(curr.close)
        if not (math.isfinite(prev_close) and math.isfinite(curr_close)):
            continue
        if prev_close <= 0 or curr_close <= 0:
            continue
        returns.append((curr_close - prev_close) / prev_close * 100)

    if len(returns) < lookback:
        raise InsufficientHistory(f"need {lookback} valid daily returns, got {len(returns)}")

    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    std_dev = math.sqrt(variance)
    if std_dev <= 0:
        raise InsufficientHistory("daily returns have zero variance")

    last_close = float(candles[-1].close)
    today_return = (current_price - last_close) / last_close * 100

    z_score = (mean - today_return) / std_dev
    if not math.isfinite(z_score):
        raise InsufficientHistory("z-score is not finite")
    return z_score
