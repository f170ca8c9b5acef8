"""Indicator engine: candle series + open interest -> InstrumentRecord.

Pure computation; no I/O. ``build_record`` returns ``None`` for instruments
that fail the validity gate (thin volume or no prior-period close), which
usually means the contract is delisted or data-starved.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from screener.errors import InsufficientHistory
from screener.indicators.ema import compute_ema_reading, valid_closes
from screener.indicators.open_interest import OI_CHANGE_7D, OI_CHANGE_24H, compute_oi_change
from screener.indicators.returns import DAILY, MONTHLY, WEEKLY, compute_return
from screener.indicators.vwap import compute_vwap
from screener.indicators.zscore import compute_zscore
from screener.types import CandleSeries, InstrumentRecord, OpenInterestSnapshot, Ticker24h

logger = logging.getLogger(__name__)

EMA_PERIOD = 200
ZSCORE_LOOKBACK = 30
DEFAULT_MIN_QUOTE_VOLUME = 10_000.0


def _oi_change(
    open_interest: Optional[OpenInterestSnapshot],
    *,
    now_ms: int,
    window: tuple[int, int],
) -> Optional[float]:
    if open_interest is None or not open_interest.history:
        return None
    window_ms, tolerance_ms = window
    try:
        return compute_oi_change(
            open_interest.current,
            open_interest.history,
            now_ms=now_ms,
            window_ms=window_ms,
            tolerance_ms=tolerance_ms,
        )
    except InsufficientHistory:
        return None


def passes_validity_gate(ticker: Ticker24h, series: CandleSeries, *, min_quote_volume: float) -> bool:
    volume = float(ticker.quote_volume)
    if not math.isfinite(volume) or volume < min_quote_volume:
        return False

    coarse = series.coarse
    if not valid_closes(coarse):
        return False

    # Prior-period close must exist and be positive
    if len(coarse) < 2:
        return False
    prior_close = float(coarse[-2].close)
    return math.isfinite(prior_close) and prior_close > 0


def build_record(
    ticker: Ticker24h,
    series: CandleSeries,
    open_interest: Optional[OpenInterestSnapshot],
    *,
    now_ms: int,
    min_quote_volume: float = DEFAULT_MIN_QUOTE_VOLUME,
) -> Optional[InstrumentRecord]:
    """Compute every indicator for one instrument.

    Args:
        ticker: 24h ticker (live price and quote volume)
        series: Coarse (1d) and optional fine (4h) candles
        open_interest: Best-effort OI data, ``None`` when unavailable
        now_ms: Reference time for OI look-backs (ms since epoch)
        min_quote_volume: Validity floor for 24h quote volume

    Returns:
        InstrumentRecord, or None if the instrument fails the validity gate
    """
    current_price = float(ticker.last_price)
    if not math.isfinite(current_price) or current_price <= 0:
        return None

    if not passes_validity_gate(ticker, series, min_quote_volume=min_quote_volume):
        logger.debug("Dropping %s: failed validity gate", ticker.symbol)
        return None

    coarse = series.coarse

    try:
        z_score: Optional[float] = compute_zscore(coarse, current_price, lookback=ZSCORE_LOOKBACK)
    except InsufficientHistory as exc:
        logger.debug("No z-score for %s: %s", ticker.symbol, exc)
        z_score = None

    return InstrumentRecord(
        symbol=ticker.symbol,
        current_price=current_price,
        daily_return=compute_return(coarse, current_price, offset=DAILY),
        weekly_return=compute_return(coarse, current_price, offset=WEEKLY),
        monthly_return=compute_return(coarse, current_price, offset=MONTHLY),
        volume=float(ticker.quote_volume),
        vwap_7d=compute_vwap(coarse, current_price, window=7),
        vwap_30d=compute_vwap(coarse, current_price, window=30),
        vwap_90d=compute_vwap(coarse, current_price, window=90),
        vwap_365d=compute_vwap(coarse, current_price, window=365),
        ema200_4h=compute_ema_reading(series.fine, EMA_PERIOD, current_price),
        ema200_1d=compute_ema_reading(coarse, EMA_PERIOD, current_price, fallback_from_close=True),
        z_score=z_score,
        oi_change_24h=_oi_change(open_interest, now_ms=now_ms, window=OI_CHANGE_24H),
        oi_change_7d=_oi_change(open_interest, now_ms=now_ms, window=OI_CHANGE_7D),
    )
