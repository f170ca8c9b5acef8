"""Best-effort open interest fetching.

Open interest is optional: every failure (timeout, rate limit, malformed
payload, missing endpoint) yields ``None`` or an empty history instead of an
error, so it never affects the rest of an instrument's record.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from screener.config import ScreenerConfig
from screener.errors import ScreenerError
from screener.market_data.binance_futures import BinanceFuturesClient
from screener.retry import RetryPolicy, retry_async
from screener.types import OpenInterestPoint, OpenInterestSnapshot

logger = logging.getLogger(__name__)

# (period, limit) candidates tried in order; the first usable series wins
HISTORY_CANDIDATES: tuple[tuple[str, int], ...] = (
    ("1h", 200),
    ("5m", 300),
    ("1d", 10),
)


def _oi_policy(config: ScreenerConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.oi_max_attempts,
        base_delay=config.oi_base_delay,
        max_delay=config.max_backoff_seconds,
    )


async def fetch_open_interest_history(
    client: BinanceFuturesClient,
    symbol: str,
    config: ScreenerConfig,
    candidates: Sequence[tuple[str, int]] = HISTORY_CANDIDATES,
) -> tuple[Optional[str], tuple[OpenInterestPoint, ...]]:
    """Try each candidate granularity until one returns usable history.

    Returns:
        (period, points); ``(None, ())`` when no candidate succeeds
    """
    policy = _oi_policy(config)
    for period, limit in candidates:
        try:
            points = await retry_async(
                lambda: client.open_interest_history(symbol, period=period, limit=limit),
                policy=policy,
                label=f"openInterestHist {symbol} {period}",
            )
        except ScreenerError as exc:
            logger.debug("OI history %s for %s unavailable: %s", period, symbol, exc)
            continue
        if points:
            return period, tuple(points)
    return None, ()


async def fetch_open_interest(
    client: BinanceFuturesClient,
    symbol: str,
    config: ScreenerConfig,
) -> Optional[OpenInterestSnapshot]:
    """Current open interest plus history, or ``None`` if current OI is unavailable."""
    try:
        current = await retry_async(
            lambda: client.open_interest(symbol),
            policy=_oi_policy(config),
            label=f"openInterest {symbol}",
        )
    except ScreenerError as exc:
        logger.debug("Current OI for %s unavailable: %s", symbol, exc)
        return None

    if not (current.is_finite() and current > 0):
        return None

    period, history = await fetch_open_interest_history(client, symbol, config)
    if not history:
        logger.debug("No OI history for %s", symbol)
    return OpenInterestSnapshot(symbol=symbol, current=current, history=history, period=period)
