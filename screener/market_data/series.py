"""Historical candle fetching for one symbol.

The coarse (daily) series is mandatory; the fine (4h) series is optional and
degrades to an empty tuple when its fetch fails.
"""

from __future__ import annotations

import asyncio
import logging

from screener.config import ScreenerConfig
from screener.errors import ScreenerError
from screener.market_data.binance_futures import BinanceFuturesClient
from screener.retry import RetryPolicy, retry_async
from screener.types import Candle, CandleSeries

logger = logging.getLogger(__name__)


def price_retry_policy(config: ScreenerConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.price_max_attempts,
        base_delay=config.price_base_delay,
        max_delay=config.max_backoff_seconds,
    )


async def _fetch_klines(
    client: BinanceFuturesClient,
    symbol: str,
    interval: str,
    config: ScreenerConfig,
) -> list[Candle]:
    # Only rate limiting is retried; anything else fails the fetch at once
    return await retry_async(
        lambda: client.klines(symbol, interval, limit=config.candle_limit),
        policy=price_retry_policy(config),
        label=f"klines {symbol} {interval}",
    )


async def fetch_series(client: BinanceFuturesClient, symbol: str, config: ScreenerConfig) -> CandleSeries:
    """Fetch coarse and fine candles concurrently.

    Raises:
        ScreenerError: If the coarse fetch fails
    """
    coarse_result, fine_result = await asyncio.gather(
        _fetch_klines(client, symbol, config.coarse_interval, config),
        _fetch_klines(client, symbol, config.fine_interval, config),
        return_exceptions=True,
    )

    if isinstance(coarse_result, BaseException):
        raise coarse_result

    if isinstance(fine_result, ScreenerError):
        if fine_result.rate_limited:
            logger.debug("Rate limited on %s klines for %s, continuing without", config.fine_interval, symbol)
        else:
            logger.warning(
                "Failed to fetch %s klines for %s, continuing without: %s",
                config.fine_interval,
                symbol,
                fine_result,
            )
        fine: tuple[Candle, ...] = ()
    elif isinstance(fine_result, BaseException):
        raise fine_result
    else:
        fine = tuple(fine_result)

    return CandleSeries(symbol=symbol, coarse=tuple(coarse_result), fine=fine)
