"""Upstream market data: exchange client, universe, candles and open interest."""

from screener.market_data.binance_futures import EXCHANGE_NAME, BinanceFuturesClient
from screener.market_data.open_interest import fetch_open_interest
from screener.market_data.series import fetch_series
from screener.market_data.universe import resolve_universe

__all__ = [
    "EXCHANGE_NAME",
    "BinanceFuturesClient",
    "fetch_open_interest",
    "fetch_series",
    "resolve_universe",
]
