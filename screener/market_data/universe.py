"""Instrument universe resolution.

The universe is every currently tradeable perpetual contract quoted in the
configured asset, with a positive last price and 24h quote volume, ranked by
24h quote volume.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from screener.config import ScreenerConfig
from screener.errors import MalformedData, UpstreamUnavailable, is_transient_unavailable
from screener.market_data.binance_futures import BinanceFuturesClient
from screener.retry import RetryPolicy, retry_async
from screener.types import ContractInfo, Ticker24h

logger = logging.getLogger(__name__)


def eligible_symbols(contracts: Iterable[ContractInfo], *, contract_type: str, quote_asset: str) -> set[str]:
    """Symbols that are trading, of the target contract type and quote asset."""
    symbols = set()
    for contract in contracts:
        if contract.status != "TRADING" or contract.contract_type != contract_type:
            continue
        if contract.quote_asset is not None:
            if contract.quote_asset != quote_asset:
                continue
        elif not contract.symbol.endswith(quote_asset):
            continue
        symbols.add(contract.symbol)
    return symbols


def rank_tickers(tickers: Iterable[Ticker24h], eligible: set[str], *, limit: int) -> list[Ticker24h]:
    """Filter tickers to the eligible set and rank by quote volume.

    Ties are broken by symbol so the ranking is deterministic.
    """
    ranked = []
    for ticker in tickers:
        if ticker.symbol not in eligible:
            continue
        if not (ticker.last_price.is_finite() and ticker.last_price > 0):
            continue
        if not (ticker.quote_volume.is_finite() and ticker.quote_volume > 0):
            continue
        ranked.append(ticker)

    ranked.sort(key=lambda t: (-t.quote_volume, t.symbol))
    return ranked[:limit]


async def resolve_universe(client: BinanceFuturesClient, config: ScreenerConfig) -> Sequence[Ticker24h]:
    """Resolve the ranked instrument universe.

    Network errors and 5xx responses get a bounded retry; ``RateLimited``
    propagates immediately so the caller can back off.

    Raises:
        RateLimited: If either upstream call is rate limited
        UpstreamUnavailable: If either upstream call fails or returns garbage
    """
    policy = RetryPolicy(
        max_attempts=config.universe_max_attempts,
        base_delay=config.universe_base_delay,
        max_delay=config.max_backoff_seconds,
    )

    try:
        contracts = await retry_async(
            client.exchange_info,
            policy=policy,
            should_retry=is_transient_unavailable,
            label="exchangeInfo",
        )
        tickers = await retry_async(
            client.tickers_24h,
            policy=policy,
            should_retry=is_transient_unavailable,
            label="ticker/24hr",
        )
    except MalformedData as exc:
        raise UpstreamUnavailable(f"Universe metadata unusable: {exc}") from exc

    eligible = eligible_symbols(contracts, contract_type=config.contract_type, quote_asset=config.quote_asset)
    ranked = rank_tickers(tickers, eligible, limit=config.universe_size)
    logger.info(
        "Resolved universe: %d eligible contracts, %d ranked tickers (limit %d)",
        len(eligible),
        len(ranked),
        config.universe_size,
    )
    return ranked
