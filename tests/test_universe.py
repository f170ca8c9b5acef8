"""Tests for universe resolution."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from screener.errors import RateLimited, UpstreamUnavailable
from screener.market_data.binance_futures import BinanceFuturesClient
from screener.market_data.universe import eligible_symbols, rank_tickers, resolve_universe
from screener.types import ContractInfo, Ticker24h


def _ticker(symbol: str, volume: str, price: str = "1") -> Ticker24h:
    return Ticker24h(symbol=symbol, last_price=Decimal(price), quote_volume=Decimal(volume))


def test_eligible_symbols_filters_status_type_and_quote():
    contracts = [
        ContractInfo("BTCUSDT", "TRADING", "PERPETUAL", "USDT"),
        ContractInfo("LUNAUSDT", "SETTLING", "PERPETUAL", "USDT"),
        ContractInfo("BTCUSDT_240329", "TRADING", "CURRENT_QUARTER", "USDT"),
        ContractInfo("ETHUSDC", "TRADING", "PERPETUAL", "USDC"),
        ContractInfo("SOLUSDT", "TRADING", "PERPETUAL", None),
        ContractInfo("SOLBUSD", "TRADING", "PERPETUAL", None),
    ]

    assert eligible_symbols(contracts, contract_type="PERPETUAL", quote_asset="USDT") == {"BTCUSDT", "SOLUSDT"}


def test_rank_tickers_orders_by_volume_and_limits():
    tickers = [
        _ticker("AUSDT", "100"),
        _ticker("BUSDT", "300"),
        _ticker("CUSDT", "200"),
        _ticker("DUSDT", "999"),
    ]

    ranked = rank_tickers(tickers, {"AUSDT", "BUSDT", "CUSDT"}, limit=2)

    assert [t.symbol for t in ranked] == ["BUSDT", "CUSDT"]


def test_rank_tickers_breaks_ties_by_symbol():
    tickers = [_ticker("ZUSDT", "100"), _ticker("AUSDT", "100")]

    ranked = rank_tickers(tickers, {"AUSDT", "ZUSDT"}, limit=10)

    assert [t.symbol for t in ranked] == ["AUSDT", "ZUSDT"]


def test_rank_tickers_drops_non_positive_values():
    tickers = [
        _ticker("AUSDT", "0"),
        _ticker("BUSDT", "100", price="0"),
        _ticker("CUSDT", "100", price="-1"),
        _ticker("DUSDT", "100"),
    ]

    ranked = rank_tickers(tickers, {"AUSDT", "BUSDT", "CUSDT", "DUSDT"}, limit=10)

    assert [t.symbol for t in ranked] == ["DUSDT"]


@pytest.mark.asyncio
async def test_resolve_universe_excludes_non_trading(fake_binance, fast_config, tracker):
    fake_binance.add_symbol("BTCUSDT", price=50000, volume=2e9)
    fake_binance.add_symbol("OLDUSDT", price=1, volume=9e9, status="SETTLING")
    fake_binance.add_symbol("ETHUSDT", price=3000, volume=1e9)

    async with BinanceFuturesClient(fast_config, transport=fake_binance.transport(), tracker=tracker) as client:
        universe = await resolve_universe(client, fast_config)

    assert [t.symbol for t in universe] == ["BTCUSDT", "ETHUSDT"]


@pytest.mark.asyncio
async def test_resolve_universe_respects_size(fake_binance, fast_config, tracker):
    for i in range(5):
        fake_binance.add_symbol(f"S{i}USDT", price=1, volume=1000 * (i + 1))
    config = replace(fast_config, universe_size=3)

    async with BinanceFuturesClient(config, transport=fake_binance.transport(), tracker=tracker) as client:
        universe = await resolve_universe(client, config)

    assert [t.symbol for t in universe] == ["S4USDT", "S3USDT", "S2USDT"]


@pytest.mark.asyncio
async def test_resolve_universe_retries_server_errors(fake_binance, fast_config, tracker):
    fake_binance.add_symbol("BTCUSDT", price=1, volume=1)
    fake_binance.fail("/fapi/v1/exchangeInfo", 502, times=1)

    async with BinanceFuturesClient(fast_config, transport=fake_binance.transport(), tracker=tracker) as client:
        universe = await resolve_universe(client, fast_config)

    assert [t.symbol for t in universe] == ["BTCUSDT"]
    assert fake_binance.count("/fapi/v1/exchangeInfo") == 2


@pytest.mark.asyncio
async def test_resolve_universe_gives_up_after_attempts(fake_binance, fast_config, tracker):
    fake_binance.fail("/fapi/v1/ticker/24hr", 500)

    async with BinanceFuturesClient(fast_config, transport=fake_binance.transport(), tracker=tracker) as client:
        with pytest.raises(UpstreamUnavailable):
            await resolve_universe(client, fast_config)

    assert fake_binance.count("/fapi/v1/ticker/24hr") == fast_config.universe_max_attempts


@pytest.mark.asyncio
async def test_resolve_universe_does_not_retry_rate_limits(fake_binance, fast_config, tracker):
    fake_binance.fail("/fapi/v1/exchangeInfo", 429)

    async with BinanceFuturesClient(fast_config, transport=fake_binance.transport(), tracker=tracker) as client:
        with pytest.raises(RateLimited):
            await resolve_universe(client, fast_config)

    assert fake_binance.count("/fapi/v1/exchangeInfo") == 1


@pytest.mark.asyncio
async def test_resolve_universe_malformed_metadata(fast_config, tracker):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    async with BinanceFuturesClient(fast_config, transport=httpx.MockTransport(handler), tracker=tracker) as client:
        with pytest.raises(UpstreamUnavailable, match="unusable"):
            await resolve_universe(client, fast_config)
