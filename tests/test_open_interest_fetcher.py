"""Tests for best-effort open interest fetching."""

from __future__ import annotations

from decimal import Decimal

import pytest

from screener.indicators.engine import build_record
from screener.market_data.binance_futures import BinanceFuturesClient
from screener.market_data.open_interest import fetch_open_interest, fetch_open_interest_history
from screener.market_data.series import fetch_series

HOUR = 3_600_000


def _client(fake_binance, config, tracker) -> BinanceFuturesClient:
    return BinanceFuturesClient(config, transport=fake_binance.transport(), tracker=tracker)


@pytest.mark.asyncio
async def test_fetch_open_interest_with_hourly_history(fake_binance, fast_config, tracker):
    fake_binance.add_symbol(
        "BTCUSDT",
        price=1,
        volume=1,
        open_interest="500",
        oi_history={"1h": [(0, "400"), (HOUR, "450")]},
    )

    async with _client(fake_binance, fast_config, tracker) as client:
        snapshot = await fetch_open_interest(client, "BTCUSDT", fast_config)

    assert snapshot is not None
    assert snapshot.current == Decimal("500")
    assert snapshot.period == "1h"
    assert len(snapshot.history) == 2


@pytest.mark.asyncio
async def test_history_falls_back_to_next_granularity(fake_binance, fast_config, tracker):
    # No hourly history: the empty 1h answer moves on to 5m
    fake_binance.add_symbol("BTCUSDT", price=1, volume=1, oi_history={"5m": [(0, "10")]})

    async with _client(fake_binance, fast_config, tracker) as client:
        period, history = await fetch_open_interest_history(client, "BTCUSDT", fast_config)

    assert period == "5m"
    assert len(history) == 1
    assert fake_binance.count("/futures/data/openInterestHist", period="1h") == 1


@pytest.mark.asyncio
async def test_history_unavailable_everywhere(fake_binance, fast_config, tracker):
    fake_binance.fail("/futures/data/openInterestHist", 500)

    async with _client(fake_binance, fast_config, tracker) as client:
        period, history = await fetch_open_interest_history(client, "BTCUSDT", fast_config)

    assert period is None
    assert history == ()


@pytest.mark.asyncio
async def test_missing_current_open_interest_returns_none(fake_binance, fast_config, tracker):
    fake_binance.add_symbol("BTCUSDT", price=1, volume=1)

    async with _client(fake_binance, fast_config, tracker) as client:
        assert await fetch_open_interest(client, "BTCUSDT", fast_config) is None

    assert fake_binance.count("/futures/data/openInterestHist") == 0


@pytest.mark.asyncio
async def test_zero_current_open_interest_returns_none(fake_binance, fast_config, tracker):
    fake_binance.add_symbol("BTCUSDT", price=1, volume=1, open_interest="0")

    async with _client(fake_binance, fast_config, tracker) as client:
        assert await fetch_open_interest(client, "BTCUSDT", fast_config) is None


@pytest.mark.asyncio
async def test_rate_limited_open_interest_is_retried_then_dropped(fake_binance, fast_config, tracker):
    fake_binance.add_symbol("BTCUSDT", price=1, volume=1, open_interest="100")
    fake_binance.fail("/fapi/v1/openInterest", 429)

    async with _client(fake_binance, fast_config, tracker) as client:
        assert await fetch_open_interest(client, "BTCUSDT", fast_config) is None

    assert fake_binance.count("/fapi/v1/openInterest") == fast_config.oi_max_attempts


@pytest.mark.asyncio
async def test_history_server_error_leaves_only_oi_fields_absent(fake_binance, fast_config, tracker, make_ticker):
    closes = [100.0 if i % 2 == 0 else 110.0 for i in range(40)]
    fake_binance.add_symbol(
        "BTCUSDT",
        price=105,
        volume=5_000_000,
        closes=closes,
        fine_closes=[100.0] * 210,
        open_interest="1000",
    )
    fake_binance.fail("/futures/data/openInterestHist", 500)

    async with _client(fake_binance, fast_config, tracker) as client:
        series = await fetch_series(client, "BTCUSDT", fast_config)
        open_interest = await fetch_open_interest(client, "BTCUSDT", fast_config)

    record = build_record(make_ticker(price=105.0, volume=5_000_000.0), series, open_interest, now_ms=40 * 24 * HOUR)

    assert record is not None
    assert record.oi_change_24h is None
    assert record.oi_change_7d is None
    assert record.z_score is not None
    assert record.daily_return != 0.0
    assert record.ema200_4h.value == pytest.approx(100.0)
