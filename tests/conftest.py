"""Shared test fixtures for pytest.

Provides candle/ticker factories and ``FakeBinance``, an in-memory stand-in
for the Binance futures REST API served through ``httpx.MockTransport``.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from screener.config import ScreenerConfig  # noqa: E402
from screener.ratelimit import RateLimitTracker  # noqa: E402
from screener.types import Candle, Ticker24h  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)
BASE_MS = int(BASE_TIME.timestamp() * 1000)

INTERVALS = {
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
}


def build_candles(
    closes: Sequence[float],
    *,
    volumes: Optional[Sequence[float]] = None,
    highs: Optional[Sequence[float]] = None,
    lows: Optional[Sequence[float]] = None,
    symbol: str = "BTCUSDT",
    timeframe: str = "1d",
) -> list[Candle]:
    """Consecutive candles; high/low default to the close so typical price == close."""
    step = INTERVALS[timeframe]
    candles = []
    for i, close in enumerate(closes):
        open_time = BASE_TIME + i * step
        candles.append(
            Candle(
                symbol=symbol,
                exchange="binance-futures",
                timeframe=timeframe,
                open_time=open_time,
                close_time=open_time + step,
                open=Decimal(str(close)),
                high=Decimal(str(highs[i] if highs else close)),
                low=Decimal(str(lows[i] if lows else close)),
                close=Decimal(str(close)),
                volume=Decimal(str(volumes[i] if volumes else 1)),
            )
        )
    return candles


@pytest.fixture
def make_candles() -> Callable[..., list[Candle]]:
    return build_candles


@pytest.fixture
def make_ticker() -> Callable[..., Ticker24h]:
    def _make(symbol: str = "BTCUSDT", price: float = 100.0, volume: float = 1_000_000.0) -> Ticker24h:
        return Ticker24h(symbol=symbol, last_price=Decimal(str(price)), quote_volume=Decimal(str(volume)))

    return _make


@pytest.fixture
def fast_config() -> ScreenerConfig:
    """Production shape with no sleeping."""
    return ScreenerConfig(
        rest_base_url="https://fapi.test",
        batch_pause_seconds=0.0,
        price_base_delay=0.0,
        oi_base_delay=0.0,
        universe_base_delay=0.0,
    )


@pytest.fixture
def tracker() -> RateLimitTracker:
    return RateLimitTracker()


class FakeBinance:
    """Minimal Binance futures REST emulation.

    Register symbols with ``add_symbol`` and inject failures with ``fail``.
    Every handled request is appended to ``calls`` as ``(path, params)``.
    """

    def __init__(self) -> None:
        self.contracts: list[dict[str, Any]] = []
        self.tickers: list[dict[str, Any]] = []
        self.klines: dict[tuple[str, str], list[list[Any]]] = {}
        self.open_interest: dict[str, str] = {}
        self.oi_history: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.used_weight = 10
        self._failures: list[dict[str, Any]] = []

    def add_symbol(
        self,
        symbol: str,
        *,
        price: float,
        volume: float,
        closes: Sequence[float] = (),
        fine_closes: Sequence[float] = (),
        status: str = "TRADING",
        contract_type: str = "PERPETUAL",
        quote_asset: str = "USDT",
        open_interest: Optional[str] = None,
        oi_history: Optional[dict[str, list[tuple[int, str]]]] = None,
    ) -> None:
        self.contracts.append(
            {"symbol": symbol, "status": status, "contractType": contract_type, "quoteAsset": quote_asset}
        )
        self.tickers.append(
            {"symbol": symbol, "lastPrice": str(price), "quoteVolume": str(volume), "priceChangePercent": "1.0"}
        )
        self.klines[(symbol, "1d")] = self.kline_rows(closes, "1d")
        self.klines[(symbol, "4h")] = self.kline_rows(fine_closes, "4h")
        if open_interest is not None:
            self.open_interest[symbol] = open_interest
        for period, points in (oi_history or {}).items():
            self.oi_history[(symbol, period)] = [
                {"symbol": symbol, "sumOpenInterest": value, "timestamp": ts} for ts, value in points
            ]

    @staticmethod
    def kline_rows(closes: Sequence[float], interval: str) -> list[list[Any]]:
        step_ms = int(INTERVALS[interval].total_seconds() * 1000)
        rows = []
        for i, close in enumerate(closes):
            open_ms = BASE_MS + i * step_ms
            rows.append([open_ms, str(close), str(close), str(close), str(close), "10", open_ms + step_ms - 1])
        return rows

    def fail(
        self,
        path: str,
        status: int,
        *,
        symbol: Optional[str] = None,
        times: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
        interval: Optional[str] = None,
    ) -> None:
        """Answer ``path`` with ``status`` (``times`` times, or forever when None)."""
        self._failures.append(
            {
                "path": path,
                "status": status,
                "symbol": symbol,
                "interval": interval,
                "remaining": times,
                "headers": headers or {},
            }
        )

    def count(self, path: str, **params: str) -> int:
        return sum(
            1
            for call_path, call_params in self.calls
            if call_path == path and all(call_params.get(k) == v for k, v in params.items())
        )

    def _match_failure(self, path: str, params: dict[str, str]) -> Optional[dict[str, Any]]:
        for failure in self._failures:
            if failure["path"] != path:
                continue
            if failure["symbol"] and params.get("symbol") != failure["symbol"]:
                continue
            if failure["interval"] and params.get("interval") != failure["interval"]:
                continue
            if failure["remaining"] is not None:
                if failure["remaining"] <= 0:
                    continue
                failure["remaining"] -= 1
            return failure
        return None

    def _json(self, payload: Any, status: int = 200, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        merged = {"X-MBX-USED-WEIGHT-1M": str(self.used_weight)}
        merged.update(headers or {})
        return httpx.Response(status, json=payload, headers=merged)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params)
        self.calls.append((path, params))

        failure = self._match_failure(path, params)
        if failure is not None:
            return self._json({"code": -1, "msg": "injected"}, failure["status"], failure["headers"])

        symbol = params.get("symbol", "")
        if path == "/fapi/v1/exchangeInfo":
            return self._json({"timezone": "UTC", "symbols": self.contracts})
        if path == "/fapi/v1/ticker/24hr":
            return self._json(self.tickers)
        if path == "/fapi/v1/klines":
            rows = self.klines.get((symbol, params.get("interval", "")))
            if rows is None:
                return self._json({"code": -1121, "msg": "Invalid symbol."}, 400)
            return self._json(rows[-int(params.get("limit", "500")):])
        if path == "/fapi/v1/openInterest":
            if symbol not in self.open_interest:
                return self._json({"code": -1121, "msg": "Invalid symbol."}, 400)
            return self._json({"symbol": symbol, "openInterest": self.open_interest[symbol], "time": BASE_MS})
        if path == "/futures/data/openInterestHist":
            return self._json(self.oi_history.get((symbol, params.get("period", "")), []))
        if path == "/fapi/v1/ping":
            return self._json({})
        return self._json({"code": -1, "msg": "not found"}, 404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_binance() -> FakeBinance:
    return FakeBinance()
