"""Async REST client for Binance USD-M perpetual futures market data.

Only public, unauthenticated endpoints are used:

- ``/fapi/v1/exchangeInfo``        contract metadata
- ``/fapi/v1/ticker/24hr``         24h ticker for every symbol
- ``/fapi/v1/klines``              OHLCV candles
- ``/fapi/v1/openInterest``        current open interest
- ``/futures/data/openInterestHist`` open interest history
- ``/fapi/v1/ping``                connectivity check

Every response feeds ``X-MBX-USED-WEIGHT-1M`` into the rate limit tracker.
HTTP and transport failures are raised as ``screener.errors`` exceptions.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from screener.config import ScreenerConfig
from screener.errors import MalformedData, UpstreamUnavailable, classify_http_error
from screener.ratelimit import RateLimitTracker, get_tracker
from screener.types import Candle, ContractInfo, OpenInterestPoint, Ticker24h, Timeframe

logger = logging.getLogger(__name__)

EXCHANGE_NAME = "binance-futures"

_TIMEFRAMES: dict[str, timedelta] = {
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "4h": timedelta(hours=4),
    "1d": timedelta(days=1),
}


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise MalformedData(f"Invalid {field}: {value!r}") from exc


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _unwrap_list(data: Any) -> list[Any]:
    """Some data endpoints wrap their rows under ``data`` or ``result``."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        inner = data.get("data", data.get("result"))
        if isinstance(inner, list):
            return inner
    raise MalformedData(f"Expected a list payload, got {type(data).__name__}")


class BinanceFuturesClient:
    """Binance futures market data client (httpx, async)."""

    def __init__(
        self,
        config: ScreenerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        tracker: RateLimitTracker | None = None,
    ) -> None:
        self.config = config or ScreenerConfig()
        self._transport = transport
        self._tracker = tracker or get_tracker()
        self._client: httpx.AsyncClient | None = None

    @property
    def exchange_name(self) -> str:
        return EXCHANGE_NAME

    @property
    def tracker(self) -> RateLimitTracker:
        return self._tracker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.rest_base_url,
                headers={"Accept": "application/json", "User-Agent": "perp-screener/1.0"},
                timeout=httpx.Timeout(self.config.request_timeout),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BinanceFuturesClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False

    def _record_weight(self, response: httpx.Response) -> None:
        used = response.headers.get("x-mbx-used-weight-1m")
        if not used:
            return
        try:
            used_weight = int(used)
        except ValueError:
            logger.debug("Ignoring non-numeric used-weight header: %r", used)
            return
        self._tracker.record_used_weight(
            self.exchange_name,
            used_weight,
            self.config.weight_limit_per_minute,
        )

    async def _get_json(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        client = await self._get_client()
        try:
            resp = await client.get(path, params=params, timeout=timeout or self.config.request_timeout)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(f"GET {path} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"GET {path} network error: {exc}") from exc

        self._record_weight(resp)

        if resp.status_code >= 400:
            raise classify_http_error(
                resp.status_code,
                f"GET {path} failed ({resp.status_code}): {resp.text[:200]}",
                resp.headers.get("retry-after"),
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedData(f"GET {path} returned invalid JSON: {exc}") from exc

    async def exchange_info(self) -> list[ContractInfo]:
        data = await self._get_json("/fapi/v1/exchangeInfo")
        if not isinstance(data, dict) or not isinstance(data.get("symbols"), list):
            raise MalformedData("exchangeInfo payload has no 'symbols' list")

        contracts = []
        for entry in data["symbols"]:
            if not isinstance(entry, dict) or not entry.get("symbol"):
                continue
            contracts.append(
                ContractInfo(
                    symbol=str(entry["symbol"]),
                    status=str(entry.get("status", "")),
                    contract_type=str(entry.get("contractType", "")),
                    quote_asset=str(entry["quoteAsset"]) if entry.get("quoteAsset") else None,
                )
            )
        return contracts

    async def tickers_24h(self) -> list[Ticker24h]:
        data = await self._get_json("/fapi/v1/ticker/24hr")
        if not isinstance(data, list):
            raise MalformedData(f"ticker/24hr returned {type(data).__name__}, expected list")

        tickers = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("symbol"):
                continue
            last_price = _optional_decimal(entry.get("lastPrice"))
            quote_volume = _optional_decimal(entry.get("quoteVolume"))
            if last_price is None or quote_volume is None:
                logger.debug("Skipping unparseable ticker for %s", entry.get("symbol"))
                continue
            tickers.append(
                Ticker24h(
                    symbol=str(entry["symbol"]),
                    last_price=last_price,
                    quote_volume=quote_volume,
                    price_change_percent=_optional_decimal(entry.get("priceChangePercent")),
                )
            )
        return tickers

    async def klines(
        self,
        symbol: str,
        interval: Timeframe,
        *,
        limit: int | None = None,
    ) -> list[Candle]:
        """Fetch the latest ``limit`` candles, oldest first.

        Response rows: [open_time, open, high, low, close, volume, close_time, ...]
        """
        if interval not in _TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe for Binance futures: {interval}")
        delta = _TIMEFRAMES[interval]

        data = await self._get_json(
            "/fapi/v1/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit or self.config.candle_limit},
        )
        if not isinstance(data, list):
            raise MalformedData(f"klines for {symbol} returned {type(data).__name__}, expected list")

        candles: list[Candle] = []
        last_open_ms: int | None = None
        for row in data:
            if not isinstance(row, (list, tuple)) or len(row) < 6:
                raise MalformedData(f"Malformed kline row for {symbol}: {row!r}")
            try:
                open_time_ms = int(row[0])
            except (TypeError, ValueError) as exc:
                raise MalformedData(f"Invalid kline open time for {symbol}: {row[0]!r}") from exc
            if last_open_ms is not None and open_time_ms <= last_open_ms:
                raise MalformedData(f"Kline open times for {symbol} are not strictly increasing")
            last_open_ms = open_time_ms

            open_time = datetime.fromtimestamp(open_time_ms / 1000, tz=timezone.utc)
            candles.append(
                Candle(
                    symbol=symbol,
                    exchange=self.exchange_name,
                    timeframe=interval,
                    open_time=open_time,
                    close_time=open_time + delta,
                    open=_to_decimal(row[1], "open"),
                    high=_to_decimal(row[2], "high"),
                    low=_to_decimal(row[3], "low"),
                    close=_to_decimal(row[4], "close"),
                    volume=_to_decimal(row[5], "volume"),
                )
            )
        return candles

    async def open_interest(self, symbol: str) -> Decimal:
        data = await self._get_json(
            "/fapi/v1/openInterest",
            params={"symbol": symbol},
            timeout=self.config.oi_timeout,
        )
        if not isinstance(data, dict) or "openInterest" not in data:
            raise MalformedData(f"openInterest payload for {symbol} has no 'openInterest'")
        return _to_decimal(data["openInterest"], "openInterest")

    async def open_interest_history(self, symbol: str, *, period: str, limit: int) -> list[OpenInterestPoint]:
        """Historical open interest, in whatever order the endpoint returns it."""
        data = await self._get_json(
            "/futures/data/openInterestHist",
            params={"symbol": symbol, "period": period, "limit": limit},
            timeout=self.config.oi_history_timeout,
        )
        points = []
        for entry in _unwrap_list(data):
            if not isinstance(entry, dict):
                raise MalformedData(f"Malformed openInterestHist entry for {symbol}: {entry!r}")
            try:
                timestamp = int(entry["timestamp"])
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedData(f"openInterestHist entry for {symbol} has no valid timestamp") from exc
            points.append(
                OpenInterestPoint(
                    timestamp=timestamp,
                    sum_open_interest=_to_decimal(entry.get("sumOpenInterest"), "sumOpenInterest"),
                )
            )
        return points

    async def ping(self) -> float:
        """Round-trip latency of the ping endpoint in milliseconds."""
        start = time.perf_counter()
        await self._get_json("/fapi/v1/ping", timeout=5.0)
        return (time.perf_counter() - start) * 1000
