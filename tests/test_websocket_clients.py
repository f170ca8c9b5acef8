from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys
from unittest.mock import patch

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.websocket.binance import BinanceTickerStream
from screener.types import PriceTick


class _FakeBinanceSocket:
    def __init__(self, messages: list[str]):
        self._messages = messages

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)


@pytest.mark.asyncio
async def test_stream_ticks_parses_ticker_array() -> None:
    messages = [
        "not json",
        json.dumps(
            [
                {"e": "24hrTicker", "E": 1700000000000, "s": "BTCUSDT", "c": "50000.00", "q": "1000", "P": "2.5"},
                {"e": "24hrTicker", "E": 1700000000000, "s": "ETHUSDT", "c": "3000.00", "q": "500", "P": "1.0"},
            ]
        ),
    ]
    socket = _FakeBinanceSocket(messages)
    statuses: list[str] = []
    batches: list[list[PriceTick]] = []
    stop_event = asyncio.Event()

    async def on_status(status: str) -> None:
        statuses.append(status)

    async def on_ticks(ticks: list[PriceTick]) -> None:
        batches.append(ticks)
        stop_event.set()

    stream = BinanceTickerStream("wss://example.test/ws/!ticker@arr")
    with patch("api.websocket.binance.websockets.connect", return_value=socket) as connect:
        await asyncio.wait_for(
            stream.stream_ticks(
                symbols={"BTCUSDT"},
                on_ticks=on_ticks,
                on_status=on_status,
                stop_event=stop_event,
            ),
            timeout=1.0,
        )

    assert connect.call_args.args[0] == "wss://example.test/ws/!ticker@arr"
    assert batches == [[PriceTick("BTCUSDT", 50000.0, 1000.0, 2.5, 1700000000000)]]
    assert statuses[0] == "connecting"
    assert "connected" in statuses
    assert statuses[-1] == "disconnected"


@pytest.mark.asyncio
async def test_stream_ticks_without_symbols_returns_immediately() -> None:
    async def noop(_):
        pass

    with patch("api.websocket.binance.websockets.connect") as connect:
        await BinanceTickerStream().stream_ticks(
            symbols=set(),
            on_ticks=noop,
            on_status=noop,
            stop_event=asyncio.Event(),
        )

    connect.assert_not_called()


@pytest.mark.asyncio
async def test_stream_ticks_reconnects_with_capped_backoff() -> None:
    statuses: list[str] = []
    delays: list[float] = []
    stop_event = asyncio.Event()

    async def on_status(status: str) -> None:
        statuses.append(status)

    async def on_ticks(ticks) -> None:
        pass

    async def fake_wait_for(awaitable, timeout):
        awaitable.close()
        delays.append(timeout)
        if len(delays) == 7:
            stop_event.set()
        raise asyncio.TimeoutError

    with (
        patch("api.websocket.binance.websockets.connect", side_effect=RuntimeError("boom")),
        patch("api.websocket.binance.asyncio.wait_for", new=fake_wait_for),
    ):
        await BinanceTickerStream(max_backoff=30.0).stream_ticks(
            symbols={"BTCUSDT"},
            on_ticks=on_ticks,
            on_status=on_status,
            stop_event=stop_event,
        )

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    assert statuses.count("disconnected") == 7
