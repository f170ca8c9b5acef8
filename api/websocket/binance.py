from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable

import websockets

from screener.config import ScreenerConfig
from screener.live import parse_ticker_array
from screener.types import PriceTick

logger = logging.getLogger(__name__)

TicksCallback = Callable[[list[PriceTick]], Awaitable[None]]
StatusCallback = Callable[[str], Awaitable[None]]


class BinanceTickerStream:
    """Binance futures all-market 24h ticker stream (``!ticker@arr``)."""

    def __init__(self, url: str | None = None, *, max_backoff: float = 30.0) -> None:
        self.url = url or ScreenerConfig().ws_url
        self.max_backoff = max_backoff

    async def stream_ticks(
        self,
        *,
        symbols: set[str],
        on_ticks: TicksCallback,
        on_status: StatusCallback,
        stop_event: asyncio.Event,
    ) -> None:
        if not symbols:
            return

        backoff = 1.0
        while not stop_event.is_set():
            try:
                await on_status("connecting")
                async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
                    await on_status("connected")
                    backoff = 1.0
                    async for message in ws:
                        if stop_event.is_set():
                            break
                        try:
                            payload = json.loads(message)
                        except ValueError:
                            logger.warning("Dropping undecodable ticker message")
                            continue
                        ticks = parse_ticker_array(payload, allow=symbols)
                        if ticks:
                            await on_ticks(ticks)
                await on_status("disconnected")
            except Exception as exc:
                logger.warning("Binance ticker stream error: %s", exc)
                await on_status("disconnected")

            if stop_event.is_set():
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                logger.debug("Ticker stream backoff of %.0fs expired; reconnecting", backoff)
            backoff = min(backoff * 2, self.max_backoff)
