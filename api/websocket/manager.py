from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Protocol

from api.websocket.binance import BinanceTickerStream
from screener.types import PriceTick

logger = logging.getLogger(__name__)


class WebSocketLike(Protocol):
    async def send_json(self, data: object) -> None: ...


TicksCallback = Callable[[list[PriceTick]], Awaitable[None]]
StatusCallback = Callable[[str], Awaitable[None]]


class TickStreamClient(Protocol):
    async def stream_ticks(
        self,
        *,
        symbols: set[str],
        on_ticks: TicksCallback,
        on_status: StatusCallback,
        stop_event: asyncio.Event,
    ) -> None: ...


@dataclass
class ConnectionState:
    symbols: set[str] = field(default_factory=set)
    last_sent: float = 0.0


@dataclass
class StreamState:
    symbols: set[str] = field(default_factory=set)
    task: asyncio.Task | None = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)


class TickRelayManager:
    """Fan one upstream ticker stream out to websocket subscribers.

    The upstream stream runs only while some subscriber has a non-empty
    allow-list, and is restarted when the union of allow-lists changes. The
    latest tick per symbol is kept for merging into snapshots.
    """

    def __init__(
        self,
        *,
        client: TickStreamClient | None = None,
        rate_limit_seconds: float = 0.5,
    ) -> None:
        self._client = client or BinanceTickerStream()
        self._rate_limit_seconds = rate_limit_seconds
        self._connections: dict[WebSocketLike, ConnectionState] = {}
        self._stream = StreamState()
        self._latest: dict[str, PriceTick] = {}
        self._lock = asyncio.Lock()
        self._refresh_lock = asyncio.Lock()

    def latest_ticks(self) -> list[PriceTick]:
        return list(self._latest.values())

    async def connect(self, websocket: WebSocketLike) -> None:
        async with self._lock:
            self._connections[websocket] = ConnectionState()

    async def disconnect(self, websocket: WebSocketLike) -> None:
        async with self._lock:
            state = self._connections.pop(websocket, None)
        if state:
            async with self._refresh_lock:
                await self._refresh_stream()

    async def update_subscription(self, websocket: WebSocketLike, *, symbols: set[str]) -> None:
        async with self._lock:
            self._connections[websocket] = ConnectionState(symbols={s.upper() for s in symbols})

        async with self._refresh_lock:
            await self._refresh_stream()

    async def broadcast_ticks(self, ticks: list[PriceTick]) -> None:
        for tick in ticks:
            self._latest[tick.symbol] = tick

        now = time.monotonic()
        async with self._lock:
            connections = list(self._connections.items())

        failures: list[WebSocketLike] = []
        for websocket, state in connections:
            wanted = [asdict(tick) for tick in ticks if tick.symbol.upper() in state.symbols]
            if not wanted:
                continue
            if now - state.last_sent < self._rate_limit_seconds:
                continue
            state.last_sent = now
            try:
                await websocket.send_json({"type": "ticks", "ticks": wanted})
            except Exception:
                logger.warning("Failed to send ticks to websocket", exc_info=True)
                failures.append(websocket)

        for websocket in failures:
            await self.disconnect(websocket)

    async def broadcast_status(self, status: str) -> None:
        payload = {"type": "status", "status": status}
        async with self._lock:
            connections = list(self._connections)

        failures: list[WebSocketLike] = []
        for websocket in connections:
            try:
                await websocket.send_json(payload)
            except Exception:
                logger.warning("Failed to send status update to websocket", exc_info=True)
                failures.append(websocket)

        for websocket in failures:
            await self.disconnect(websocket)

    async def shutdown(self) -> None:
        async with self._lock:
            self._connections.clear()
        async with self._refresh_lock:
            await self._refresh_stream()

    async def _refresh_stream(self) -> None:
        task_to_stop: asyncio.Task | None = None
        stop_event: asyncio.Event | None = None
        async with self._lock:
            symbols: set[str] = set()
            for state in self._connections.values():
                symbols.update(state.symbols)

            stream = self._stream
            if symbols == stream.symbols:
                return

            if stream.task:
                task_to_stop = stream.task
                stop_event = stream.stop_event
                stream.task = None

            stream.symbols = set(symbols)
            stream.stop_event = asyncio.Event()
            expected_stop_event = stream.stop_event

        if task_to_stop and stop_event:
            await self._await_task(task_to_stop, stop_event)

        if not symbols:
            return

        async def _runner() -> None:
            await self._client.stream_ticks(
                symbols=symbols,
                on_ticks=self.broadcast_ticks,
                on_status=self.broadcast_status,
                stop_event=expected_stop_event,
            )

        async with self._lock:
            if self._stream.stop_event is not expected_stop_event:
                return
            self._stream.task = asyncio.create_task(_runner())

    async def _await_task(self, task: asyncio.Task, stop_event: asyncio.Event) -> None:
        stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=1.0)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        except asyncio.CancelledError:
            return
