"""Snapshot pipeline orchestrator.

One run walks ``IDLE -> RESOLVING_UNIVERSE -> FETCHING_BATCHES -> MERGING ->
CACHED`` (or ``FAILED``):

1. resolve the ranked universe,
2. fetch candles and open interest for each symbol in fixed-size batches,
   pausing between batches,
3. compute records, merge them (dedupe, sort by volume) and publish the
   result to the snapshot cache.

Per-symbol failures are logged and dropped. Only universe resolution failure
or an empty merged result fails the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from screener.cache import SnapshotCache
from screener.config import ScreenerConfig
from screener.errors import RateLimited, ScreenerError, UpstreamUnavailable
from screener.indicators.engine import build_record
from screener.market_data.binance_futures import BinanceFuturesClient
from screener.market_data.open_interest import fetch_open_interest
from screener.market_data.series import fetch_series
from screener.market_data.universe import resolve_universe
from screener.types import InstrumentRecord, Ticker24h

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    RESOLVING_UNIVERSE = "resolving_universe"
    FETCHING_BATCHES = "fetching_batches"
    MERGING = "merging"
    CACHED = "cached"
    PARTIAL = "partial"  # deadline hit; result returned but not cached
    FAILED = "failed"


@dataclass(frozen=True)
class SymbolFailure:
    symbol: str
    reason: str
    rate_limited: bool = False


@dataclass
class PipelineRun:
    """Report of one pipeline execution."""

    started_at: float
    state: PipelineState = PipelineState.IDLE
    requested: int = 0
    records: tuple[InstrumentRecord, ...] = ()
    dropped: list[SymbolFailure] = field(default_factory=list)
    partial: bool = False
    finished_at: Optional[float] = None

    @property
    def rate_limited_drops(self) -> int:
        return sum(1 for failure in self.dropped if failure.rate_limited)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass(frozen=True)
class Snapshot:
    """What consumers receive: records plus freshness metadata."""

    records: tuple[InstrumentRecord, ...]
    computed_at: float
    cached: bool = False
    stale: bool = False
    partial: bool = False
    error: Optional[str] = None


def merge_records(records: Iterable[InstrumentRecord]) -> tuple[InstrumentRecord, ...]:
    """Drop duplicate symbols (first wins) and sort by volume, descending.

    The sort is stable, so equal volumes keep their incoming order.
    """
    seen: set[str] = set()
    unique = []
    for record in records:
        if record.symbol in seen:
            continue
        seen.add(record.symbol)
        unique.append(record)
    unique.sort(key=lambda r: r.volume, reverse=True)
    return tuple(unique)


def make_batches(tickers: Sequence[Ticker24h], batch_size: int) -> list[Sequence[Ticker24h]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [tickers[i : i + batch_size] for i in range(0, len(tickers), batch_size)]


class SnapshotPipeline:
    """Runs the pipeline and owns the snapshot cache."""

    def __init__(
        self,
        client: BinanceFuturesClient,
        config: ScreenerConfig | None = None,
        cache: SnapshotCache | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.config = config or client.config
        self.cache = cache or SnapshotCache(self.config.cache_ttl_seconds, clock=clock)
        self._clock = clock
        self._state = PipelineState.IDLE
        self._inflight: asyncio.Future | None = None
        self._last_error: Optional[str] = None
        self.last_run: Optional[PipelineRun] = None
        self.runs_started = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    async def aclose(self) -> None:
        task = self._inflight
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.client.aclose()

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None

    # ------------------------------------------------------------------
    # Consumer interface
    # ------------------------------------------------------------------

    async def get_snapshot(self, *, deadline: float | None = None, force: bool = False) -> Snapshot:
        """Return the cached snapshot, or refresh it.

        A fresh cache entry is returned without any upstream traffic. Once
        the entry has expired, a refresh starts in the background and the
        expired entry is returned at once with ``stale=True`` (``error``
        carries the last refresh failure, if any). Only callers with nothing
        cached, or passing ``force``, wait for the refresh. Concurrent
        callers share a single in-flight refresh (the first caller's
        deadline applies). If a refresh fails and a stale entry exists, the
        stale entry is returned with ``stale=True``.

        Args:
            deadline: Seconds the refresh may take before returning a
                partial result
            force: Refresh even if the cache is fresh, and wait for it

        Raises:
            RateLimited: Refresh was rate limited and nothing is cached
            ScreenerError: Refresh failed and nothing is cached
        """
        entry = self.cache.get()
        if entry is not None and not force:
            return Snapshot(records=entry.records, computed_at=entry.computed_at, cached=True)

        task = self._start_refresh(deadline)

        stale = self.cache.peek()
        if stale is not None and not force:
            logger.debug("Serving expired snapshot while refresh runs")
            return Snapshot(
                records=stale.records,
                computed_at=stale.computed_at,
                cached=True,
                stale=True,
                error=self._last_error,
            )

        return await asyncio.shield(task)

    async def wait_for_refresh(self) -> Optional[Snapshot]:
        """Wait for the in-flight refresh, if any, and return its result."""
        task = self._inflight
        if task is None:
            return None
        return await asyncio.shield(task)

    def _start_refresh(self, deadline: float | None) -> asyncio.Future:
        if self._inflight is None:
            task = asyncio.ensure_future(self._refresh(deadline))
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            logger.debug("Joining in-flight pipeline refresh")
        return self._inflight

    def _clear_inflight(self, task: asyncio.Future) -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the failure retrieved even when every waiter was cancelled
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, ScreenerError):
            logger.error("Pipeline refresh crashed", exc_info=exc)

    async def _refresh(self, deadline: float | None) -> Snapshot:
        try:
            run = await self.run(deadline=deadline)
        except ScreenerError as exc:
            self._last_error = str(exc)
            stale = self.cache.peek()
            if stale is None:
                raise
            logger.warning(
                "Pipeline run failed (%s); serving stale snapshot computed %.0fs ago",
                exc,
                self._clock() - stale.computed_at,
            )
            return Snapshot(
                records=stale.records,
                computed_at=stale.computed_at,
                cached=True,
                stale=True,
                error=str(exc),
            )

        self._last_error = None
        return Snapshot(
            records=run.records,
            computed_at=run.finished_at or self._clock(),
            partial=run.partial,
        )

    # ------------------------------------------------------------------
    # Pipeline execution
    # ------------------------------------------------------------------

    async def run(self, *, deadline: float | None = None) -> PipelineRun:
        """Execute one full pipeline pass.

        Args:
            deadline: Seconds allowed for the run. Once exceeded, remaining
                batches are skipped and the in-progress batch is cancelled;
                whatever was merged is returned with ``partial=True`` and is
                not cached.

        Raises:
            RateLimited: Universe resolution was rate limited, or every
                symbol was dropped and at least one because of rate limiting
            UpstreamUnavailable: Universe resolution failed or no records
                survived
        """
        self.runs_started += 1
        run = PipelineRun(started_at=self._clock())
        self.last_run = run
        expires_at = time.monotonic() + deadline if deadline is not None else None

        self._set_state(run, PipelineState.RESOLVING_UNIVERSE)
        try:
            tickers = await resolve_universe(self.client, self.config)
        except ScreenerError:
            self._set_state(run, PipelineState.FAILED)
            run.finished_at = self._clock()
            raise
        run.requested = len(tickers)

        self._set_state(run, PipelineState.FETCHING_BATCHES)
        collected: list[InstrumentRecord] = []
        batches = make_batches(tickers, self.config.batch_size)

        for index, batch in enumerate(batches):
            remaining = None if expires_at is None else expires_at - time.monotonic()
            if index > 0 and (remaining is None or remaining > 0):
                await self._pause_between_batches(limit=remaining)
                remaining = None if expires_at is None else expires_at - time.monotonic()

            if remaining is not None and remaining <= 0:
                logger.warning("Deadline reached; skipping %d remaining batch(es)", len(batches) - index)
                run.partial = True
                break

            now_ms = int(self._clock() * 1000)
            try:
                results = await asyncio.wait_for(self._process_batch(batch, now_ms), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning(
                    "Deadline reached during batch %d/%d; returning partial result",
                    index + 1,
                    len(batches),
                )
                run.partial = True
                break

            collected.extend(self._collect(batch, results, run))
            logger.info(
                "Batch %d/%d done: %d records so far, %d dropped",
                index + 1,
                len(batches),
                len(collected),
                len(run.dropped),
            )

        self._set_state(run, PipelineState.MERGING)
        merged = merge_records(collected)
        run.finished_at = self._clock()

        if not merged:
            self._set_state(run, PipelineState.FAILED)
            if run.rate_limited_drops:
                raise RateLimited(
                    f"No data available: {run.rate_limited_drops} of {run.requested} instruments were rate limited"
                )
            raise UpstreamUnavailable("No data available after processing")

        run.records = merged
        if run.partial:
            self._set_state(run, PipelineState.PARTIAL)
        else:
            self.cache.put(merged)
            self._set_state(run, PipelineState.CACHED)

        logger.info(
            "Pipeline run finished: %d/%d instruments in %.2fs (partial=%s)",
            len(merged),
            run.requested,
            run.duration_seconds or 0.0,
            run.partial,
        )
        return run

    def _set_state(self, run: PipelineRun, state: PipelineState) -> None:
        self._state = state
        run.state = state

    async def _pause_between_batches(self, limit: float | None = None) -> None:
        """Sleep between batches, longer when near the weight limit.

        ``limit`` caps the pause at the time left before the run deadline.
        """
        delay = self.config.batch_pause_seconds
        throttle = self.client.tracker.throttle_delay(self.client.exchange_name)
        if throttle > delay:
            logger.warning("Upstream request weight near limit; pausing %.1fs", throttle)
            delay = throttle
        if limit is not None:
            delay = min(delay, limit)
        if delay > 0:
            await asyncio.sleep(delay)

    async def _process_batch(self, batch: Sequence[Ticker24h], now_ms: int) -> list:
        return await asyncio.gather(
            *(self._process_symbol(ticker, now_ms) for ticker in batch),
            return_exceptions=True,
        )

    async def _process_symbol(self, ticker: Ticker24h, now_ms: int) -> Optional[InstrumentRecord]:
        series, open_interest = await asyncio.gather(
            fetch_series(self.client, ticker.symbol, self.config),
            fetch_open_interest(self.client, ticker.symbol, self.config),
            return_exceptions=True,
        )
        if isinstance(series, BaseException):
            raise series
        if isinstance(open_interest, BaseException):
            logger.warning("Open interest lookup for %s failed unexpectedly", ticker.symbol, exc_info=open_interest)
            open_interest = None

        return build_record(
            ticker,
            series,
            open_interest,
            now_ms=now_ms,
            min_quote_volume=self.config.min_quote_volume,
        )

    def _collect(self, batch: Sequence[Ticker24h], results: Sequence[object], run: PipelineRun) -> list[InstrumentRecord]:
        records = []
        for ticker, result in zip(batch, results):
            if isinstance(result, InstrumentRecord):
                records.append(result)
            elif result is None:
                run.dropped.append(SymbolFailure(ticker.symbol, "failed validity gate"))
            elif isinstance(result, ScreenerError):
                if result.rate_limited:
                    logger.warning("Rate limited while fetching %s, skipping", ticker.symbol)
                else:
                    logger.warning("Failed to fetch %s: %s", ticker.symbol, result)
                run.dropped.append(SymbolFailure(ticker.symbol, str(result), result.rate_limited))
            elif isinstance(result, BaseException):
                logger.error("Error processing %s", ticker.symbol, exc_info=result)
                run.dropped.append(SymbolFailure(ticker.symbol, repr(result)))
        return records
