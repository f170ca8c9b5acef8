"""FastAPI application serving the futures screener.

Endpoints:
- GET /snapshot - Ranked instrument records (optionally merged with live ticks)
- GET /ping - Upstream round-trip latency
- GET /health - Pipeline state and cache age
- GET /ratelimit/* - Upstream request-weight usage
- WS /ws/ticks - Live price/volume ticks

Configuration comes from ``SCREENER_*`` environment variables.
No authentication (local network only).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.deps import get_pipeline, get_tick_relay
from api.routes import ratelimit, ws
from api.websocket.binance import BinanceTickerStream
from api.websocket.manager import TickRelayManager
from screener import build_pipeline
from screener.errors import MalformedData, RateLimited, ScreenerError
from screener.live import merge_ticks
from screener.pipeline import SnapshotPipeline
from screener.types import InstrumentRecord

logger = logging.getLogger(__name__)

SNAPSHOT_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=120"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    pipeline = build_pipeline()
    app.state.pipeline = pipeline
    app.state.tick_relay = TickRelayManager(client=BinanceTickerStream(pipeline.config.ws_url))
    logger.info(
        "Screener API started (universe=%d, ttl=%.0fs)",
        pipeline.config.universe_size,
        pipeline.config.cache_ttl_seconds,
    )
    try:
        yield
    finally:
        await app.state.tick_relay.shutdown()
        await pipeline.aclose()


app = FastAPI(
    title="Futures Screener API",
    description="Ranked Binance perpetual futures with price, volume and trend indicators",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(ratelimit.router)
app.include_router(ws.router)


class VwapModel(BaseModel):
    value: float
    distance: float


class EmaModel(BaseModel):
    value: float
    distance: float


class InstrumentModel(BaseModel):
    symbol: str
    current_price: float
    daily_return: float
    weekly_return: float
    monthly_return: float
    volume: float
    vwap_7d: VwapModel
    vwap_30d: VwapModel
    vwap_90d: VwapModel
    vwap_365d: VwapModel
    ema200_4h: EmaModel
    ema200_1d: EmaModel
    z_score: Optional[float] = None
    oi_change_24h: Optional[float] = None
    oi_change_7d: Optional[float] = None


class PingResponse(BaseModel):
    timestamp: int
    latency_ms: Optional[float]


class HealthResponse(BaseModel):
    status: str
    pipeline_state: str
    cache_age_seconds: Optional[float]
    cache_fresh: bool
    record_count: int
    runs_started: int
    refreshing: bool


def _to_model(record: InstrumentRecord) -> InstrumentModel:
    def reading(r):
        return {"value": r.value, "distance": r.distance}

    return InstrumentModel(
        symbol=record.symbol,
        current_price=record.current_price,
        daily_return=record.daily_return,
        weekly_return=record.weekly_return,
        monthly_return=record.monthly_return,
        volume=record.volume,
        vwap_7d=reading(record.vwap_7d),
        vwap_30d=reading(record.vwap_30d),
        vwap_90d=reading(record.vwap_90d),
        vwap_365d=reading(record.vwap_365d),
        ema200_4h=reading(record.ema200_4h),
        ema200_1d=reading(record.ema200_1d),
        z_score=record.z_score,
        oi_change_24h=record.oi_change_24h,
        oi_change_7d=record.oi_change_7d,
    )


@app.get("/snapshot", response_model=list[InstrumentModel])
async def get_snapshot(
    response: Response,
    live: bool = Query(False, description="Merge the latest relayed price/volume ticks"),
    pipeline: SnapshotPipeline = Depends(get_pipeline),
    relay: TickRelayManager = Depends(get_tick_relay),
) -> list[InstrumentModel]:
    """Ranked instrument records, highest 24h quote volume first.

    Errors surface through ``screener_error_handler`` as 429 (rate limited)
    or 502 (upstream unavailable / malformed data) when no cached snapshot
    can be served.
    """
    snapshot = await pipeline.get_snapshot()

    records = list(snapshot.records)
    if live:
        records = merge_ticks(records, relay.latest_ticks())

    response.headers["Cache-Control"] = SNAPSHOT_CACHE_CONTROL
    response.headers["X-Snapshot-Cached"] = str(snapshot.cached).lower()
    response.headers["X-Snapshot-Stale"] = str(snapshot.stale).lower()
    response.headers["X-Snapshot-Partial"] = str(snapshot.partial).lower()
    response.headers["X-Snapshot-Computed-At"] = str(int(snapshot.computed_at * 1000))
    return [_to_model(record) for record in records]


@app.get("/ping", response_model=PingResponse)
async def ping(pipeline: SnapshotPipeline = Depends(get_pipeline)):
    """Round-trip latency to the upstream REST API."""
    timestamp = int(time.time() * 1000)
    try:
        latency_ms = await pipeline.client.ping()
    except ScreenerError as exc:
        logger.warning("Upstream ping failed: %s", exc)
        return JSONResponse(status_code=502, content={"timestamp": timestamp, "latency_ms": None})
    return PingResponse(timestamp=timestamp, latency_ms=round(latency_ms, 2))


@app.get("/health", response_model=HealthResponse)
async def health(pipeline: SnapshotPipeline = Depends(get_pipeline)) -> HealthResponse:
    entry = pipeline.cache.peek()
    fresh = entry is not None and pipeline.cache.is_fresh(entry)
    age = pipeline.cache.age_seconds()
    return HealthResponse(
        status="ok" if entry is not None else "warming",
        pipeline_state=pipeline.state.value,
        cache_age_seconds=round(age, 3) if age is not None else None,
        cache_fresh=fresh,
        record_count=len(entry.records) if entry is not None else 0,
        runs_started=pipeline.runs_started,
        refreshing=pipeline.refreshing,
    )


def _error_code(exc: ScreenerError) -> str:
    if isinstance(exc, RateLimited):
        return "rate_limited"
    if isinstance(exc, MalformedData):
        return "malformed_data"
    return "upstream_unavailable"


@app.exception_handler(ScreenerError)
async def screener_error_handler(_request, exc: ScreenerError):
    """Map pipeline failures to 429/502 with a machine-readable flag."""
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(
        status_code=429 if exc.rate_limited else 502,
        content={
            "error": _error_code(exc),
            "rate_limited": exc.rate_limited,
            "message": str(exc),
        },
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(_request, exc):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
