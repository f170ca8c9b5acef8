"""Perpetual futures screener: market data pipeline and indicators."""

from __future__ import annotations

from screener.cache import CacheEntry, SnapshotCache
from screener.config import ScreenerConfig
from screener.errors import InsufficientHistory, MalformedData, RateLimited, ScreenerError, UpstreamUnavailable
from screener.market_data import BinanceFuturesClient
from screener.pipeline import PipelineRun, PipelineState, Snapshot, SnapshotPipeline
from screener.types import InstrumentRecord, PriceTick

__all__ = [
    "BinanceFuturesClient",
    "CacheEntry",
    "InstrumentRecord",
    "InsufficientHistory",
    "MalformedData",
    "PipelineRun",
    "PipelineState",
    "PriceTick",
    "RateLimited",
    "ScreenerConfig",
    "ScreenerError",
    "Snapshot",
    "SnapshotCache",
    "SnapshotPipeline",
    "UpstreamUnavailable",
]


def build_pipeline(config: ScreenerConfig | None = None) -> SnapshotPipeline:
    """Wire a pipeline with a live Binance futures client."""
    config = config or ScreenerConfig.from_env()
    return SnapshotPipeline(BinanceFuturesClient(config), config)
