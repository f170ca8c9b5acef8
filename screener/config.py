"""Screener configuration.

Values default to the production constants and can be overridden through
``SCREENER_*`` environment variables (see ``ScreenerConfig.from_env``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping


@dataclass(frozen=True)
class ScreenerConfig:
    """Pipeline configuration."""

    rest_base_url: str = "https://fapi.binance.com"
    ws_url: str = "wss://fstream.binance.com/ws/!ticker@arr"

    # Universe
    universe_size: int = 100
    contract_type: str = "PERPETUAL"
    quote_asset: str = "USDT"
    min_quote_volume: float = 10_000.0

    # Candles
    coarse_interval: str = "1d"
    fine_interval: str = "4h"
    candle_limit: int = 500
    batch_size: int = 25
    batch_pause_seconds: float = 0.1

    # Timeouts (seconds)
    request_timeout: float = 10.0
    oi_timeout: float = 3.0
    oi_history_timeout: float = 5.0

    # Retry
    price_max_attempts: int = 3
    price_base_delay: float = 1.0
    oi_max_attempts: int = 2
    oi_base_delay: float = 0.5
    universe_max_attempts: int = 2
    universe_base_delay: float = 1.0
    max_backoff_seconds: float = 30.0

    # Cache
    cache_ttl_seconds: float = 120.0

    # Upstream request-weight budget per minute (Binance futures default)
    weight_limit_per_minute: int = 2400

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ScreenerConfig":
        """Build a config from ``SCREENER_<FIELD>`` environment variables.

        Unknown or empty variables are ignored; values are coerced to the
        field's default type.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(f"SCREENER_{f.name.upper()}", "").strip()
            if not raw:
                continue
            default = f.default
            try:
                if isinstance(default, int):
                    overrides[f.name] = int(raw)
                elif isinstance(default, float):
                    overrides[f.name] = float(raw)
                else:
                    overrides[f.name] = raw
            except ValueError as exc:
                raise ValueError(f"Invalid value for SCREENER_{f.name.upper()}: {raw!r}") from exc
        return cls(**overrides)
