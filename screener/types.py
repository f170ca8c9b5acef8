from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

Timeframe = Literal["5m", "15m", "1h", "4h", "1d"]


@dataclass(frozen=True)
class Candle:
    symbol: str
    exchange: str
    timeframe: Timeframe
    open_time: datetime
    close_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


@dataclass(frozen=True)
class ContractInfo:
    symbol: str
    status: str
    contract_type: str
    quote_asset: Optional[str] = None


@dataclass(frozen=True)
class Ticker24h:
    symbol: str
    last_price: Decimal
    quote_volume: Decimal
    price_change_percent: Optional[Decimal] = None


@dataclass(frozen=True)
class CandleSeries:
    """Coarse (daily) and fine (4h) candles for one symbol.

    The fine series is optional and may be empty.
    """

    symbol: str
    coarse: tuple[Candle, ...]
    fine: tuple[Candle, ...] = ()


@dataclass(frozen=True)
class OpenInterestPoint:
    timestamp: int  # ms since epoch
    sum_open_interest: Decimal


@dataclass(frozen=True)
class OpenInterestSnapshot:
    symbol: str
    current: Decimal
    history: tuple[OpenInterestPoint, ...] = ()
    period: Optional[str] = None  # granularity that produced the history


@dataclass(frozen=True)
class VwapReading:
    value: float
    distance: float  # % distance of current price from vwap


@dataclass(frozen=True)
class EmaReading:
    value: float
    distance: float  # % distance of the reference close from ema


@dataclass(frozen=True)
class InstrumentRecord:
    symbol: str
    current_price: float
    daily_return: float
    weekly_return: float
    monthly_return: float
    volume: float  # 24h quote volume
    vwap_7d: VwapReading
    vwap_30d: VwapReading
    vwap_90d: VwapReading
    vwap_365d: VwapReading
    ema200_4h: EmaReading
    ema200_1d: EmaReading
    z_score: Optional[float] = None
    oi_change_24h: Optional[float] = None
    oi_change_7d: Optional[float] = None


@dataclass(frozen=True)
class PriceTick:
    symbol: str
    price: Optional[float] = None
    volume: Optional[float] = None
    price_change_percent: Optional[float] = None
    event_time: Optional[int] = None
