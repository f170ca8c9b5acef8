"""Live ticks between full pipeline runs.

Ticks carry only price and volume. Merging them into the last snapshot
updates those two fields and leaves every indicator untouched until the
next full run recomputes it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Any, Iterable, Mapping, Optional, Sequence

from screener.types import InstrumentRecord, PriceTick

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_ticker_event(event: Mapping[str, Any]) -> Optional[PriceTick]:
    """Convert one 24h ticker stream event into a PriceTick.

    Fields used: ``s`` symbol, ``c`` last price, ``q`` quote volume,
    ``P`` price change percent, ``E`` event time.
    """
    symbol = event.get("s")
    if not symbol:
        return None
    price = _as_float(event.get("c"))
    volume = _as_float(event.get("q"))
    if price is None and volume is None:
        return None
    event_time = event.get("E")
    return PriceTick(
        symbol=str(symbol),
        price=price,
        volume=volume,
        price_change_percent=_as_float(event.get("P")),
        event_time=int(event_time) if isinstance(event_time, (int, float)) else None,
    )


def parse_ticker_array(payload: Any, allow: Optional[set[str]] = None) -> list[PriceTick]:
    """Parse an ``!ticker@arr`` message, keeping only allow-listed symbols.

    Symbols are matched case-insensitively; ``allow=None`` keeps everything.
    """
    events = payload if isinstance(payload, list) else [payload]
    wanted = {symbol.upper() for symbol in allow} if allow is not None else None

    ticks = []
    for event in events:
        if not isinstance(event, Mapping):
            continue
        tick = parse_ticker_event(event)
        if tick is None:
            continue
        if wanted is not None and tick.symbol.upper() not in wanted:
            continue
        ticks.append(tick)
    return ticks


def merge_ticks(records: Sequence[InstrumentRecord], ticks: Iterable[PriceTick]) -> list[InstrumentRecord]:
    """Apply the latest tick per symbol to a snapshot.

    Only positive prices and volumes are applied. Ticks for symbols absent
    from the snapshot are ignored. The result is re-sorted by volume
    (descending, stable).
    """
    latest: dict[str, PriceTick] = {}
    for tick in ticks:
        previous = latest.get(tick.symbol)
        if previous is None or (tick.event_time or 0) >= (previous.event_time or 0):
            latest[tick.symbol] = tick

    merged = []
    for record in records:
        tick = latest.get(record.symbol)
        if tick is None:
            merged.append(record)
            continue
        changes: dict[str, float] = {}
        if tick.price is not None and tick.price > 0:
            changes["current_price"] = tick.price
        if tick.volume is not None and tick.volume > 0:
            changes["volume"] = tick.volume
        merged.append(replace(record, **changes) if changes else record)

    merged.sort(key=lambda r: r.volume, reverse=True)
    return merged
