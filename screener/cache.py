"""In-process snapshot cache.

Single writer (the pipeline), many readers. The current entry is an immutable
object swapped in by one reference assignment, so readers never wait and
never observe a half-written entry; during a refresh they keep getting the
previous entry.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from screener.types import InstrumentRecord


@dataclass(frozen=True)
class CacheEntry:
    records: tuple[InstrumentRecord, ...]
    computed_at: float  # Unix timestamp


class SnapshotCache:
    """Holds the last complete record set with a time-to-live."""

    def __init__(self, ttl_seconds: float = 120.0, *, clock: Callable[[], float] = time.time) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: Optional[CacheEntry] = None

    def now(self) -> float:
        return self._clock()

    def peek(self) -> Optional[CacheEntry]:
        """Current entry regardless of age."""
        return self._entry

    def get(self) -> Optional[CacheEntry]:
        """Current entry if it is still within the TTL."""
        entry = self._entry
        if entry is None or not self.is_fresh(entry):
            return None
        return entry

    def is_fresh(self, entry: CacheEntry) -> bool:
        return (self._clock() - entry.computed_at) < self.ttl_seconds

    def age_seconds(self) -> Optional[float]:
        entry = self._entry
        if entry is None:
            return None
        return max(0.0, self._clock() - entry.computed_at)

    def put(self, records: Sequence[InstrumentRecord]) -> CacheEntry:
        entry = CacheEntry(records=tuple(records), computed_at=self._clock())
        self._entry = entry
        return entry

    def clear(self) -> None:
        self._entry = None
