from __future__ import annotations

from .ema import compute_ema, compute_ema_reading
from .engine import build_record, passes_validity_gate
from .open_interest import compute_oi_change
from .returns import compute_return
from .vwap import compute_vwap
from .zscore import compute_zscore

__all__ = [
    "build_record",
    "compute_ema",
    "compute_ema_reading",
    "compute_oi_change",
    "compute_return",
    "compute_vwap",
    "compute_zscore",
    "passes_validity_gate",
]
