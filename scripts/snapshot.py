#!/usr/bin/env python3
"""Run one pipeline pass and print the ranked instruments.

Usage:
    python scripts/snapshot.py [--limit N] [--json] [--deadline SECONDS]

Examples:
    python scripts/snapshot.py --limit 20
    python scripts/snapshot.py --json --deadline 30 > snapshot.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from screener import build_pipeline  # noqa: E402
from screener.config import ScreenerConfig  # noqa: E402
from screener.errors import ScreenerError  # noqa: E402
from screener.types import InstrumentRecord  # noqa: E402

logger = logging.getLogger(__name__)


def _fmt(value: float | None, suffix: str = "") -> str:
    if value is None:
        return "-"
    return f"{value:+.2f}{suffix}"


def format_table(records: list[InstrumentRecord]) -> str:
    header = (
        f"{'#':>3}  {'SYMBOL':<14}{'PRICE':>14}{'VOLUME':>16}"
        f"{'1D%':>9}{'7D%':>9}{'30D%':>9}{'EMA1D%':>9}{'Z':>7}{'OI24H%':>9}"
    )
    lines = [header, "-" * len(header)]
    for rank, r in enumerate(records, start=1):
        lines.append(
            f"{rank:>3}  {r.symbol:<14}{r.current_price:>14.6g}{r.volume:>16,.0f}"
            f"{_fmt(r.daily_return):>9}{_fmt(r.weekly_return):>9}{_fmt(r.monthly_return):>9}"
            f"{_fmt(r.ema200_1d.distance):>9}{_fmt(r.z_score):>7}{_fmt(r.oi_change_24h):>9}"
        )
    return "\n".join(lines)


async def _run(config: ScreenerConfig, deadline: float | None) -> tuple[list[InstrumentRecord], bool]:
    pipeline = build_pipeline(config)
    try:
        run = await pipeline.run(deadline=deadline)
    finally:
        await pipeline.aclose()

    logger.info(
        "Computed %d/%d instruments (%d dropped, %d rate limited)",
        len(run.records),
        run.requested,
        len(run.dropped),
        run.rate_limited_drops,
    )
    return list(run.records), run.partial


def main() -> int:
    parser = argparse.ArgumentParser(description="Compute one futures screener snapshot.")
    parser.add_argument("--limit", type=int, default=None, help="Universe size (default: SCREENER_UNIVERSE_SIZE or 100)")
    parser.add_argument("--json", action="store_true", help="Print records as JSON instead of a table")
    parser.add_argument("--deadline", type=float, default=None, help="Seconds allowed before returning a partial result")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = ScreenerConfig.from_env()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    if args.limit is not None:
        if args.limit < 1:
            logger.error("--limit must be >= 1")
            return 1
        config = replace(config, universe_size=args.limit)

    try:
        records, partial = asyncio.run(_run(config, args.deadline))
    except ScreenerError as exc:
        logger.error("Snapshot failed: %s", exc)
        return 2

    if args.json:
        print(json.dumps({"partial": partial, "records": [asdict(r) for r in records]}, indent=2))
    else:
        print(format_table(records))
        if partial:
            print("\n(partial result: deadline reached)")

    return 0


if __name__ == "__main__":
    sys.exit(main())
