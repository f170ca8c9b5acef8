#!/usr/bin/env python3
"""Run the screener API server.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--reload]

Environment:
    SCREENER_* - Optional overrides for the pipeline configuration
                 (e.g. SCREENER_UNIVERSE_SIZE=50, SCREENER_CACHE_TTL_SECONDS=60).

Examples:
    python scripts/run_api.py
    python scripts/run_api.py --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from screener.config import ScreenerConfig  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the futures screener API server.")
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    args = parser.parse_args()

    # Fail fast on bad SCREENER_* values instead of inside the app lifespan
    try:
        ScreenerConfig.from_env()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Starting screener API on {args.host}:{args.port}")
    print("Endpoints:")
    print(f"  - GET http://{args.host}:{args.port}/snapshot")
    print(f"  - GET http://{args.host}:{args.port}/ping")
    print(f"  - GET http://{args.host}:{args.port}/health")
    print(f"  - WS  ws://{args.host}:{args.port}/ws/ticks")
    print()

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
