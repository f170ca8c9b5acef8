"""Upstream request-weight status."""

from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from screener.ratelimit import RateLimitInfo, get_tracker

router = APIRouter(prefix="/ratelimit", tags=["ratelimit"])


class RateLimitStatus(BaseModel):
    exchange: str
    endpoint: str
    limit: int
    used: int
    remaining: int
    usage_percent: float
    reset_at: float
    reset_in_seconds: int
    status: Literal["ok", "warning", "critical"]
    throttling: bool
    window_seconds: int


class RateLimitStatusResponse(BaseModel):
    limits: List[RateLimitStatus]
    count: int


class ExchangesResponse(BaseModel):
    exchanges: List[str]
    count: int


def _to_status(info: RateLimitInfo, throttling: bool) -> RateLimitStatus:
    return RateLimitStatus(
        exchange=info.exchange,
        endpoint=info.endpoint,
        limit=info.limit,
        used=info.used,
        remaining=info.remaining,
        usage_percent=round(info.usage_percent, 2),
        reset_at=info.reset_at,
        reset_in_seconds=info.reset_in_seconds,
        status=info.status,
        throttling=throttling,
        window_seconds=info.window_seconds,
    )


@router.get("/status", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(
    exchange: Optional[str] = Query(None, description="Filter by exchange"),
):
    """Current weight usage per tracked exchange, with expired windows dropped."""
    tracker = get_tracker()
    tracker.clear_expired()

    limits = [
        _to_status(info, tracker.should_throttle(info.exchange, info.endpoint))
        for info in tracker.get_all(exchange=exchange)
    ]
    return RateLimitStatusResponse(limits=limits, count=len(limits))


@router.get("/exchanges", response_model=ExchangesResponse)
async def get_exchanges():
    tracker = get_tracker()
    exchanges = sorted({info.exchange for info in tracker.get_all()})
    return ExchangesResponse(exchanges=exchanges, count=len(exchanges))
