"""Upstream rate limit tracking."""

from screener.ratelimit.tracker import WEIGHT_ENDPOINT, RateLimitInfo, RateLimitTracker, get_tracker

__all__ = ["WEIGHT_ENDPOINT", "RateLimitInfo", "RateLimitTracker", "get_tracker"]
