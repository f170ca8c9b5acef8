"""Error taxonomy for upstream and pipeline failures."""

from __future__ import annotations


class ScreenerError(Exception):
    """Base exception for screener failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return False


class RateLimited(ScreenerError):
    """Upstream rejected the request for exceeding its rate limit (429/418)."""

    def __init__(self, message: str, status_code: int | None = 429, retry_after: float | None = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return True


class UpstreamUnavailable(ScreenerError):
    """Network error, timeout, or non rate-limit HTTP failure."""


class MalformedData(ScreenerError):
    """Payload could not be parsed or holds out-of-range values."""


class InsufficientHistory(ScreenerError):
    """Not enough candles or readings to compute an indicator."""


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def classify_http_error(status_code: int, message: str, retry_after: str | None = None) -> ScreenerError:
    """Map an HTTP failure status onto the error taxonomy.

    Args:
        status_code: HTTP status code
        message: Error message
        retry_after: Raw Retry-After header, if any

    Returns:
        Appropriate ScreenerError subclass
    """
    # Binance answers 418 once an IP is auto-banned for ignoring 429s
    if status_code in {418, 429}:
        return RateLimited(message, status_code=status_code, retry_after=parse_retry_after(retry_after))

    return UpstreamUnavailable(message, status_code=status_code)


def is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, RateLimited)


def is_transient_unavailable(exc: BaseException) -> bool:
    """Network errors, timeouts and 5xx responses; not 4xx rejections."""
    if not isinstance(exc, UpstreamUnavailable):
        return False
    return exc.status_code is None or exc.status_code >= 500
