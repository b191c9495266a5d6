"""Exception taxonomy for upstream access and analytics computations."""

from typing import Optional


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics engine."""


class UpstreamError(AnalyticsError):
    """An upstream API call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UpstreamThrottled(UpstreamError):
    """
    The upstream rejected a call because of its rate limit.

    Recoverable: the request scheduler requeues the task and backs off.
    """

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message, status=429)
        self.retry_after = retry_after


class UpstreamAuthExpired(UpstreamError):
    """The access token was rejected, even after a refresh."""

    def __init__(self, message: str = "Access token expired"):
        super().__init__(message, status=401)


class RetriesExhausted(UpstreamError):
    """A throttled task was retried the maximum number of times."""

    def __init__(self, attempts: int):
        super().__init__(f"Upstream still throttling after {attempts} attempts", status=429)
        self.attempts = attempts
