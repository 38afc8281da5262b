"""
errors.py — Typed failures raised by the data layer.

Provider adapters translate their upstream's failure shapes into one of the
DataFetchError subclasses, so the orchestrator branches on type alone:

    QuotaExceeded : 429/403 or an upstream "rate limit" payload; cools the key down
    NotFound      : the subject has no data upstream
    TransientError: network failure, timeout, 5xx, malformed body

StoreUnavailable belongs to the Redis layer and never leaves cache.py /
rate_limiter.py.
"""

from __future__ import annotations


class DataFetchError(Exception):
    """Base for every error a consumer of the orchestrator can see."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class QuotaExceeded(DataFetchError):
    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, provider=provider, status_code=status_code)
        self.retry_after = retry_after


class NotFound(DataFetchError):
    pass


class TransientError(DataFetchError):
    pass


class StoreUnavailable(Exception):
    """The Redis counter/cache store cannot serve the command."""


class RateLimitExceeded(Exception):
    """Raised by RateLimiter.enforce() when the window budget is spent."""

    def __init__(self, resource: str, retry_after: int) -> None:
        super().__init__(f"{resource} exceeded, retry after {retry_after}s")
        self.resource = resource
        self.retry_after = retry_after
