"""
Error Taxonomy
===============
Every failure the analytics core can surface.

  ParameterValidationError → client error (400), raised by providers / query builder
  MetricNotFoundError      → client error (404), unknown metric id
  LRSTransportError        → infrastructure error, one subclass per category
  LRSUnavailableError      → LRS down and no fallback could serve the request (503)
  CircuitOpenError         → breaker rejected the call without touching the LRS
"""

from typing import Optional


class AnalyticsError(Exception):
    """Base class for all errors raised by the analytics core."""


class ConfigurationError(AnalyticsError):
    """Invalid or incomplete service configuration."""


class ParameterValidationError(AnalyticsError, ValueError):
    """A metric parameter is missing or invalid. Surfaced verbatim to the caller."""


class MetricNotFoundError(AnalyticsError, LookupError):
    def __init__(self, metric_id: str):
        super().__init__(f"Metric with id '{metric_id}' not found in catalog")
        self.metric_id = metric_id


class LRSTransportError(AnalyticsError):
    """
    Failure talking to a Learning Record Store.

    `category` is one of: timeout, connection, auth, rate_limit, server, client, unknown.
    """

    category = "unknown"

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class LRSTimeoutError(LRSTransportError):
    category = "timeout"


class LRSConnectionError(LRSTransportError):
    category = "connection"


class LRSAuthError(LRSTransportError):
    category = "auth"


class LRSRateLimitError(LRSTransportError):
    category = "rate_limit"


class LRSServerError(LRSTransportError):
    category = "server"


class LRSClientError(LRSTransportError):
    category = "client"


class LRSUnknownError(LRSTransportError):
    category = "unknown"


class LRSUnavailableError(AnalyticsError):
    """LRS unreachable and no degraded answer available. Message never carries internals."""

    def __init__(self, message: str = "Learning Record Store is currently unavailable"):
        super().__init__(message)


class CircuitOpenError(AnalyticsError):
    """Raised when trying to call through an OPEN circuit breaker."""

    def __init__(self, service_name: str, time_until_retry_s: float):
        super().__init__(
            f"Circuit breaker [{service_name}] is OPEN, "
            f"retry in {time_until_retry_s:.0f}s"
        )
        self.service_name = service_name
        self.time_until_retry_s = time_until_retry_s


class CacheError(AnalyticsError):
    """Exception raised for cache backend failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying backend error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message
