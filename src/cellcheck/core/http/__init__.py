from .client import RetryPolicy, build_http_client, build_timeout, error_message, request_with_retry
from .errors import (
    CellcheckHTTPError,
    CellcheckHTTPNetworkError,
    CellcheckHTTPStatusError,
    RateLimitedError,
    is_rate_limit_error,
)

__all__ = [
    "RetryPolicy",
    "build_http_client",
    "build_timeout",
    "error_message",
    "request_with_retry",
    "is_rate_limit_error",
    "CellcheckHTTPError",
    "CellcheckHTTPNetworkError",
    "CellcheckHTTPStatusError",
    "RateLimitedError",
]
