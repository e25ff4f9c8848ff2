from __future__ import annotations


class CellcheckHTTPError(RuntimeError):
    """Base error for shared HTTP client operations."""


class CellcheckHTTPStatusError(CellcheckHTTPError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class CellcheckHTTPNetworkError(CellcheckHTTPError):
    """Raised when request retries are exhausted for transport errors."""


class RateLimitedError(CellcheckHTTPStatusError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=429)


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, CellcheckHTTPStatusError) and exc.is_rate_limited:
        return True
    return "429" in str(exc)
