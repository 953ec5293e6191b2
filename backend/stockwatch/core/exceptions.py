"""Custom exception classes for the application."""

from typing import Optional


class StockWatchException(Exception):
    """Base exception for all StockWatch errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(StockWatchException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class ScraperError(StockWatchException):
    """Raised when fetching or rendering a page fails outright."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Scraper error for {source}: {message}")


class UnsafeUrlError(StockWatchException):
    """Raised when a URL points somewhere we refuse to fetch."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Refusing to fetch '{url}': {reason}")


class TransientNetworkError(StockWatchException):
    """Raised for timeouts, resets and retryable 5xx responses."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Transient failure for {url}: {message}")


class RateLimitedError(StockWatchException):
    """Raised when a remote host answers 429."""

    def __init__(self, url: str, retry_after: Optional[float] = None):
        self.url = url
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {url}")
