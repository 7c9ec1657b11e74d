"""Custom exception classes for the application."""

from typing import Optional


class AchadinhosException(Exception):
    """Base exception for all Achadinhos errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class NotFoundError(AchadinhosException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class ScraperError(AchadinhosException):
    """Raised when a scraper strategy cannot complete a run."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"Scraper error for {platform}: {message}")


class StrategyNotRegisteredError(ScraperError):
    """Raised when no strategy is registered for a marketplace."""

    def __init__(self, platform: str):
        super().__init__(platform, f"no scraper registered for platform {platform}")


class FetchError(AchadinhosException):
    """Base class for HTTP fetch failures."""

    def __init__(
        self,
        url: str,
        message: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        self.url = url
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


class RateLimitedError(FetchError):
    """Raised when a site keeps answering 429 past the allowed number of waits."""

    def __init__(self, url: str, waits: int):
        self.waits = waits
        super().__init__(
            url,
            f"Rate limit exceeded for {url} after {waits} waits",
            status_code=429,
            reason="Too Many Requests",
        )


class ClientHTTPError(FetchError):
    """Raised on a 4xx response (other than 429). Never retried."""

    def __init__(self, url: str, status_code: int, reason: str):
        super().__init__(url, f"HTTP {status_code}: {reason}", status_code=status_code, reason=reason)


class ServerHTTPError(FetchError):
    """Raised on a 5xx response once the retry budget is exhausted."""

    def __init__(self, url: str, status_code: int, reason: str):
        super().__init__(url, f"HTTP {status_code}: {reason}", status_code=status_code, reason=reason)


class NetworkError(FetchError):
    """Raised on transport failures (timeouts, refused connections, redirect loops)."""

    def __init__(self, url: str, message: str):
        super().__init__(url, f"Network error fetching {url}: {message}")


class UnsupportedDatabaseError(AchadinhosException):
    """Raised when a storage operation has no implementation for the SQL dialect."""

    def __init__(self, dialect: str, operation: str):
        self.dialect = dialect
        super().__init__(f"{operation} is not supported on {dialect}")
