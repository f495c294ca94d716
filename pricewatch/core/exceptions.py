"""Exception taxonomy for the extraction and rescrape pipeline.

Every error carries a ``retryable`` flag that the task layer consults to
decide whether a failed scrape is worth another attempt.
"""

from typing import Optional


class PriceWatchException(Exception):
    """Base exception for all pricewatch errors."""

    retryable: bool = False

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class UnsupportedPlatformError(PriceWatchException):
    """Raised when a URL or platform name maps to no known platform."""

    def __init__(self, value: str, reason: str = "no platform matches"):
        self.value = value
        super().__init__(f"Unsupported platform for '{value}': {reason}")


class InvalidURLError(PriceWatchException):
    """Raised when a product URL fails validation."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid product URL '{url}': {reason}")


class FetchError(PriceWatchException):
    """Base class for failures while retrieving a page.

    ``proxy`` records the proxy used for the failed request so that the
    retry loop can ask for a different one.
    """

    def __init__(self, url: str, message: str, proxy=None):
        self.url = url
        self.proxy = proxy
        super().__init__(message)


class NetworkError(FetchError):
    """Connection, DNS, TLS or timeout failure."""

    retryable = True

    def __init__(self, url: str, detail: str, proxy=None):
        super().__init__(url, f"Network error fetching {url}: {detail}", proxy=proxy)


class HTTPError(FetchError):
    """Non-2xx response. Only server-side (5xx) statuses are retryable."""

    def __init__(self, url: str, status_code: int, proxy=None):
        self.status_code = status_code
        super().__init__(url, f"HTTP {status_code} fetching {url}", proxy=proxy)

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class BlockedError(FetchError):
    """Response body matched a bot-wall or CAPTCHA signature."""

    retryable = True

    def __init__(self, url: str, signature: str, proxy=None):
        self.signature = signature
        super().__init__(url, f"Blocked fetching {url} (matched '{signature}')", proxy=proxy)


class AllAttemptsFailedError(PriceWatchException):
    """Every fetch attempt for a URL failed."""

    def __init__(self, url: str, attempts: int, last_error: Optional[Exception] = None):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All {attempts} attempts failed for {url}{detail}")

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.last_error, "retryable", False))


class ExtractionFailedError(PriceWatchException):
    """A required field (title or price) could not be extracted."""

    def __init__(self, url: str, field: str):
        self.url = url
        self.field = field
        super().__init__(f"Could not extract required field '{field}' from {url}")


class MappingError(PriceWatchException):
    """Raised when raw extraction data cannot be normalized."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    @classmethod
    def invalid_field(cls, field: str, value, reason: str = "") -> "MappingError":
        suffix = f" ({reason})" if reason else ""
        return cls(f"Invalid value for field '{field}': {value!r}{suffix}", field=field)

    @classmethod
    def empty_field(cls, field: str) -> "MappingError":
        return cls(f"Required field '{field}' is empty", field=field)

    @classmethod
    def failed(cls, reason: str) -> "MappingError":
        return cls(f"Product mapping failed: {reason}")


class TaskTimeoutError(PriceWatchException):
    """A scrape task exceeded its wall-clock limit."""

    retryable = True

    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Scrape task for {url} timed out after {timeout:g}s")


class ProxyServiceError(PriceWatchException):
    """The proxy pool service could not be reached after all retries."""

    def __init__(self, endpoint: str, detail: str):
        self.endpoint = endpoint
        super().__init__(f"Proxy service request to {endpoint} failed: {detail}")
