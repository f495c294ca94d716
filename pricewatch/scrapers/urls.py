"""Product URL value object and URL clean-up helpers."""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pricewatch.core.exceptions import InvalidURLError
from pricewatch.scrapers.platforms import Platform, url_host

MAX_URL_LENGTH = 500

# Query parameters that identify the referrer, never the product
TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "utm_term",
        "ref",
        "referrer",
        "fbclid",
        "gclid",
    }
)


def normalize_url(url: str) -> str:
    """Remove tracking parameters from a URL, keeping everything else.

    Args:
        url: URL to normalize

    Returns:
        URL without tracking parameters
    """
    if not url:
        return url

    parsed = urlparse(url)
    kept = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    return urlunparse(parsed._replace(query=urlencode(kept)))


@dataclass(frozen=True)
class ProductURL:
    """A validated absolute http(s) product page URL."""

    value: str

    def __post_init__(self):
        url = (self.value or "").strip()
        if not url:
            raise InvalidURLError(self.value, "URL is empty")
        if len(url) > MAX_URL_LENGTH:
            raise InvalidURLError(url[:60] + "...", f"URL exceeds {MAX_URL_LENGTH} characters")

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise InvalidURLError(url, "scheme must be http or https")
        if not url_host(url):
            raise InvalidURLError(url, "URL has no host")
        object.__setattr__(self, "value", url)

    @classmethod
    def parse(cls, url: str, platform: Optional[Platform] = None) -> "ProductURL":
        """Validate ``url`` and optionally check it belongs to ``platform``.

        Raises:
            InvalidURLError: If validation fails or the host is not on ``platform``
        """
        product_url = cls(url)
        if platform is not None and not product_url.matches_platform(platform):
            raise InvalidURLError(url, f"host is not a {platform.value} domain")
        return product_url

    @property
    def host(self) -> str:
        return url_host(self.value)

    @property
    def domain(self) -> str:
        """Host without a leading ``www.``."""
        host = self.host
        return host[4:] if host.startswith("www.") else host

    def matches_platform(self, platform: Platform) -> bool:
        return platform.matches_host(self.host)

    def normalized(self) -> str:
        return normalize_url(self.value)

    def __str__(self) -> str:
        return self.value
