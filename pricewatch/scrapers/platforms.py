"""Supported marketplaces and URL-to-platform detection."""

from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlparse

from pricewatch.core.exceptions import UnsupportedPlatformError


class Platform(str, Enum):
    """Closed set of marketplaces the engine knows how to scrape.

    Declaration order is the detection order: the first platform whose
    domain list matches a host wins.
    """

    AMAZON = "amazon"
    JUMIA = "jumia"

    @property
    def domains(self) -> Tuple[str, ...]:
        return _PLATFORM_DOMAINS[self]

    @property
    def canonical_host(self) -> str:
        """Host used to resolve relative image and product links."""
        return _CANONICAL_HOSTS[self]

    @property
    def default_currency(self) -> str:
        return _DEFAULT_CURRENCIES[self]

    @property
    def price_bounds(self) -> Tuple[Decimal, Decimal]:
        """Inclusive (min, max) price accepted for a mapped product."""
        return _PRICE_BOUNDS[self]

    def matches_host(self, host: str) -> bool:
        """Check whether ``host`` equals or is a subdomain of a platform domain."""
        host = (host or "").lower().rstrip(".")
        return any(host == domain or host.endswith("." + domain) for domain in self.domains)

    @classmethod
    def from_string(cls, value: str) -> "Platform":
        """Parse a platform name (case-insensitive).

        Raises:
            UnsupportedPlatformError: If the name is unknown
        """
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise UnsupportedPlatformError(value, "unknown platform name") from None


_PLATFORM_DOMAINS = {
    Platform.AMAZON: (
        "amazon.com",
        "amazon.co.uk",
        "amazon.de",
        "amazon.fr",
        "amazon.ca",
        "amazon.eg",
    ),
    Platform.JUMIA: (
        "jumia.com.eg",
        "jumia.com",
        "jumia.co.ke",
        "jumia.com.ng",
    ),
}

_CANONICAL_HOSTS = {
    Platform.AMAZON: "www.amazon.com",
    Platform.JUMIA: "www.jumia.com.eg",
}

_DEFAULT_CURRENCIES = {
    Platform.AMAZON: "USD",
    Platform.JUMIA: "EGP",
}

_PRICE_BOUNDS = {
    Platform.AMAZON: (Decimal("0.01"), Decimal("999999.99")),
    Platform.JUMIA: (Decimal("1.00"), Decimal("9999999.99")),
}


def url_host(url: str) -> Optional[str]:
    """Lower-cased host of ``url``, or None if it has none."""
    try:
        host = urlparse((url or "").strip()).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def detect(url: str) -> Platform:
    """Map a product URL to its platform by domain suffix.

    Args:
        url: Product page URL

    Returns:
        The first platform (in declaration order) whose domains match

    Raises:
        UnsupportedPlatformError: If the URL has no host or no platform matches
    """
    host = url_host(url)
    if not host:
        raise UnsupportedPlatformError(url, "URL has no host")

    for platform in Platform:
        if platform.matches_host(host):
            return platform

    raise UnsupportedPlatformError(url)


def can_detect(url: str) -> bool:
    try:
        detect(url)
    except UnsupportedPlatformError:
        return False
    return True
