"""Pytest configuration and shared fixtures."""

import json
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from pricewatch.core.exceptions import FetchError
from pricewatch.scrapers.factory import ExtractorRegistry
from pricewatch.scrapers.platforms import Platform
from pricewatch.scrapers.utils.proxy_client import ProxyInfo


FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# HTML BUILDERS
# ============================================================================

def amazon_page(
    title: Optional[str] = "Apple AirPods Pro (2nd Generation) Wireless Earbuds",
    price: Optional[str] = "$249.00",
    rating: Optional[str] = "4.7 out of 5 stars",
    rating_count: Optional[str] = "12,345 ratings",
    image: Optional[str] = "https://m.media-amazon.com/images/I/airpods.jpg",
    category: Optional[str] = "Headphones",
    json_ld: Optional[dict] = None,
    extra: str = "",
) -> str:
    parts = ["<html><head><title>Amazon.com</title>"]
    if json_ld is not None:
        parts.append(f'<script type="application/ld+json">{json.dumps(json_ld)}</script>')
    parts.append("</head><body>")
    if category is not None:
        parts.append(
            '<div id="wayfinding-breadcrumbs_feature_div"><ul>'
            '<li><span>Electronics</span></li>'
            f"<li><span>{category}</span></li></ul></div>"
        )
    if title is not None:
        parts.append(f'<span id="productTitle">  {title}  </span>')
    if price is not None:
        parts.append(f'<div class="a-price"><span class="a-offscreen">{price}</span></div>')
    if rating is not None:
        parts.append(f'<div id="acrPopover"><span class="a-icon-alt">{rating}</span></div>')
    if rating_count is not None:
        parts.append(f'<span id="acrCustomerReviewText">{rating_count}</span>')
    if image is not None:
        parts.append(f'<img id="landingImage" src="{image}">')
    parts.append(extra)
    parts.append("</body></html>")
    return "".join(parts)


def jumia_page(
    title: Optional[str] = "Samsung Galaxy A15 - 6.5-inch 128GB/4GB Dual Sim Mobile Phone",
    price: Optional[str] = "EGP 8,499.00",
    rating: Optional[str] = "4.2 out of 5",
    rating_count: Optional[str] = "(87 verified ratings)",
    image: Optional[str] = "https://eg.jumia.is/product/galaxy.jpg",
    category: Optional[str] = "Mobile Phones",
    extra: str = "",
) -> str:
    parts = ["<html><body>"]
    if category is not None:
        parts.append(
            '<div class="-pvs"><ol class="breadcrumb">'
            "<li>Phones &amp; Tablets</li>"
            f"<li>{category}</li></ol></div>"
        )
    if title is not None:
        parts.append(f'<div class="pdp-product-name"><h1>{title}</h1></div>')
    if price is not None:
        parts.append(f'<div class="price"><span class="notranslate">{price}</span></div>')
    if rating is not None:
        parts.append(f'<div class="stars _s">{rating}</div>')
    if rating_count is not None:
        parts.append(f'<div class="rating-label"><a href="#reviews">{rating_count}</a></div>')
    if image is not None:
        parts.append(f'<div class="pdp-gallery"><img data-src="{image}" src="data:image/gif;base64,R0lGOD"></div>')
    parts.append(extra)
    parts.append("</body></html>")
    return "".join(parts)


# ============================================================================
# TEST DOUBLES
# ============================================================================

class StubFetcher:
    """Fetcher double returning canned pages or raising canned errors per URL."""

    def __init__(self, pages: Optional[Dict[str, object]] = None, default: object = None):
        self.pages = pages or {}
        self.default = default
        self.calls: List[str] = []
        self.proxy_client = None

    async def fetch_with_retry(self, url: str, platform: Platform, max_attempts: Optional[int] = None) -> str:
        self.calls.append(url)
        page = self.pages.get(url, self.default)
        if isinstance(page, Exception):
            raise page
        if page is None:
            raise FetchError(url, f"no canned page for {url}")
        return page


class StubProxyClient:
    """Proxy client double handing out proxies from a fixed rotation."""

    def __init__(self, addresses: List[str]):
        self.proxies = [ProxyInfo.from_address(a) for a in addresses]
        self.handed_out: List[ProxyInfo] = []
        self._index = 0

    async def next_proxy(self) -> Optional[ProxyInfo]:
        if not self.proxies:
            return None
        proxy = self.proxies[self._index % len(self.proxies)]
        self._index += 1
        self.handed_out.append(proxy)
        return proxy

    async def rotate(self, previous: Optional[ProxyInfo], max_tries: int = 3) -> Optional[ProxyInfo]:
        proxy = await self.next_proxy()
        tries = 1
        while proxy is not None and previous is not None and proxy == previous and tries < max_tries:
            proxy = await self.next_proxy()
            tries += 1
        return proxy


class RecordingTransport:
    """Wraps an httpx.MockTransport handler and records every request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
def registry() -> ExtractorRegistry:
    """Registry with every platform enabled regardless of environment."""
    return ExtractorRegistry(enabled=list(Platform))


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW
