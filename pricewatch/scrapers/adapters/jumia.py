"""Jumia product page extractor.

Jumia encodes star ratings in class names (``stars _s4``) on some
layouts and as text on others, and lazy-loads gallery images through
``data-src``.
"""

import re
from typing import List, Optional

from bs4 import BeautifulSoup

from pricewatch.scrapers.base import BaseExtractor, match_platform_id
from pricewatch.scrapers.platforms import Platform
from pricewatch.scrapers.utils.selectors import Strategy, attr_strategies, select_text
from pricewatch.scrapers.utils.structured_data import find_product

_SKU = re.compile(r"^[A-Za-z0-9]{6,}$")
_SKU_PATH_PATTERNS = (
    re.compile(r"-([A-Za-z0-9]{6,})\.html$"),
)
_RATING_CLASS_PATTERNS = (
    re.compile(r"(?:^|\s)_s(\d+(?:\.\d+)?)(?:\s|$)"),
    re.compile(r"rating-(\d)"),
)


def _accept_sku(value: str) -> Optional[str]:
    value = (value or "").strip()
    return value if _SKU.match(value) else None


def _rating_from_class(selector: str) -> Strategy:
    """Strategy reading a star rating encoded in an element's class list."""

    def strategy(soup: BeautifulSoup) -> Optional[str]:
        for element in soup.select(selector):
            classes = " ".join(element.get("class") or [])
            for pattern in _RATING_CLASS_PATTERNS:
                match = pattern.search(classes)
                if match:
                    return match.group(1)
        return None

    strategy.__name__ = f"rating_class[{selector}]"
    return strategy


def _json_ld_sku(soup: BeautifulSoup) -> Optional[str]:
    product = find_product(soup) or {}
    sku = product.get("sku")
    return str(sku) if sku else None


class JumiaExtractor(BaseExtractor):
    """Extractor for Jumia product detail pages."""

    platform = Platform.JUMIA

    SELECTORS = {
        "title": [
            '[data-testid="pdp-product-name"] h1',
            ".pdp-product-name h1",
            "h1.-fs20.-pts.-pbxs",
            ".pdp-title h1",
            ".pdp-product-title",
            "h1.title",
        ],
        "price": [
            ".price .notranslate",
            ".current-price .notranslate",
            ".-tal .notranslate",
            ".price-box .price",
            ".price-current",
            ".-b.-ltr.-tal.-fs20.-prxs span",
        ],
        "rating": [
            ".stars._s",
            '[data-testid="star-rating"]',
            ".rating-stars .stars",
            ".review-stars .stars",
            ".star-rating",
        ],
        "rating_count": [
            ".rating-label a",
            '[data-testid="review-count"]',
            ".rating-count",
            ".review-count",
            ".total-reviews",
        ],
        "image": [
            ".pdp-gallery img[data-src]",
            ".gallery-image img",
            ".product-gallery img",
            ".image-viewer img",
            ".pdp-image img",
            ".main-image img",
        ],
        "category": [
            ".-pvs .breadcrumb li:last-child",
            ".breadcrumb .breadcrumb-item:last-child",
            ".category-breadcrumb li:last-child",
            ".pdp-breadcrumb li:last-child",
            ".navigation-breadcrumb .last",
        ],
    }

    IMAGE_ATTRS = ("data-src", "src", "data-lazy-src")

    DOMAIN_CURRENCIES = (
        ("jumia.com.eg", "EGP"),
        ("jumia.co.ke", "KES"),
        ("jumia.com.ng", "NGN"),
        ("jumia.com", "USD"),
    )

    def __init__(self):
        super().__init__()
        self._sku_dom_strategies = attr_strategies(["[data-sku]"], ("data-sku",)) + attr_strategies(
            ['meta[property="product:retailer_item_id"]', 'meta[itemprop="sku"]'], ("content",)
        ) + [_json_ld_sku]

    def build_strategies(self):
        strategies = super().build_strategies()
        rating: List[Strategy] = []
        for selector in self.SELECTORS["rating"]:
            # Text ("4.2 out of 5") first, then the class-encoded form
            rating.append(select_text(selector))
            rating.append(_rating_from_class(selector))
        strategies["rating"] = rating
        return strategies

    def extract_platform_id(self, url: str, soup: BeautifulSoup) -> Optional[str]:
        """SKU from the trailing ``-<SKU>.html`` path segment, ?sku=, or page markup."""
        return match_platform_id(
            url,
            soup,
            path_patterns=_SKU_PATH_PATTERNS,
            query_param="sku",
            dom_strategies=self._sku_dom_strategies,
            accept=_accept_sku,
        )
