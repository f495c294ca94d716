"""Amazon product page extractor.

Selector lists are ordered from the current desktop layout to older and
regional variants. Amazon serves the same markup across its storefronts,
so only the currency table is domain dependent.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup

from pricewatch.scrapers.base import BaseExtractor, match_platform_id
from pricewatch.scrapers.platforms import Platform
from pricewatch.scrapers.utils.normalizer import clean_text
from pricewatch.scrapers.utils.selectors import attr_strategies

_ASIN = re.compile(r"^[A-Z0-9]{10}$")
_ASIN_PATH_PATTERNS = (
    re.compile(r"/(?:dp|gp/product|product)/([A-Za-z0-9]{10})(?:[/?]|$)"),
)


def _accept_asin(value: str) -> Optional[str]:
    value = (value or "").strip().upper()
    return value if _ASIN.match(value) else None


class AmazonExtractor(BaseExtractor):
    """Extractor for Amazon product detail pages."""

    platform = Platform.AMAZON

    SELECTORS = {
        "title": [
            "#productTitle",
            ".product_title",
            "h1.a-size-large",
            "h1 span",
            ".pdp-product-name h1",
        ],
        "price": [
            ".a-price-current .a-offscreen",
            ".a-price .a-offscreen",
            "span.a-price-symbol + span.a-price-whole",
            ".a-price-range .a-price .a-offscreen",
            "#corePrice_feature_div .a-price .a-offscreen",
            ".a-box-group .a-price .a-offscreen",
            ".a-price-current",
            ".pricePerUnit",
        ],
        "rating": [
            "#acrPopover .a-icon-alt",
            '[data-hook="average-star-rating"] .a-icon-alt',
            ".acrPopover .a-icon-alt",
            ".a-icon-alt",
            ".cr-original-review-text .a-icon-alt",
        ],
        "rating_count": [
            '[data-hook="total-review-count"]',
            "#acrCustomerReviewText",
            ".totalReviewCount",
            'a[href*="#customerReviews"] span',
            ".a-link-normal span[aria-label]",
        ],
        "image": [
            "#landingImage",
            "#imgBlkFront",
            ".a-dynamic-image",
            "#main-image img",
            ".image-wrapper img",
            ".product-image img",
        ],
        "category": [
            "#wayfinding-breadcrumbs_feature_div li:last-child span",
            ".a-breadcrumb .a-list-item:last-child a",
            '[data-testid="breadcrumb-list"] li:last-child',
            "#SalesRank .a-list-item:first-child",
            ".nav-progressive-attribute",
        ],
    }

    IMAGE_ATTRS = ("src", "data-old-hires", "data-src", "data-lazy-src")

    # Checked in order; longer suffixes first
    DOMAIN_CURRENCIES = (
        ("amazon.co.uk", "GBP"),
        ("amazon.de", "EUR"),
        ("amazon.fr", "EUR"),
        ("amazon.ca", "CAD"),
        ("amazon.eg", "EGP"),
        ("amazon.com", "USD"),
    )

    def __init__(self):
        super().__init__()
        self._asin_dom_strategies = attr_strategies(
            ['input#ASIN', 'input[name="ASIN"]'], ("value",)
        ) + attr_strategies(["[data-asin]"], ("data-asin",))

    def extract_platform_id(self, url: str, soup: BeautifulSoup) -> Optional[str]:
        """ASIN from /dp/, /gp/product/ or /product/ paths, ?asin=, or page markup."""
        return match_platform_id(
            url,
            soup,
            path_patterns=_ASIN_PATH_PATTERNS,
            query_param="asin",
            dom_strategies=self._asin_dom_strategies,
            accept=_accept_asin,
        )

    def clean_category(self, text: str) -> str:
        # "in Electronics" style sales-rank fragments
        category = super().clean_category(text)
        category = re.sub(r"^in\s+", "", category, flags=re.IGNORECASE)
        category = re.sub(r"^#[\d,]+\s+in\s+", "", category)
        return clean_text(re.sub(r"\s*\(.*$", "", category))
