"""Core data types and the base extractor interface.

Platform-specific extractors inherit from BaseExtractor and supply
selector lists, currency tables and platform-ID rules. The shared
extraction flow (structured data first, then ordered selector fallbacks)
lives here.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

import structlog
from bs4 import BeautifulSoup

from pricewatch.core.exceptions import ExtractionFailedError
from pricewatch.scrapers.platforms import Platform, url_host
from pricewatch.scrapers.utils.normalizer import (
    PriceNormalizer,
    clean_text,
    currency_for_host,
    detect_currency,
    parse_count,
    parse_rating,
)
from pricewatch.scrapers.utils.selectors import (
    Strategy,
    attr_strategies,
    first_match,
    text_strategies,
)
from pricewatch.scrapers.utils.structured_data import extract_product_fields

MAX_PRICE = Decimal("999999999.99")
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
_CATEGORY_SEPARATORS = re.compile(r"\s*[›>/|]\s*")

SOURCE_STRUCTURED = "structured_data"
SOURCE_SELECTOR = "selector"


@dataclass(frozen=True)
class Price:
    """Monetary amount rounded to two decimals with an ISO currency code."""

    amount: Decimal
    currency: str

    def __post_init__(self):
        """Validate and round after initialization."""
        if self.amount is None:
            raise ValueError("amount is required")
        amount = Decimal(str(self.amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if amount < 0 or amount > MAX_PRICE:
            raise ValueError(f"amount out of range: {amount}")
        if not _CURRENCY_CODE.match(self.currency or ""):
            raise ValueError(f"currency must be a 3-letter ISO code: {self.currency!r}")
        object.__setattr__(self, "amount", amount)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass
class RawExtraction:
    """Fields pulled from one product page before normalization."""

    title: str
    price: Decimal
    currency: str
    platform_id: Optional[str] = None
    rating: Optional[float] = None
    rating_count: int = 0
    image_url: Optional[str] = None
    category: Optional[str] = None
    sources: Dict[str, str] = field(default_factory=dict)  # field -> where it came from

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.title:
            raise ValueError("title is required")
        if self.price is None or self.price < 0:
            raise ValueError("price must be a non-negative Decimal")
        if self.rating is not None and not 0 <= self.rating <= 5:
            raise ValueError(f"rating must be within [0, 5]: {self.rating}")
        if self.rating_count < 0:
            raise ValueError("rating_count must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price)
        return data


@dataclass(frozen=True)
class NormalizedProduct:
    """Canonical product record produced by the mapper. Never mutated."""

    id: str
    title: str
    price: Decimal
    currency: str
    category: str
    platform: Platform
    product_url: str
    platform_id: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    rating_count: int = 0
    platform_category: Optional[str] = None
    completeness_score: float = 0.0
    scraped_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price)
        data["platform"] = self.platform.value
        data["scraped_at"] = self.scraped_at.isoformat() if self.scraped_at else None
        return data


@dataclass(frozen=True)
class CatalogEntry:
    """Stored product reference considered for rescraping."""

    id: str
    url: str
    platform: str
    scrape_count: int = 0
    last_scraped_at: Optional[datetime] = None
    is_active: bool = True


@dataclass(frozen=True)
class ScrapeTask:
    """Unit of rescrape work handed to the worker pool."""

    catalog_entry_id: str
    url: str
    platform: Platform
    tier: int = 0  # 0 = never scraped, 1 = stale
    attempt_count: int = 0


class BaseExtractor(ABC):
    """Abstract base class for per-platform product page extractors.

    Subclasses provide SELECTORS (field -> ordered CSS selectors),
    IMAGE_ATTRS, DOMAIN_CURRENCIES and extract_platform_id(). The shared
    extract() prefers schema.org JSON-LD values and falls back to the
    selector lists field by field.
    """

    platform: Platform
    SELECTORS: Dict[str, List[str]] = {}
    IMAGE_ATTRS: Tuple[str, ...] = ("src", "data-src", "data-lazy-src")
    DOMAIN_CURRENCIES: Tuple[Tuple[str, str], ...] = ()

    def __init__(self):
        self.logger = structlog.get_logger(extractor=self.platform.value)
        self.strategies: Dict[str, List[Strategy]] = self.build_strategies()

    def build_strategies(self) -> Dict[str, List[Strategy]]:
        """Build the ordered strategy list for every field."""
        return {
            "title": text_strategies(self.SELECTORS["title"]),
            "price": text_strategies(self.SELECTORS["price"]),
            "rating": text_strategies(self.SELECTORS["rating"]),
            "rating_count": text_strategies(self.SELECTORS["rating_count"]),
            "image_url": attr_strategies(self.SELECTORS["image"], self.IMAGE_ATTRS),
            "category": text_strategies(self.SELECTORS["category"]),
        }

    @abstractmethod
    def extract_platform_id(self, url: str, soup: BeautifulSoup) -> Optional[str]:
        """Platform product ID from the URL path, then query, then page markup."""
        pass

    def extract(self, html: str, url: str) -> RawExtraction:
        """Extract raw product fields from a product page.

        Args:
            html: Page HTML
            url: URL the page was fetched from

        Returns:
            RawExtraction with a title and a price

        Raises:
            ExtractionFailedError: If title or price cannot be found
        """
        soup = BeautifulSoup(html or "", "html.parser")
        structured = extract_product_fields(soup)
        sources: Dict[str, str] = {}

        def resolve(name: str, parse: Callable[[str], Any]) -> Any:
            raw = structured.get(name)
            if raw:
                value = parse(raw)
                if value is not None:
                    sources[name] = SOURCE_STRUCTURED
                    return value
            value = first_match(self.strategies[name], soup, parse)
            if value is not None:
                sources[name] = SOURCE_SELECTOR
            return value

        title = resolve("title", lambda t: self.clean_title(t) or None)
        if not title:
            self.logger.warning("extraction_missing_field", field="title", url=url)
            raise ExtractionFailedError(url, "title")

        def parse_price(text: str) -> Optional[Tuple[Decimal, str]]:
            value = PriceNormalizer.parse_price(text)
            return (value, text) if value is not None else None

        resolved_price = resolve("price", parse_price)
        if resolved_price is None:
            self.logger.warning("extraction_missing_field", field="price", url=url)
            raise ExtractionFailedError(url, "price")
        price, price_text = resolved_price

        declared_currency = structured.get("currency") if sources["price"] == SOURCE_STRUCTURED else None
        raw = RawExtraction(
            title=title,
            price=price,
            currency=self.resolve_currency(declared_currency, price_text, url),
            platform_id=self.extract_platform_id(url, soup),
            rating=resolve("rating", parse_rating),
            rating_count=resolve("rating_count", lambda t: parse_count(t) or None) or 0,
            image_url=resolve("image_url", self.resolve_image_url),
            category=resolve("category", lambda t: self.clean_category(t) or None),
            sources=sources,
        )

        self.logger.debug(
            "extraction_complete",
            url=url,
            platform_id=raw.platform_id,
            sources=sources,
        )
        return raw

    def resolve_currency(self, declared: Optional[str], price_text: str, url: str) -> str:
        """Currency from structured data, else price-text symbol, else domain default."""
        if declared and _CURRENCY_CODE.match(declared.upper()):
            return declared.upper()
        return (
            detect_currency(price_text)
            or currency_for_host(url_host(url), self.DOMAIN_CURRENCIES)
            or self.platform.default_currency
        )

    def resolve_image_url(self, src: str) -> Optional[str]:
        """Make an image URL absolute against the platform's canonical host."""
        src = (src or "").strip()
        if not src:
            return None
        return urljoin(f"https://{self.platform.canonical_host}/", src)

    def clean_title(self, text: str) -> str:
        return clean_text(text)

    def clean_category(self, text: str) -> str:
        """Keep the most specific breadcrumb segment."""
        segments = [s for s in _CATEGORY_SEPARATORS.split(clean_text(text)) if s]
        return segments[-1] if segments else ""


def match_platform_id(
    url: str,
    soup: BeautifulSoup,
    path_patterns: Sequence["re.Pattern[str]"],
    query_param: str,
    dom_strategies: Sequence[Strategy],
    accept: Callable[[str], Optional[str]],
) -> Optional[str]:
    """Shared primary/secondary/tertiary platform-ID lookup.

    Tries each path regex against the URL path, then ``query_param`` in the
    query string, then the DOM strategies, returning the first value that
    ``accept`` normalizes to non-None.
    """
    parsed = urlparse(url)
    for pattern in path_patterns:
        match = pattern.search(parsed.path)
        if match and accept(match.group(1)):
            return accept(match.group(1))

    query = {k.lower(): v for k, v in parse_qs(parsed.query).items()}
    for value in query.get(query_param.lower(), []):
        if accept(value):
            return accept(value)

    return first_match(dom_strategies, soup, accept)
