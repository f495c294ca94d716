"""Maps raw extractions to canonical NormalizedProduct records.

Responsible for the deterministic product ID, title clean-up, per-platform
price bounds, currency resolution, category bucketing and the
completeness score.
"""

import hashlib
import unicodedata
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from pricewatch.core.exceptions import MappingError
from pricewatch.scrapers.base import NormalizedProduct, Price, RawExtraction
from pricewatch.scrapers.platforms import Platform
from pricewatch.scrapers.utils.normalizer import (
    CURRENCY_SYMBOLS,
    KNOWN_CURRENCIES,
    CategoryClassifier,
    clean_text,
    detect_currency,
)

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 500
MIN_TITLE_LENGTH = 3
DEFAULT_CATEGORY = "General"
DEFAULT_CURRENCY = "USD"

# Bucket order matters: ties go to the bucket declared first
PLATFORM_CATEGORIES: Dict[Platform, Dict[str, List[str]]] = {
    Platform.AMAZON: {
        "electronics": [
            "Electronics", "Computers", "Cell Phones", "Phones", "Mobile",
            "Camera", "TV", "Laptop", "Tablet", "Headphones",
        ],
        "clothing": ["Clothing", "Shoes", "Jewelry", "Watches", "Handbags"],
        "home": ["Home", "Kitchen", "Garden", "Tools", "Furniture"],
        "books": ["Books", "Kindle", "Audible", "Magazines"],
        "health": ["Health", "Beauty", "Personal Care", "Sports"],
        "toys": ["Toys", "Games", "Baby Products"],
        "automotive": ["Automotive", "Motorcycle", "Industrial"],
    },
    Platform.JUMIA: {
        "electronics": ["Phones", "Computers", "Electronics", "Gaming", "Tablets"],
        "fashion": ["Fashion", "Shoes", "Bags", "Jewelry"],
        "home": ["Home", "Appliances", "Furniture", "Garden"],
        "beauty": ["Health & Beauty", "Personal Care"],
        "sports": ["Sports", "Outdoor"],
        "baby": ["Baby Products", "Kids"],
        "automotive": ["Automotive", "Parts & Accessories"],
    },
}

# Equal weights: every populated field counts the same
COMPLETENESS_WEIGHTS: Dict[str, float] = {
    "title": 1.0,
    "price": 1.0,
    "currency": 1.0,
    "category": 1.0,
    "image_url": 1.0,
    "rating": 1.0,
    "rating_count": 1.0,
}


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    completeness_score: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


def generate_product_id(platform: Platform, url: str, title: str) -> str:
    """``<PLATFORM>_<first 12 hex of sha256(url|title)>``; stable across runs."""
    digest = hashlib.sha256(f"{url}|{title}".encode("utf-8")).hexdigest()
    return f"{platform.value.upper()}_{digest[:12]}"


def completeness_score(raw: RawExtraction) -> float:
    """Weighted fraction of populated fields, rounded to two decimals."""
    present = {
        "title": bool(raw.title),
        "price": raw.price is not None and raw.price > 0,
        "currency": bool(raw.currency),
        "category": bool(raw.category),
        "image_url": bool(raw.image_url),
        "rating": raw.rating is not None,
        "rating_count": raw.rating_count > 0,
    }
    total = sum(COMPLETENESS_WEIGHTS.values())
    earned = sum(weight for name, weight in COMPLETENESS_WEIGHTS.items() if present[name])
    return round(earned / total, 2) if total else 0.0


class ProductMapper:
    """Maps RawExtraction to NormalizedProduct.

    map() is pure apart from the ``scraped_at`` timestamp: the same raw
    input, platform and URL always yield the same id and fields.
    """

    def __init__(self):
        self.classifiers = {
            platform: CategoryClassifier(taxonomy)
            for platform, taxonomy in PLATFORM_CATEGORIES.items()
        }
        self.logger = logger.bind(service="product_mapper")

    def map(self, raw: RawExtraction, platform: Platform, url: str) -> NormalizedProduct:
        """Build the canonical record for one scraped product.

        Args:
            raw: Extracted fields
            platform: Source platform
            url: Product page URL

        Returns:
            NormalizedProduct

        Raises:
            MappingError: If the title or price is unusable
        """
        try:
            title = self.map_title(raw.title)
            price = self.map_price(raw.price, platform, self.resolve_currency(raw.currency, platform))
            product = NormalizedProduct(
                id=generate_product_id(platform, url, raw.title),
                title=title,
                price=price.amount,
                currency=price.currency,
                category=self.map_category(raw.category, raw.title, platform),
                platform=platform,
                product_url=url,
                platform_id=raw.platform_id,
                image_url=raw.image_url,
                rating=raw.rating,
                rating_count=raw.rating_count,
                platform_category=raw.category,
                completeness_score=completeness_score(raw),
                scraped_at=datetime.now(timezone.utc),
            )
        except MappingError as e:
            self.logger.warning("mapping_failed", url=url, field=e.field, error=e.message)
            raise
        except (TypeError, ValueError, ArithmeticError) as e:
            self.logger.error("mapping_failed", url=url, error=str(e), exc_info=True)
            raise MappingError.failed(str(e)) from e

        self.logger.debug("product_mapped", id=product.id, url=url, category=product.category)
        return product

    def map_title(self, title: Optional[str]) -> str:
        """Strip control characters, collapse whitespace and cap the length."""
        text = "".join(ch for ch in (title or "") if not unicodedata.category(ch).startswith("C") or ch.isspace())
        text = clean_text(text)
        if not text:
            raise MappingError.empty_field("title")
        if len(text) < MIN_TITLE_LENGTH:
            raise MappingError.invalid_field("title", text, f"shorter than {MIN_TITLE_LENGTH} characters")
        if len(text) > MAX_TITLE_LENGTH:
            text = text[: MAX_TITLE_LENGTH - 3] + "..."
        return text

    def map_price(self, price: Optional[Decimal], platform: Platform, currency: str) -> Price:
        """Round to a Price and check it against the platform's bounds."""
        if price is None:
            raise MappingError.empty_field("price")
        try:
            value = Price(price, currency)
        except ValueError as e:
            raise MappingError.invalid_field("price", price, str(e)) from e
        if value.amount <= 0:
            raise MappingError.invalid_field("price", price, "must be positive")
        low, high = platform.price_bounds
        if not low <= value.amount <= high:
            raise MappingError.invalid_field("price", price, f"outside {platform.value} range {low}-{high}")
        return value

    def resolve_currency(self, currency: Optional[str], platform: Optional[Platform]) -> str:
        """Symbol table first, then the platform default, then USD."""
        text = (currency or "").strip()
        if text:
            if text.upper() in KNOWN_CURRENCIES:
                return text.upper()
            detected = detect_currency(text)
            if detected:
                return detected
        if platform is not None:
            return platform.default_currency
        return DEFAULT_CURRENCY

    def map_category(self, category: Optional[str], title: Optional[str], platform: Platform) -> str:
        """Best taxonomy bucket for category + title, else the raw category, else General."""
        classifier = self.classifiers.get(platform)
        bucket = classifier.classify(category, title) if classifier else None
        if bucket:
            return bucket.capitalize()
        raw = clean_text(category)
        return raw or DEFAULT_CATEGORY

    def validate(self, raw: RawExtraction) -> ValidationResult:
        """Check required fields and score completeness without mapping."""
        errors = []
        if not clean_text(raw.title):
            errors.append("Title is required")
        if raw.price is None or raw.price <= 0:
            errors.append("Valid price is required")
        if not raw.currency:
            errors.append("Currency is required")
        return ValidationResult(
            valid=not errors,
            errors=errors,
            completeness_score=completeness_score(raw),
        )

    def get_statistics(self) -> dict:
        return {
            "supported_platforms": [p.value for p in PLATFORM_CATEGORIES],
            "supported_currencies": sorted(KNOWN_CURRENCIES),
            "currency_symbols": len(CURRENCY_SYMBOLS),
            "category_mappings": {
                platform.value: list(taxonomy) for platform, taxonomy in PLATFORM_CATEGORIES.items()
            },
        }
