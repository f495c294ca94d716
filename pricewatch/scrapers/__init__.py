"""Scraping engine for Amazon and Jumia product pages.

This package provides:
- Platform detection and product URL validation
- Base extractor class plus the per-platform extractors
- Registry for looking up the extractor of a platform
"""

from .base import (
    BaseExtractor,
    CatalogEntry,
    NormalizedProduct,
    Price,
    RawExtraction,
    ScrapeTask,
)
from .factory import ExtractorRegistry, get_extractor_registry
from .platforms import Platform, can_detect, detect
from .urls import ProductURL

__all__ = [
    # Base classes
    "BaseExtractor",
    # Data structures
    "CatalogEntry",
    "NormalizedProduct",
    "Price",
    "RawExtraction",
    "ScrapeTask",
    # Platforms
    "Platform",
    "ProductURL",
    "can_detect",
    "detect",
    # Registry
    "ExtractorRegistry",
    "get_extractor_registry",
]
