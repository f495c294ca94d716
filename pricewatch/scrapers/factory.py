"""Platform -> extractor dispatch table."""

from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from pricewatch.config import settings
from pricewatch.core.exceptions import UnsupportedPlatformError
from pricewatch.scrapers.adapters.amazon import AmazonExtractor
from pricewatch.scrapers.adapters.jumia import JumiaExtractor
from pricewatch.scrapers.base import BaseExtractor
from pricewatch.scrapers.platforms import Platform

logger = structlog.get_logger(__name__)


def default_extractors() -> Dict[Platform, BaseExtractor]:
    return {
        Platform.AMAZON: AmazonExtractor(),
        Platform.JUMIA: JumiaExtractor(),
    }


def enabled_platforms_from_settings() -> List[Platform]:
    flags = {
        Platform.AMAZON: settings.SCRAPING_AMAZON_ENABLED,
        Platform.JUMIA: settings.SCRAPING_JUMIA_ENABLED,
    }
    return [platform for platform in Platform if flags.get(platform, True)]


class ExtractorRegistry:
    """Immutable mapping from every Platform to its extractor.

    The table is built once and must cover every Platform member; a
    missing entry fails at construction rather than at dispatch time.
    Platforms can still be switched off through ``enabled``.
    """

    def __init__(
        self,
        extractors: Optional[Mapping[Platform, BaseExtractor]] = None,
        enabled: Optional[Iterable[Platform]] = None,
    ):
        table = dict(extractors) if extractors is not None else default_extractors()

        missing = [p.value for p in Platform if p not in table]
        if missing:
            raise RuntimeError(f"No extractor registered for platform(s): {', '.join(missing)}")
        for platform, extractor in table.items():
            if extractor.platform is not platform:
                raise RuntimeError(
                    f"Extractor {type(extractor).__name__} registered for {platform.value} "
                    f"handles {extractor.platform.value}"
                )

        self._extractors = table
        self._enabled = frozenset(enabled if enabled is not None else enabled_platforms_from_settings())
        logger.info(
            "extractor_registry_built",
            platforms=[p.value for p in Platform],
            enabled=sorted(p.value for p in self._enabled),
        )

    def supports(self, platform: Platform) -> bool:
        return platform in self._enabled

    def get(self, platform: Platform) -> BaseExtractor:
        """Extractor for ``platform``.

        Raises:
            UnsupportedPlatformError: If the platform is disabled
        """
        if not self.supports(platform):
            raise UnsupportedPlatformError(platform.value, "platform is disabled")
        return self._extractors[platform]

    def supported_platforms(self) -> List[Platform]:
        return [p for p in Platform if self.supports(p)]


_registry: Optional[ExtractorRegistry] = None


def get_extractor_registry() -> ExtractorRegistry:
    """Get the process-wide registry, building it on first use."""
    global _registry
    if _registry is None:
        _registry = ExtractorRegistry()
    return _registry
