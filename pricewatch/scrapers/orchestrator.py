"""Scrape orchestration service.

Runs the per-URL pipeline detect -> fetch -> extract -> validate -> map and
turns every outcome into a ScrapeResult. No stage error escapes
scrape_one(); batch runs return one result per input URL in input order.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import structlog

from pricewatch.config import settings
from pricewatch.core.exceptions import PriceWatchException
from pricewatch.scrapers.base import NormalizedProduct, RawExtraction
from pricewatch.scrapers.factory import ExtractorRegistry, get_extractor_registry
from pricewatch.scrapers.fetcher import Fetcher
from pricewatch.scrapers.mapper import ProductMapper, ValidationResult
from pricewatch.scrapers.platforms import Platform, detect
from pricewatch.scrapers.urls import ProductURL

logger = structlog.get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


@dataclass
class ScrapeResult:
    """Outcome of scraping one URL."""

    url: str
    status: str
    raw: Optional[RawExtraction] = None
    product: Optional[NormalizedProduct] = None
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: bool = False
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": self.url,
            "status": self.status,
            "diagnostics": self.diagnostics,
        }
        if self.ok:
            data["raw_data"] = self.raw.to_dict() if self.raw else None
            data["mapped_data"] = self.product.to_dict() if self.product else None
            data["validation"] = self.validation.to_dict() if self.validation else None
        else:
            data["error"] = self.error
            data["error_type"] = self.error_type
            data["retryable"] = self.retryable
        return data


@dataclass
class BatchResult:
    """Index-aligned results of a batch scrape."""

    results: List[ScrapeResult]
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def success_rate(self) -> float:
        """Percentage of successful URLs, rounded to two decimals."""
        return round(self.succeeded / self.total * 100, 2) if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total": self.total,
                "success": self.succeeded,
                "failed": self.failed,
                "success_rate": self.success_rate,
            },
            "results": [r.to_dict() for r in self.results],
            "processed_at": self.processed_at.isoformat(),
        }


class ScrapeOrchestrator:
    """Drives fetch, extraction and mapping for product URLs."""

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        mapper: Optional[ProductMapper] = None,
        registry: Optional[ExtractorRegistry] = None,
        max_attempts: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        """Initialize orchestrator.

        Args:
            fetcher: Page fetcher (built from settings if omitted)
            mapper: Product mapper
            registry: Platform -> extractor table
            max_attempts: Fetch attempts per URL
            concurrency: Parallel URLs in scrape_many()
        """
        self.fetcher = fetcher or Fetcher()
        self.mapper = mapper or ProductMapper()
        self.registry = registry or get_extractor_registry()
        self.max_attempts = max_attempts or settings.fetch_attempt_budget()
        self.concurrency = max(1, concurrency or settings.RESCRAPE_CONCURRENCY)
        self.logger = logger.bind(service="scrape_orchestrator")

    async def scrape_one(self, url: str, platform: Optional[Platform] = None) -> ScrapeResult:
        """Run the full pipeline for one URL.

        Args:
            url: Product page URL
            platform: Expected platform; detected from the URL if omitted

        Returns:
            ScrapeResult with either the mapped product or the failing stage and error
        """
        started = time.monotonic()
        diagnostics: Dict[str, Any] = {"stage": "validate_url"}

        try:
            product_url = ProductURL.parse(url, platform)

            canonical_url = product_url.normalized()
            diagnostics["domain"] = product_url.domain

            diagnostics["stage"] = "detect"
            detected = detect(product_url.value)
            diagnostics["platform"] = detected.value
            extractor = self.registry.get(detected)
            diagnostics["extractor"] = type(extractor).__name__

            diagnostics["stage"] = "fetch"
            html = await self.fetcher.fetch_with_retry(product_url.value, detected, self.max_attempts)

            diagnostics["stage"] = "extract"
            raw = extractor.extract(html, product_url.value)
            diagnostics["field_sources"] = dict(raw.sources)

            diagnostics["stage"] = "validate"
            validation = self.mapper.validate(raw)
            if not validation.valid:
                self.logger.warning("validation_issues", url=url, errors=validation.errors)

            diagnostics["stage"] = "map"
            product = self.mapper.map(raw, detected, canonical_url)

        except PriceWatchException as e:
            return self._failure(url, e, diagnostics, started)
        except Exception as e:
            self.logger.error(
                "scrape_unexpected_error",
                url=url,
                stage=diagnostics["stage"],
                error=str(e),
                exc_info=True,
            )
            return self._failure(url, e, diagnostics, started)

        diagnostics["stage"] = "done"
        diagnostics["duration_ms"] = int((time.monotonic() - started) * 1000)
        diagnostics["processed_at"] = datetime.now(timezone.utc).isoformat()
        self.logger.info(
            "scrape_succeeded",
            url=url,
            platform=detected.value,
            product_id=product.id,
            completeness=product.completeness_score,
        )
        return ScrapeResult(
            url=url,
            status=STATUS_SUCCESS,
            raw=raw,
            product=product,
            validation=validation,
            diagnostics=diagnostics,
        )

    def _failure(
        self,
        url: str,
        error: Exception,
        diagnostics: Dict[str, Any],
        started: float,
    ) -> ScrapeResult:
        diagnostics["duration_ms"] = int((time.monotonic() - started) * 1000)
        diagnostics["processed_at"] = datetime.now(timezone.utc).isoformat()
        attempts = getattr(error, "attempts", None)
        if attempts is not None:
            diagnostics["attempts"] = attempts

        self.logger.warning(
            "scrape_failed",
            url=url,
            stage=diagnostics.get("stage"),
            error_type=type(error).__name__,
            error=str(error),
        )
        return ScrapeResult(
            url=url,
            status=STATUS_FAILED,
            error=str(error),
            error_type=type(error).__name__,
            retryable=bool(getattr(error, "retryable", False)),
            diagnostics=diagnostics,
        )

    async def scrape_many(self, urls: Sequence[str]) -> BatchResult:
        """Scrape URLs concurrently; result ``i`` belongs to ``urls[i]``."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(url: str) -> ScrapeResult:
            async with semaphore:
                return await self.scrape_one(url)

        results = await asyncio.gather(*(run(url) for url in urls))
        batch = BatchResult(results=list(results))

        self.logger.info(
            "batch_scrape_complete",
            total=batch.total,
            success=batch.succeeded,
            failed=batch.failed,
            success_rate=batch.success_rate,
        )
        return batch

    async def check_platform(self, platform: Platform, test_url: str) -> Dict[str, Any]:
        """Scrape a known-good URL to check a platform end to end."""
        result = await self.scrape_one(test_url, platform)
        return {
            "platform": platform.value,
            "test_url": test_url,
            "success": result.ok,
            "error": result.error,
            "completeness_score": result.product.completeness_score if result.product else None,
        }

    async def get_health_status(self) -> Dict[str, Any]:
        """Registry, proxy pool and mapper status in one report."""
        proxy_client = self.fetcher.proxy_client
        if proxy_client is not None:
            proxy_status = (await proxy_client.status()).to_dict()
        else:
            proxy_status = {"is_healthy": None, "message": "proxy routing disabled"}

        return {
            "status": "healthy" if proxy_status.get("is_healthy") is not False else "degraded",
            "platforms": [p.value for p in self.registry.supported_platforms()],
            "proxy_service": proxy_status,
            "mapper": self.mapper.get_statistics(),
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
