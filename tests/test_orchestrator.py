"""Tests for the scrape orchestration service."""

import asyncio

from conftest import StubFetcher, amazon_page, jumia_page
from pricewatch.core.exceptions import AllAttemptsFailedError, BlockedError, HTTPError
from pricewatch.scrapers.factory import ExtractorRegistry
from pricewatch.scrapers.orchestrator import ScrapeOrchestrator
from pricewatch.scrapers.platforms import Platform


AMAZON_URL = "https://www.amazon.com/dp/B08N5WRWNW"
JUMIA_URL = "https://www.jumia.com.eg/samsung-galaxy-a15-ABC123XYZ.html"


def make_orchestrator(fetcher, registry, **kwargs) -> ScrapeOrchestrator:
    return ScrapeOrchestrator(fetcher=fetcher, registry=registry, max_attempts=3, concurrency=4, **kwargs)


class TestScrapeOne:
    """Tests for ScrapeOrchestrator.scrape_one."""

    async def test_amazon_success(self, registry):
        fetcher = StubFetcher({AMAZON_URL: amazon_page()})
        result = await make_orchestrator(fetcher, registry).scrape_one(AMAZON_URL)

        assert result.ok
        assert result.product.platform is Platform.AMAZON
        assert result.product.platform_id == "B08N5WRWNW"
        assert result.product.category == "Electronics"
        assert result.validation.valid
        assert result.diagnostics["stage"] == "done"
        assert result.diagnostics["extractor"] == "AmazonExtractor"
        assert result.diagnostics["field_sources"]["title"] == "selector"

    async def test_jumia_success(self, registry):
        fetcher = StubFetcher({JUMIA_URL: jumia_page()})
        result = await make_orchestrator(fetcher, registry).scrape_one(JUMIA_URL)

        assert result.ok
        assert result.product.currency == "EGP"
        assert result.product.id.startswith("JUMIA_")

    async def test_tracking_params_do_not_change_identity(self, registry):
        tracked = AMAZON_URL + "?utm_source=newsletter&ref=sr_1_1"
        fetcher = StubFetcher({AMAZON_URL: amazon_page(), tracked: amazon_page()})
        orchestrator = make_orchestrator(fetcher, registry)

        clean = await orchestrator.scrape_one(AMAZON_URL)
        dirty = await orchestrator.scrape_one(tracked)

        assert dirty.product.product_url == AMAZON_URL
        assert dirty.product.id == clean.product.id
        assert dirty.diagnostics["domain"] == "amazon.com"

    async def test_invalid_url(self, registry):
        fetcher = StubFetcher()
        result = await make_orchestrator(fetcher, registry).scrape_one("ftp://www.amazon.com/x")

        assert not result.ok
        assert result.error_type == "InvalidURLError"
        assert result.diagnostics["stage"] == "validate_url"
        assert fetcher.calls == []

    async def test_unsupported_platform(self, registry):
        fetcher = StubFetcher()
        result = await make_orchestrator(fetcher, registry).scrape_one("https://www.ebay.com/itm/123")

        assert result.error_type == "UnsupportedPlatformError"
        assert result.diagnostics["stage"] == "detect"

    async def test_platform_mismatch(self, registry):
        result = await make_orchestrator(StubFetcher(), registry).scrape_one(AMAZON_URL, Platform.JUMIA)
        assert result.error_type == "InvalidURLError"

    async def test_disabled_platform(self):
        registry = ExtractorRegistry(enabled=[Platform.AMAZON])
        result = await make_orchestrator(StubFetcher(), registry).scrape_one(JUMIA_URL)

        assert result.error_type == "UnsupportedPlatformError"

    async def test_fetch_failure_is_reported(self, registry):
        error = AllAttemptsFailedError(AMAZON_URL, 3, BlockedError(AMAZON_URL, "robot check"))
        result = await make_orchestrator(StubFetcher({AMAZON_URL: error}), registry).scrape_one(AMAZON_URL)

        assert not result.ok
        assert result.error_type == "AllAttemptsFailedError"
        assert result.retryable
        assert result.diagnostics["stage"] == "fetch"
        assert result.diagnostics["attempts"] == 3

    async def test_client_error_not_retryable(self, registry):
        result = await make_orchestrator(
            StubFetcher({AMAZON_URL: HTTPError(AMAZON_URL, 404)}), registry
        ).scrape_one(AMAZON_URL)

        assert result.error_type == "HTTPError"
        assert not result.retryable

    async def test_extraction_failure(self, registry):
        fetcher = StubFetcher({AMAZON_URL: amazon_page(price=None)})
        result = await make_orchestrator(fetcher, registry).scrape_one(AMAZON_URL)

        assert result.error_type == "ExtractionFailedError"
        assert result.diagnostics["stage"] == "extract"

    async def test_mapping_failure(self, registry):
        fetcher = StubFetcher({AMAZON_URL: amazon_page(price="$2,000,000.00")})
        result = await make_orchestrator(fetcher, registry).scrape_one(AMAZON_URL)

        assert result.error_type == "MappingError"
        assert result.diagnostics["stage"] == "map"

    async def test_unexpected_error_is_captured(self, registry):
        fetcher = StubFetcher({AMAZON_URL: RuntimeError("boom")})
        result = await make_orchestrator(fetcher, registry).scrape_one(AMAZON_URL)

        assert not result.ok
        assert result.error_type == "RuntimeError"
        assert result.error == "boom"

    async def test_to_dict(self, registry):
        result = await make_orchestrator(StubFetcher({AMAZON_URL: amazon_page()}), registry).scrape_one(AMAZON_URL)
        data = result.to_dict()

        assert data["status"] == "success"
        assert data["mapped_data"]["platform"] == "amazon"
        assert data["raw_data"]["price"] == "249.00"


class TestScrapeMany:
    """Tests for ScrapeOrchestrator.scrape_many."""

    async def test_partial_batch_keeps_order(self, registry):
        urls = []
        pages = {}
        for i in range(10):
            url = f"https://www.amazon.com/dp/B00000000{i}"
            urls.append(url)
            if i in (2, 5, 8):
                pages[url] = AllAttemptsFailedError(url, 3)
            else:
                pages[url] = amazon_page(title=f"Product number {i}")

        batch = await make_orchestrator(StubFetcher(pages), registry).scrape_many(urls)

        assert batch.total == 10
        assert batch.succeeded == 7
        assert batch.failed == 3
        assert batch.success_rate == 70.0
        assert [r.url for r in batch.results] == urls
        for i, result in enumerate(batch.results):
            assert result.ok == (i not in (2, 5, 8))
            if result.ok:
                assert result.product.title == f"Product number {i}"

    async def test_concurrency_is_bounded(self, registry):
        active = 0
        peak = 0

        class SlowFetcher(StubFetcher):
            async def fetch_with_retry(self, url, platform, max_attempts=None):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return amazon_page()

        urls = [f"https://www.amazon.com/dp/B00000001{i}" for i in range(9)]
        orchestrator = ScrapeOrchestrator(fetcher=SlowFetcher(), registry=registry, concurrency=2)
        batch = await orchestrator.scrape_many(urls)

        assert batch.succeeded == 9
        assert peak <= 2

    async def test_empty_batch(self, registry):
        batch = await make_orchestrator(StubFetcher(), registry).scrape_many([])

        assert batch.total == 0
        assert batch.success_rate == 0.0
        assert batch.to_dict()["summary"]["total"] == 0


class TestHealth:
    """Tests for health reporting."""

    async def test_health_without_proxy(self, registry):
        status = await make_orchestrator(StubFetcher(), registry).get_health_status()

        assert status["status"] == "healthy"
        assert status["platforms"] == ["amazon", "jumia"]

    async def test_check_platform(self, registry):
        fetcher = StubFetcher({AMAZON_URL: amazon_page()})
        report = await make_orchestrator(fetcher, registry).check_platform(Platform.AMAZON, AMAZON_URL)

        assert report["success"]
        assert report["completeness_score"] == 1.0
