"""Tests for the worker pool, the rescrape job and the in-memory catalog."""

import asyncio
import json
from datetime import timedelta

from conftest import StubFetcher, amazon_page, jumia_page
from pricewatch.core.exceptions import AllAttemptsFailedError, HTTPError
from pricewatch.jobs import ScheduleRescrapeJob
from pricewatch.repositories.memory import InMemoryCatalogRepository
from pricewatch.scrapers.base import CatalogEntry, ScrapeTask
from pricewatch.scrapers.orchestrator import ScrapeOrchestrator
from pricewatch.scrapers.platforms import Platform
from pricewatch.scrapers.scheduler import PriorityScheduler
from pricewatch.scrapers.worker import OUTCOME_FAILED, OUTCOME_SUCCESS, OUTCOME_TIMEOUT, ScrapeWorkerPool


AMAZON_URL = "https://www.amazon.com/dp/B08N5WRWNW"
JUMIA_URL = "https://www.jumia.com.eg/samsung-galaxy-a15-ABC123XYZ.html"


class FlakyFetcher(StubFetcher):
    """Fails with a retryable error a fixed number of times, then serves the page."""

    def __init__(self, page, failures):
        super().__init__()
        self.page = page
        self.failures = failures

    async def fetch_with_retry(self, url, platform, max_attempts=None):
        self.calls.append(url)
        if len(self.calls) <= self.failures:
            raise AllAttemptsFailedError(url, 3, HTTPError(url, 503))
        return self.page


class HangingFetcher(StubFetcher):
    async def fetch_with_retry(self, url, platform, max_attempts=None):
        self.calls.append(url)
        await asyncio.sleep(10)
        return amazon_page()


def make_pool(fetcher, registry, repository=None, **kwargs):
    repository = repository or InMemoryCatalogRepository()
    orchestrator = ScrapeOrchestrator(fetcher=fetcher, registry=registry, max_attempts=3)
    options = dict(concurrency=2, task_timeout=5, max_attempts=3, backoff=0)
    options.update(kwargs)
    return ScrapeWorkerPool(orchestrator, repository, **options), repository


def task(entry_id="p1", url=AMAZON_URL, platform=Platform.AMAZON):
    return ScrapeTask(catalog_entry_id=entry_id, url=url, platform=platform)


# ============================================================================
# TESTS: WORKER POOL
# ============================================================================

class TestScrapeWorkerPool:
    """Tests for ScrapeWorkerPool."""

    async def test_success_saves_product(self, registry, now):
        repository = InMemoryCatalogRepository(
            [CatalogEntry(id="p1", url=AMAZON_URL, platform="amazon", scrape_count=2, last_scraped_at=now - timedelta(days=3))]
        )
        pool, _ = make_pool(StubFetcher({AMAZON_URL: amazon_page()}), registry, repository)

        outcome = await pool.run_task(task())

        assert outcome.status == OUTCOME_SUCCESS
        assert outcome.attempts == 1
        assert outcome.result.product.id in repository.products
        updated = repository.get("p1")
        assert updated.scrape_count == 3
        assert updated.last_scraped_at > now

    async def test_retryable_failure_retried(self, registry):
        fetcher = FlakyFetcher(amazon_page(), failures=2)
        pool, _ = make_pool(fetcher, registry)

        outcome = await pool.run_task(task())

        assert outcome.ok
        assert outcome.attempts == 3
        assert outcome.task.attempt_count == 3
        assert len(fetcher.calls) == 3

    async def test_retries_exhausted(self, registry):
        fetcher = FlakyFetcher(amazon_page(), failures=10)
        pool, _ = make_pool(fetcher, registry)

        outcome = await pool.run_task(task())

        assert outcome.status == OUTCOME_FAILED
        assert outcome.attempts == 3
        assert outcome.error_type == "AllAttemptsFailedError"

    async def test_permanent_failure_not_retried(self, registry):
        fetcher = StubFetcher({AMAZON_URL: amazon_page(title=None)})
        pool, _ = make_pool(fetcher, registry)

        outcome = await pool.run_task(task())

        assert outcome.status == OUTCOME_FAILED
        assert outcome.attempts == 1
        assert outcome.error_type == "ExtractionFailedError"

    async def test_timeout(self, registry):
        pool, _ = make_pool(HangingFetcher(), registry, task_timeout=0.05, max_attempts=2)

        outcome = await pool.run_task(task())

        assert outcome.status == OUTCOME_TIMEOUT
        assert outcome.attempts == 2
        assert outcome.error_type == "TaskTimeoutError"

    async def test_save_failure_reported(self, registry):
        class BrokenRepository(InMemoryCatalogRepository):
            async def save(self, product, entry_id=None):
                raise RuntimeError("disk full")

        pool, _ = make_pool(StubFetcher({AMAZON_URL: amazon_page()}), registry, BrokenRepository())

        outcome = await pool.run_task(task())

        assert outcome.status == OUTCOME_FAILED
        assert "disk full" in outcome.error

    async def test_run_all_keeps_order(self, registry):
        pages = {AMAZON_URL: amazon_page(), JUMIA_URL: jumia_page()}
        pool, _ = make_pool(StubFetcher(pages), registry)
        tasks = [task("a", AMAZON_URL), task("j", JUMIA_URL, Platform.JUMIA), task("x", "https://www.amazon.com/dp/B000000000")]

        outcomes = await pool.run_all(tasks)

        assert [o.task.catalog_entry_id for o in outcomes] == ["a", "j", "x"]
        assert [o.ok for o in outcomes] == [True, True, False]
        assert outcomes[1].to_dict()["platform"] == "jumia"


# ============================================================================
# TESTS: RESCRAPE JOB
# ============================================================================

class TestScheduleRescrapeJob:
    """Tests for ScheduleRescrapeJob."""

    def build(self, registry, now, entries, pages):
        repository = InMemoryCatalogRepository(entries)
        pool, _ = make_pool(StubFetcher(pages), registry, repository)
        job = ScheduleRescrapeJob(PriorityScheduler(repository), pool, batch_size=10, max_age_hours=24)
        return job, repository

    async def test_sync_batch(self, registry, now):
        entries = [
            CatalogEntry(id="a", url=AMAZON_URL, platform="amazon"),
            CatalogEntry(id="j", url=JUMIA_URL, platform="jumia"),
        ]
        job, repository = self.build(registry, now, entries, {AMAZON_URL: amazon_page(), JUMIA_URL: jumia_page()})

        report = await job.handle(sync=True)

        assert report.dispatched == 2
        assert report.succeeded == 2
        assert report.finished_at is not None
        assert all(e.scrape_count == 1 for e in repository.entries)

    async def test_async_dispatch_and_drain(self, registry, now):
        entries = [CatalogEntry(id="a", url=AMAZON_URL, platform="amazon")]
        job, repository = self.build(registry, now, entries, {AMAZON_URL: amazon_page()})

        report = await job.handle()
        assert report.dispatched == 1
        assert report.outcomes == []

        outcomes = await job.drain()
        assert [o.ok for o in outcomes] == [True]
        assert repository.get("a").scrape_count == 1

    async def test_drain_keeps_tasks_finished_earlier(self, registry, now):
        entries = [
            CatalogEntry(id="a", url=AMAZON_URL, platform="amazon"),
            CatalogEntry(id="j", url=JUMIA_URL, platform="jumia"),
        ]
        job, _ = self.build(registry, now, entries, {AMAZON_URL: amazon_page(), JUMIA_URL: jumia_page()})

        await job.handle()
        while job.pending:
            await asyncio.sleep(0)

        outcomes = await job.drain()
        assert sorted(o.task.catalog_entry_id for o in outcomes) == ["a", "j"]
        assert all(o.ok for o in outcomes)
        assert await job.drain() == []

    async def test_nothing_to_do(self, registry, now):
        entries = [CatalogEntry(id="a", url=AMAZON_URL, platform="amazon", scrape_count=1, last_scraped_at=now)]
        job, _ = self.build(registry, now, entries, {})
        # Window wide enough to cover the fixed timestamp
        job.max_age_hours = 24 * 365 * 100

        report = await job.handle(sync=True)

        assert report.dispatched == 0
        assert report.to_dict()["outcomes"] == []


# ============================================================================
# TESTS: IN-MEMORY CATALOG
# ============================================================================

class TestInMemoryCatalogRepository:
    """Tests for the JSON-backed catalog."""

    async def test_json_round_trip(self, tmp_path, now):
        path = tmp_path / "catalog.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "a", "url": AMAZON_URL, "platform": "amazon"},
                    {"id": "j", "url": JUMIA_URL, "platform": "jumia", "scrape_count": 4, "last_scraped_at": "2024-05-01T00:00:00Z"},
                    {"id": "off", "url": AMAZON_URL, "platform": "amazon", "is_active": False},
                ]
            )
        )

        repository = InMemoryCatalogRepository.from_json_file(path)
        candidates = await repository.find_products_for_scraping(limit=10, max_age_hours=24)

        assert [e.id for e in candidates] == ["a", "j"]
        assert repository.get("j").last_scraped_at.tzinfo is not None

        repository.dump_json_file(path)
        reloaded = json.loads(path.read_text())
        assert reloaded[1]["scrape_count"] == 4
        assert reloaded[1]["last_scraped_at"].startswith("2024-05-01T00:00:00")
