"""Command line entry point for manual scrapes and rescrape scheduling.

Usage:
    pricewatch scrape https://www.amazon.com/dp/B08N5WRWNW
    pricewatch scrape URL [URL ...] --json
    pricewatch schedule --catalog catalog.json --batch-size 100 --max-age-hours 24 --sync
    pricewatch run --catalog catalog.json --interval-minutes 60
    pricewatch status
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from pricewatch.config import settings
from pricewatch.jobs import ScheduleRescrapeJob
from pricewatch.logging_config import configure_logging
from pricewatch.repositories.memory import InMemoryCatalogRepository
from pricewatch.scrapers.orchestrator import BatchResult, ScrapeOrchestrator
from pricewatch.scrapers.scheduler import PriorityScheduler, RescrapeScheduler
from pricewatch.scrapers.worker import ScrapeWorkerPool


def _banner(title: str) -> None:
    print(f"\n{'=' * 70}")
    print(f"  {title}")
    print(f"{'=' * 70}\n")


def _print_batch(batch: BatchResult) -> None:
    for i, result in enumerate(batch.results, 1):
        if result.ok:
            product = result.product
            print(f"[{i}] ✅ {product.title[:70]}")
            print(f"    💰 Price: {product.price} {product.currency}")
            print(f"    📁 Category: {product.category}")
            print(f"    🆔 {product.id} (platform id: {product.platform_id or '-'})")
            print(f"    📊 Completeness: {product.completeness_score:.0%}")
        else:
            print(f"[{i}] ❌ {result.url[:80]}")
            print(f"    {result.error_type} at {result.diagnostics.get('stage')}: {result.error}")
        print()

    _banner("Summary")
    print(f"  Total: {batch.total}")
    print(f"  Success: {batch.succeeded}")
    print(f"  Failed: {batch.failed}")
    print(f"  Success rate: {batch.success_rate}%\n")


async def scrape_urls(urls: List[str], as_json: bool = False) -> int:
    orchestrator = ScrapeOrchestrator()
    batch = await orchestrator.scrape_many(urls)
    if as_json:
        print(json.dumps(batch.to_dict(), indent=2, ensure_ascii=False, default=str))
    else:
        _banner(f"Scraped {batch.total} URL(s)")
        _print_batch(batch)
    return 0 if batch.failed == 0 else 1


def _build_job(catalog: str, batch_size: int, max_age_hours: int):
    repository = InMemoryCatalogRepository.from_json_file(catalog)
    pool = ScrapeWorkerPool(ScrapeOrchestrator(), repository)
    job = ScheduleRescrapeJob(
        PriorityScheduler(repository),
        pool,
        batch_size=batch_size,
        max_age_hours=max_age_hours,
    )
    return repository, job


async def schedule_batch(catalog: str, batch_size: int, max_age_hours: int, sync: bool) -> int:
    repository, job = _build_job(catalog, batch_size, max_age_hours)
    report = await job.handle(sync=sync)
    if not sync:
        # The process is about to exit; let dispatched tasks finish
        report.outcomes = await job.drain()

    repository.dump_json_file(catalog)
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if report.failed == 0 else 1


async def run_forever(catalog: str, batch_size: int, max_age_hours: int, interval_minutes: int) -> int:
    repository, job = _build_job(catalog, batch_size, max_age_hours)
    scheduler = RescrapeScheduler(job, interval_minutes=interval_minutes)
    scheduler.start()
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await scheduler.stop()
        repository.dump_json_file(catalog)
    return 0


async def show_status() -> int:
    orchestrator = ScrapeOrchestrator()
    status = await orchestrator.get_health_status()
    print(json.dumps(status, indent=2, default=str))
    return 0 if status["status"] == "healthy" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricewatch",
        description="Scrape Amazon and Jumia product pages and schedule rescrapes",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    scrape = sub.add_parser("scrape", help="Scrape one or more product URLs")
    scrape.add_argument("urls", nargs="+", help="Product page URLs")
    scrape.add_argument("--json", action="store_true", help="Print results as JSON")

    for name, help_text in (
        ("schedule", "Select and scrape one rescrape batch"),
        ("run", "Run the periodic rescrape scheduler"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--catalog", required=True, help="Catalog JSON file")
        cmd.add_argument("--batch-size", type=int, default=settings.RESCRAPE_BATCH_SIZE)
        cmd.add_argument("--max-age-hours", type=int, default=settings.RESCRAPE_MAX_AGE_HOURS)
        if name == "schedule":
            cmd.add_argument("--sync", action="store_true", help="Run the batch inline (debug mode)")
        else:
            cmd.add_argument("--interval-minutes", type=int, default=settings.RESCRAPE_INTERVAL_MINUTES)

    sub.add_parser("status", help="Show proxy pool and engine health")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "scrape":
        coro = scrape_urls(args.urls, as_json=args.json)
    elif args.command == "schedule":
        coro = schedule_batch(args.catalog, args.batch_size, args.max_age_hours, args.sync)
    elif args.command == "run":
        coro = run_forever(args.catalog, args.batch_size, args.max_age_hours, args.interval_minutes)
    else:
        coro = show_status()

    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
