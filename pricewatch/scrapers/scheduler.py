"""Rescrape prioritization and the periodic APScheduler job.

PriorityScheduler decides which catalog entries to refresh next:
never-scraped entries first, then entries older than the freshness
window; within a tier, the least-scraped and then the oldest go first.
RescrapeScheduler fires a ScheduleRescrapeJob on a fixed interval.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import settings
from pricewatch.core.exceptions import UnsupportedPlatformError
from pricewatch.repositories.base import CatalogRepository
from pricewatch.scrapers.base import CatalogEntry, ScrapeTask
from pricewatch.scrapers.platforms import Platform

if TYPE_CHECKING:
    from pricewatch.jobs import ScheduleRescrapeJob

logger = structlog.get_logger(__name__)

TIER_NEVER_SCRAPED = 0
TIER_STALE = 1

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def priority_tier(entry: CatalogEntry, cutoff: datetime) -> Optional[int]:
    """Tier for ``entry``, or None if it is fresh (or inactive)."""
    if not entry.is_active:
        return None
    last = _as_utc(entry.last_scraped_at)
    if last is None or entry.scrape_count == 0:
        return TIER_NEVER_SCRAPED
    if last < cutoff:
        return TIER_STALE
    return None


def rank_entries(
    entries: Sequence[CatalogEntry],
    max_age_hours: int,
    now: Optional[datetime] = None,
) -> List[Tuple[int, CatalogEntry]]:
    """Order rescrape candidates.

    Sort key: (tier, scrape_count, last_scraped_at). Fresh entries are
    dropped. The sort is stable, so equal keys keep repository order.

    Returns:
        List of (tier, entry) pairs, highest priority first
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=max_age_hours)

    ranked = []
    for entry in entries:
        tier = priority_tier(entry, cutoff)
        if tier is not None:
            ranked.append((tier, entry))

    ranked.sort(key=lambda item: (item[0], item[1].scrape_count, _as_utc(item[1].last_scraped_at) or _EPOCH))
    return ranked


class PriorityScheduler:
    """Selects the next batch of rescrape tasks from the catalog."""

    def __init__(self, repository: CatalogRepository):
        self.repository = repository
        self.logger = logger.bind(service="priority_scheduler")

    async def select_candidates(
        self,
        limit: Optional[int] = None,
        max_age_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[ScrapeTask]:
        """Return at most ``limit`` tasks in priority order.

        Args:
            limit: Batch size (default RESCRAPE_BATCH_SIZE)
            max_age_hours: Freshness window (default RESCRAPE_MAX_AGE_HOURS)
            now: Reference time, for tests

        Returns:
            Ordered ScrapeTask list
        """
        limit = settings.RESCRAPE_BATCH_SIZE if limit is None else limit
        max_age_hours = settings.RESCRAPE_MAX_AGE_HOURS if max_age_hours is None else max_age_hours
        if limit <= 0:
            return []

        entries = await self.repository.find_products_for_scraping(limit, max_age_hours)

        tasks: List[ScrapeTask] = []
        for tier, entry in rank_entries(entries, max_age_hours, now):
            try:
                platform = Platform.from_string(entry.platform)
            except UnsupportedPlatformError:
                self.logger.warning("candidate_skipped", entry_id=entry.id, platform=entry.platform)
                continue
            tasks.append(ScrapeTask(catalog_entry_id=entry.id, url=entry.url, platform=platform, tier=tier))
            if len(tasks) >= limit:
                break

        tier_counts: Dict[int, int] = {}
        for task in tasks:
            tier_counts[task.tier] = tier_counts.get(task.tier, 0) + 1
        self.logger.info(
            "candidates_selected",
            count=len(tasks),
            never_scraped=tier_counts.get(TIER_NEVER_SCRAPED, 0),
            stale=tier_counts.get(TIER_STALE, 0),
            considered=len(entries),
        )
        return tasks


class RescrapeScheduler:
    """Runs the rescrape batch job periodically using APScheduler.

    ``max_instances=1`` keeps a slow batch from overlapping the next tick.
    """

    JOB_ID = "rescrape_batch"

    def __init__(self, job: "ScheduleRescrapeJob", interval_minutes: Optional[int] = None):
        self.job = job
        self.interval_minutes = interval_minutes or settings.RESCRAPE_INTERVAL_MINUTES
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="rescrape_scheduler")

    def start(self, run_immediately: bool = True) -> None:
        """Register the batch job (if needed) and start the scheduler."""
        if self.scheduler.get_job(self.JOB_ID) is None:
            self.add_rescrape_job(run_immediately=run_immediately)
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("scheduler_started", interval_minutes=self.interval_minutes)
        else:
            self.logger.warning("scheduler_already_running")

    async def stop(self) -> None:
        """Shut the scheduler down and wait for the shutdown to take effect."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # AsyncIOScheduler applies shutdown on the next loop iteration
            await asyncio.sleep(0)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def add_rescrape_job(self, run_immediately: bool = True) -> Job:
        trigger = IntervalTrigger(minutes=self.interval_minutes, timezone="UTC")
        extra = {}
        if run_immediately:
            # Passing next_run_time=None would add the job paused
            extra["next_run_time"] = datetime.now(timezone.utc)
        job = self.scheduler.add_job(
            func=self._run_rescrape_wrapper,
            trigger=trigger,
            id=self.JOB_ID,
            name="Rescrape stale catalog entries",
            replace_existing=True,
            max_instances=1,
            **extra,
        )
        self.logger.info("rescrape_job_added", interval_minutes=self.interval_minutes)
        return job

    async def _run_rescrape_wrapper(self) -> None:
        """Entry point APScheduler calls; failures are logged, never raised.

        The tick awaits its whole batch, so with max_instances=1 a URL is
        never in flight twice from this scheduler.
        """
        try:
            report = await self.job.handle(sync=True)
            self.logger.info(
                "rescrape_tick_complete",
                dispatched=report.dispatched,
                succeeded=report.succeeded,
                failed=report.failed,
            )
        except Exception as e:
            self.logger.error("rescrape_tick_failed", error=str(e), exc_info=True)

    def get_jobs_status(self) -> List[dict]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]
