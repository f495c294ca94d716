"""Rescrape batch job: select candidates, dispatch them to the worker pool."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Set

import structlog

from pricewatch.config import settings
from pricewatch.scrapers.scheduler import PriorityScheduler
from pricewatch.scrapers.worker import OUTCOME_TIMEOUT, ScrapeWorkerPool, TaskOutcome

logger = structlog.get_logger(__name__)


@dataclass
class RescrapeReport:
    dispatched: int
    sync: bool
    outcomes: List[TaskOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def timed_out(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OUTCOME_TIMEOUT)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    def to_dict(self) -> dict:
        return {
            "dispatched": self.dispatched,
            "sync": self.sync,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class ScheduleRescrapeJob:
    """Select up to ``batch_size`` stale products and scrape them.

    With ``sync=True`` the batch runs inline and the report carries every
    task outcome. Otherwise tasks run in the background and the report
    only counts dispatched tasks; drain() waits for them.
    """

    def __init__(
        self,
        scheduler: PriorityScheduler,
        pool: ScrapeWorkerPool,
        batch_size: Optional[int] = None,
        max_age_hours: Optional[int] = None,
    ):
        self.scheduler = scheduler
        self.pool = pool
        self.batch_size = batch_size if batch_size is not None else settings.RESCRAPE_BATCH_SIZE
        self.max_age_hours = max_age_hours if max_age_hours is not None else settings.RESCRAPE_MAX_AGE_HOURS
        self._pending: Set[asyncio.Task] = set()
        self._finished: List[TaskOutcome] = []
        self.logger = logger.bind(service="schedule_rescrape_job")

    async def handle(self, sync: bool = False) -> RescrapeReport:
        self.logger.info(
            "rescrape_batch_started",
            batch_size=self.batch_size,
            max_age_hours=self.max_age_hours,
            sync=sync,
        )
        tasks = await self.scheduler.select_candidates(self.batch_size, self.max_age_hours)
        report = RescrapeReport(dispatched=len(tasks), sync=sync)

        if not tasks:
            self.logger.info("rescrape_batch_empty")
            report.finished_at = datetime.now(timezone.utc)
            return report

        if sync:
            report.outcomes = await self.pool.run_all(tasks)
            report.finished_at = datetime.now(timezone.utc)
            self.logger.info(
                "rescrape_batch_complete",
                dispatched=report.dispatched,
                succeeded=report.succeeded,
                failed=report.failed,
                timed_out=report.timed_out,
            )
            return report

        for task in tasks:
            background = asyncio.create_task(self.pool.run_task(task))
            self._pending.add(background)
            background.add_done_callback(self._task_done)

        self.logger.info("rescrape_batch_dispatched", dispatched=report.dispatched)
        return report

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self.logger.warning("rescrape_task_cancelled")
            return
        error = task.exception()
        if error is not None:
            self.logger.error("rescrape_task_crashed", error=str(error), error_type=type(error).__name__)
            return
        self._finished.append(task.result())

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> List[TaskOutcome]:
        """Wait for every background task dispatched so far.

        Returns the outcomes not yet drained, in completion order, including
        tasks that finished before drain() was called.
        """
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        outcomes, self._finished = self._finished, []
        return outcomes
