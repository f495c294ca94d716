"""Bounded-concurrency execution of rescrape tasks."""

import asyncio
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

import structlog

from pricewatch.config import settings
from pricewatch.core.exceptions import TaskTimeoutError
from pricewatch.repositories.base import CatalogRepository
from pricewatch.scrapers.base import ScrapeTask
from pricewatch.scrapers.orchestrator import ScrapeOrchestrator, ScrapeResult

logger = structlog.get_logger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_TIMEOUT = "timeout"


@dataclass
class TaskOutcome:
    task: ScrapeTask
    status: str
    attempts: int
    result: Optional[ScrapeResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: bool = False

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_SUCCESS

    def to_dict(self) -> dict:
        return {
            "catalog_entry_id": self.task.catalog_entry_id,
            "url": self.task.url,
            "platform": self.task.platform.value,
            "tier": self.task.tier,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type,
            "product_id": self.result.product.id if self.result and self.result.product else None,
        }


class ScrapeWorkerPool:
    """Runs ScrapeTasks with a concurrency cap, timeout and task-level retries.

    Each attempt is bounded by ``task_timeout``. Failed attempts are retried
    up to ``max_attempts`` times with a fixed ``backoff`` only when the
    failure is retryable; the backoff sleep does not hold a worker slot.
    Successful products are handed to ``repository.save``.
    """

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        repository: CatalogRepository,
        concurrency: Optional[int] = None,
        task_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff: Optional[float] = None,
    ):
        self.orchestrator = orchestrator
        self.repository = repository
        self.concurrency = max(1, concurrency or settings.RESCRAPE_CONCURRENCY)
        self.task_timeout = task_timeout if task_timeout is not None else settings.RESCRAPE_TASK_TIMEOUT
        self.max_attempts = max(1, max_attempts or settings.RESCRAPE_TASK_MAX_ATTEMPTS)
        self.backoff = backoff if backoff is not None else settings.RESCRAPE_TASK_BACKOFF
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self.logger = logger.bind(service="scrape_worker_pool")

    async def run_task(self, task: ScrapeTask) -> TaskOutcome:
        """Run one task to completion, including retries."""
        for attempt in range(1, self.max_attempts + 1):
            current = replace(task, attempt_count=attempt)
            async with self._semaphore:
                outcome = await self._attempt(current, attempt)

            if outcome.ok or not outcome.retryable or attempt == self.max_attempts:
                return outcome

            self.logger.warning(
                "task_retry_scheduled",
                entry_id=task.catalog_entry_id,
                url=task.url,
                attempt=attempt,
                error_type=outcome.error_type,
                backoff_seconds=self.backoff,
            )
            await asyncio.sleep(self.backoff)

        return outcome

    async def _attempt(self, task: ScrapeTask, attempt: int) -> TaskOutcome:
        log = self.logger.bind(entry_id=task.catalog_entry_id, url=task.url, attempt=attempt)
        try:
            result = await asyncio.wait_for(
                self.orchestrator.scrape_one(task.url, task.platform),
                timeout=self.task_timeout,
            )
        except asyncio.TimeoutError:
            error = TaskTimeoutError(task.url, self.task_timeout)
            log.warning("task_timed_out", timeout=self.task_timeout)
            return TaskOutcome(
                task=task,
                status=OUTCOME_TIMEOUT,
                attempts=attempt,
                error=str(error),
                error_type=type(error).__name__,
                retryable=error.retryable,
            )

        if not result.ok:
            return TaskOutcome(
                task=task,
                status=OUTCOME_FAILED,
                attempts=attempt,
                result=result,
                error=result.error,
                error_type=result.error_type,
                retryable=result.retryable,
            )

        try:
            await self.repository.save(result.product, entry_id=task.catalog_entry_id)
        except Exception as e:
            log.error("task_save_failed", error=str(e), exc_info=True)
            return TaskOutcome(
                task=task,
                status=OUTCOME_FAILED,
                attempts=attempt,
                result=result,
                error=f"save failed: {e}",
                error_type=type(e).__name__,
            )

        log.info("task_succeeded", product_id=result.product.id)
        return TaskOutcome(task=task, status=OUTCOME_SUCCESS, attempts=attempt, result=result)

    async def run_all(self, tasks: Iterable[ScrapeTask]) -> List[TaskOutcome]:
        """Run tasks concurrently; outcome ``i`` belongs to task ``i``."""
        return list(await asyncio.gather(*(self.run_task(t) for t in tasks)))
