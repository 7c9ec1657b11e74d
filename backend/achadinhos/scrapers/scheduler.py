"""APScheduler-based scraping scheduler.

Four independent interval jobs share one event loop:

- pending executions (manual "run now" requests), every minute
- due scraper configs, every 15 minutes, in small batches
- stuck execution reaper, every 10 minutes
- daily messaging counter reset, every hour

Each job is wrapped so an exception is logged and never stops the scheduler.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from achadinhos.config import settings
from achadinhos.scrapers.orchestrator import ScraperOrchestrator, ScraperRunResult
from achadinhos.services.account_service import AccountService
from achadinhos.services.execution_service import ExecutionStateMachine

logger = structlog.get_logger(__name__)


class ScraperScheduler:
    """Drives the orchestrator on fixed cadences.

    This scheduler:
    - Promotes and runs PENDING executions, oldest first
    - Runs due configs in batches, waiting for each batch to settle
    - Reaps executions stuck past the staleness threshold
    - Resets per-account daily counters
    """

    PENDING_JOB_ID = "check_pending_executions"
    DUE_JOB_ID = "check_due_scrapers"
    REAPER_JOB_ID = "reap_stuck_executions"
    COUNTER_RESET_JOB_ID = "reset_daily_counters"

    def __init__(
        self,
        orchestrator: ScraperOrchestrator,
        state_machine: ExecutionStateMachine,
        account_service: AccountService,
        batch_size: Optional[int] = None,
        pending_batch_size: Optional[int] = None,
        stale_after: Optional[timedelta] = None,
    ):
        """Initialize scraper scheduler.

        Args:
            orchestrator: Runs individual scraper configs
            state_machine: Execution queries and the reaper transition
            account_service: Daily counter reset
            batch_size: Due configs submitted together (SCHEDULER_BATCH_SIZE)
            pending_batch_size: PENDING executions handled per tick (PENDING_BATCH_SIZE)
            stale_after: Age at which a non-terminal execution is reaped
        """
        self.orchestrator = orchestrator
        self.state_machine = state_machine
        self.account_service = account_service
        self.batch_size = batch_size or settings.SCHEDULER_BATCH_SIZE
        self.pending_batch_size = pending_batch_size or settings.PENDING_BATCH_SIZE
        self.stale_after = stale_after or timedelta(minutes=settings.STALE_EXECUTION_MINUTES)

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="scraper_scheduler")

    def start(self) -> None:
        """Register the four cadences and start the scheduler."""
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        self._add_job(self.PENDING_JOB_ID, self.check_pending_executions, seconds=settings.PENDING_CHECK_SECONDS)
        self._add_job(self.DUE_JOB_ID, self.check_due_scrapers, minutes=settings.DUE_CHECK_MINUTES)
        self._add_job(self.REAPER_JOB_ID, self.reap_stuck_executions, minutes=settings.REAPER_MINUTES)
        self._add_job(self.COUNTER_RESET_JOB_ID, self.reset_daily_counters, minutes=settings.COUNTER_RESET_MINUTES)

        self.scheduler.start()
        self.logger.info("scheduler_started", jobs=list(self.get_jobs_status().keys()))

    def stop(self) -> None:
        """Stop the scheduler without waiting for running jobs.

        In-flight runs are drained by ScraperOrchestrator.shutdown.
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def _add_job(self, job_id: str, func: Callable[[], Awaitable], **interval) -> None:
        self.scheduler.add_job(
            func=self._run_job_wrapper,
            trigger=IntervalTrigger(
                start_date=datetime.now(timezone.utc),
                timezone="UTC",
                **interval,
            ),
            args=[job_id, func],
            id=job_id,
            name=job_id.replace("_", " ").capitalize(),
            replace_existing=True,
            max_instances=1,  # a slow tick never overlaps itself
            coalesce=True,
        )
        self.logger.info("scheduler_job_added", job_id=job_id, **interval)

    async def _run_job_wrapper(self, job_id: str, func: Callable[[], Awaitable]) -> None:
        """Wrapper that APScheduler calls; logs and swallows job errors."""
        try:
            await func()
        except Exception as e:
            self.logger.error(
                "scheduler_job_failed",
                job_id=job_id,
                error=str(e),
                exc_info=True,
            )

    async def check_pending_executions(self) -> List[Optional[ScraperRunResult]]:
        """Run queued PENDING executions one after another, oldest first.

        Returns:
            One entry per pending execution (None when it was skipped)
        """
        pending = await self.state_machine.list_pending(limit=self.pending_batch_size)
        if not pending:
            return []

        self.logger.info("pending_executions_found", count=len(pending))
        results = []
        for execution in pending:
            if self.orchestrator.closing:
                self.logger.info("pending_check_interrupted_by_shutdown", remaining=len(pending) - len(results))
                break
            results.append(await self.orchestrator.run_pending(execution))
        return results

    async def check_due_scrapers(self) -> List[Optional[ScraperRunResult]]:
        """Run every due config, ``batch_size`` at a time.

        Each batch is joined with all-settled semantics before the next one
        is submitted, so one failing scraper never aborts its batch-mates.

        Returns:
            One entry per due config (None for skipped or crashed runs)
        """
        configs = await self.orchestrator.list_due_configs()
        if not configs:
            self.logger.info("no_scrapers_due")
            return []

        self.logger.info("due_scrapers_found", count=len(configs))
        results: List[Optional[ScraperRunResult]] = []
        for start in range(0, len(configs), self.batch_size):
            if self.orchestrator.closing:
                self.logger.info("due_check_interrupted_by_shutdown", remaining=len(configs) - start)
                break
            batch = configs[start:start + self.batch_size]
            started = datetime.now(timezone.utc)
            outcomes = await asyncio.gather(
                *(self.orchestrator.run_scraper(config) for config in batch),
                return_exceptions=True,
            )

            for config, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    self.logger.error(
                        "scraper_run_crashed",
                        scraper_id=str(config.id),
                        error=str(outcome),
                    )
                    results.append(None)
                else:
                    results.append(outcome)

            self.logger.info(
                "scraper_batch_completed",
                batch_size=len(batch),
                succeeded=sum(1 for o in outcomes if isinstance(o, ScraperRunResult) and o.error is None),
                duration_seconds=(datetime.now(timezone.utc) - started).total_seconds(),
            )
        return results

    async def reap_stuck_executions(self) -> int:
        """Fail executions that have not finished within the staleness threshold."""
        return await self.state_machine.reap_stale(self.stale_after)

    async def reset_daily_counters(self) -> int:
        return await self.account_service.reset_daily_counters()

    def get_jobs_status(self) -> dict:
        """Get status of all scheduled jobs.

        Returns:
            Dict with job information keyed by job id
        """
        jobs = {}
        for job in self.scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            }
        return jobs

    def is_running(self) -> bool:
        return self.scheduler.running
