"""Scraper orchestration: one run of one ScraperConfig, end to end.

A run moves through strictly ordered steps:

    touch last_run -> scrape (bounded queue) -> reconcile -> SUCCESS -> next_run

Any failure marks the execution FAILED and schedules a retry. The
orchestrator is the error boundary for a run: nothing raised by a strategy,
the reconciler or the database escapes to the scheduler.
"""

import asyncio
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from achadinhos.config import settings
from achadinhos.core.exceptions import NotFoundError
from achadinhos.core.time_utils import utcnow
from achadinhos.models.enums import ExecutionStatus
from achadinhos.models.execution import Execution
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.scrapers.registry import StrategyRegistry
from achadinhos.scrapers.utils.cron import calculate_next_run
from achadinhos.scrapers.utils.work_queue import ScrapeQueue
from achadinhos.services.execution_service import ExecutionStateMachine
from achadinhos.services.product_reconciler import ProductReconciler

logger = structlog.get_logger(__name__)

CANCELLED_MESSAGE = "Execution cancelled during shutdown"


@dataclass
class ScraperRunResult:
    """Outcome of one orchestrated run."""

    execution_id: uuid.UUID
    scraper_id: uuid.UUID
    status: ExecutionStatus
    products_found: int = 0
    products_added: int = 0
    next_run: Optional[datetime] = None
    error: Optional[str] = None


class ScraperOrchestrator:
    """Runs scraper configs through their strategy and persists the outcome."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: StrategyRegistry,
        reconciler: ProductReconciler,
        state_machine: ExecutionStateMachine,
        queue: Optional[ScrapeQueue] = None,
        schedule_timezone: Optional[str] = None,
        retry_delay: Optional[timedelta] = None,
    ):
        """Initialize the orchestrator.

        Args:
            session_factory: Async session factory for ScraperConfig updates
            registry: Marketplace -> strategy mapping
            reconciler: Persists scraped products
            state_machine: Execution lifecycle transitions
            queue: Shared concurrency ceiling around strategy calls
            schedule_timezone: IANA zone in which cron hours are read
            retry_delay: Delay before retrying a failed config
        """
        self.session_factory = session_factory
        self.registry = registry
        self.reconciler = reconciler
        self.state_machine = state_machine
        self.queue = queue or ScrapeQueue()
        self.schedule_timezone = ZoneInfo(schedule_timezone or settings.SCHEDULE_TIMEZONE)
        self.retry_delay = retry_delay or timedelta(minutes=settings.RETRY_DELAY_MINUTES)

        self._in_flight: Set[uuid.UUID] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._closing = False
        self.logger = logger.bind(service="scraper_orchestrator")

    @property
    def in_flight(self) -> Set[uuid.UUID]:
        return set(self._in_flight)

    @property
    def closing(self) -> bool:
        """True once shutdown has begun; no new runs are started after that."""
        return self._closing

    async def run_scraper(
        self,
        config: ScraperConfig,
        execution_id: Optional[uuid.UUID] = None,
    ) -> Optional[ScraperRunResult]:
        """Run one scraper config.

        Args:
            config: Scraper configuration to run
            execution_id: Existing PENDING execution to promote; a new RUNNING
                execution is created when omitted

        Returns:
            The run result, or None when the run was skipped (orchestrator
            shutting down, config already running in this process, execution
            no longer PENDING, or the execution could not be created)
        """
        if self._closing:
            self.logger.info("scraper_run_refused_shutting_down", scraper_id=str(config.id), name=config.name)
            return None

        if config.id in self._in_flight:
            self.logger.warning("scraper_already_running", scraper_id=str(config.id), name=config.name)
            return None

        self._in_flight.add(config.id)
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        try:
            return await self._run(config, execution_id)
        finally:
            self._in_flight.discard(config.id)
            if task is not None:
                self._tasks.discard(task)

    async def _run(
        self,
        config: ScraperConfig,
        execution_id: Optional[uuid.UUID],
    ) -> Optional[ScraperRunResult]:
        log = self.logger.bind(
            scraper_id=str(config.id),
            name=config.name,
            marketplace=config.marketplace.value,
        )

        try:
            if execution_id is not None:
                if not await self.state_machine.start(execution_id):
                    log.warning("pending_execution_not_promoted", execution_id=str(execution_id))
                    return None
            else:
                execution_id = (await self.state_machine.create_running(config.id)).id
        except Exception as e:
            log.error("execution_setup_failed", error=str(e), exc_info=True)
            return None

        log = log.bind(execution_id=str(execution_id))
        log.info("scrape_job_started")

        try:
            await self._touch_last_run(config.id, utcnow())

            strategy = self.registry.get(config.marketplace)
            products = await self.queue.run(lambda: strategy.scrape(config))
            added = await self.reconciler.save(products, config.marketplace, config.user_id)

            succeeded = await self.state_machine.succeed(execution_id, len(products), added)
            if not succeeded:
                return await self._finished_elsewhere(log, execution_id, config.id, len(products), added)

            next_run = self.next_run_for(config.frequency)
            await self._set_next_run(config.id, next_run)

            log.info(
                "scrape_job_completed",
                products_found=len(products),
                products_added=min(added, len(products)),
                next_run=next_run.isoformat(),
            )
            return ScraperRunResult(
                execution_id=execution_id,
                scraper_id=config.id,
                status=ExecutionStatus.SUCCESS,
                products_found=len(products),
                products_added=min(added, len(products)),
                next_run=next_run,
            )

        except asyncio.CancelledError:
            log.warning("scrape_job_cancelled")
            await self._record_failure(log, execution_id, config.id, CANCELLED_MESSAGE, None)
            raise

        except Exception as e:
            error = str(e) or type(e).__name__
            next_run = await self._record_failure(
                log, execution_id, config.id, error, traceback.format_exc()
            )
            log.error("scrape_job_failed", error=error, next_run=next_run.isoformat(), exc_info=True)
            return ScraperRunResult(
                execution_id=execution_id,
                scraper_id=config.id,
                status=ExecutionStatus.FAILED,
                next_run=next_run,
                error=error,
            )

    async def _finished_elsewhere(
        self,
        log,
        execution_id: uuid.UUID,
        scraper_id: uuid.UUID,
        found: int,
        added: int,
    ) -> ScraperRunResult:
        """Report a run whose execution was already closed, usually by the reaper.

        The stored error is echoed back and the config is scheduled as a retry.
        """
        stored = await self.state_machine.get(execution_id)
        error = (stored.error if stored is not None else None) or "Execution was no longer running"
        next_run = self.next_run_for("", is_retry=True)
        await self._set_next_run(scraper_id, next_run)
        log.warning(
            "scrape_job_result_discarded",
            error=error,
            products_found=found,
            next_run=next_run.isoformat(),
        )
        return ScraperRunResult(
            execution_id=execution_id,
            scraper_id=scraper_id,
            status=ExecutionStatus.FAILED,
            products_found=found,
            products_added=min(added, found),
            next_run=next_run,
            error=error,
        )

    async def _record_failure(
        self,
        log,
        execution_id: uuid.UUID,
        scraper_id: uuid.UUID,
        error: str,
        error_traceback: Optional[str],
    ) -> datetime:
        next_run = self.next_run_for("", is_retry=True)
        try:
            await self.state_machine.fail(execution_id, error, error_traceback)
        except Exception as e:
            log.error("execution_fail_not_recorded", error=str(e), exc_info=True)
        try:
            await self._set_next_run(scraper_id, next_run)
        except Exception as e:
            log.error("next_run_not_recorded", error=str(e), exc_info=True)
        return next_run

    def next_run_for(self, frequency: str, is_retry: bool = False) -> datetime:
        """Compute the next run in the schedule timezone, returned in UTC."""
        local_now = utcnow().astimezone(self.schedule_timezone)
        next_run = calculate_next_run(
            frequency, local_now, is_retry=is_retry, retry_delay=self.retry_delay
        )
        return next_run.astimezone(timezone.utc)

    async def _touch_last_run(self, scraper_id: uuid.UUID, now: datetime) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ScraperConfig)
                    .where(ScraperConfig.id == scraper_id)
                    .values(last_run=now)
                    .execution_options(synchronize_session=False)
                )

    async def _set_next_run(self, scraper_id: uuid.UUID, next_run: datetime) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ScraperConfig)
                    .where(ScraperConfig.id == scraper_id)
                    .values(next_run=next_run)
                    .execution_options(synchronize_session=False)
                )

    async def load_config(self, scraper_id: uuid.UUID) -> ScraperConfig:
        """Load a scraper config.

        Raises:
            NotFoundError: If the config does not exist
        """
        async with self.session_factory() as session:
            config = await session.get(ScraperConfig, scraper_id)
        if config is None:
            raise NotFoundError("ScraperConfig", str(scraper_id))
        return config

    async def enqueue_run(self, scraper_id: uuid.UUID) -> Execution:
        """Queue a manual run; the scheduler picks it up on its next pending check.

        Raises:
            NotFoundError: If the config does not exist
        """
        await self.load_config(scraper_id)
        return await self.state_machine.enqueue(scraper_id)

    async def run_pending(self, execution: Execution) -> Optional[ScraperRunResult]:
        """Run the config behind a PENDING execution, promoting it first."""
        try:
            config = await self.load_config(execution.scraper_id)
        except NotFoundError as e:
            await self.state_machine.fail(execution.id, e.message)
            return None
        return await self.run_scraper(config, execution_id=execution.id)

    async def list_due_configs(self) -> List[ScraperConfig]:
        """Active configs that never ran or whose next_run has passed."""
        now = utcnow()
        async with self.session_factory() as session:
            result = await session.execute(
                select(ScraperConfig)
                .where(
                    ScraperConfig.is_active.is_(True),
                    (ScraperConfig.next_run.is_(None)) | (ScraperConfig.next_run <= now),
                )
                .order_by(ScraperConfig.next_run.asc())
            )
            return list(result.scalars().all())

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight runs, then cancel whatever is still going.

        New runs are refused from this point on. Cancelled runs mark their
        execution FAILED before they stop.

        Args:
            timeout: Seconds to wait before cancelling (SHUTDOWN_GRACE_SECONDS)
        """
        self._closing = True
        timeout = settings.SHUTDOWN_GRACE_SECONDS if timeout is None else timeout
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current and not t.done()]
        if not tasks:
            return

        self.logger.info("waiting_for_in_flight_runs", runs=len(tasks), timeout=timeout)
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            self.logger.warning("cancelling_in_flight_runs", runs=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
