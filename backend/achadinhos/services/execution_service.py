"""Execution lifecycle: PENDING -> RUNNING -> SUCCESS | FAILED.

Every transition is a single conditional UPDATE guarded on the current
status, so concurrent writers (a run finishing while the reaper sweeps)
cannot both win. A transition whose guard no longer holds returns False.
"""

import uuid
from datetime import timedelta
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from achadinhos.config import settings
from achadinhos.core.time_utils import as_utc, utcnow
from achadinhos.models.enums import ExecutionStatus
from achadinhos.models.execution import Execution

logger = structlog.get_logger(__name__)

ACTIVE_STATUSES = (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)


def timeout_message(elapsed: timedelta) -> str:
    return f"Execution timeout after {int(elapsed.total_seconds() // 60)} minutes"


class ExecutionStateMachine:
    """Create executions and move them through their lifecycle."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the state machine.

        Args:
            session_factory: Async session factory; every call uses its own session
        """
        self.session_factory = session_factory
        self.logger = logger.bind(service="execution_service")

    async def enqueue(self, scraper_id: uuid.UUID) -> Execution:
        """Create a PENDING execution (manual "run now" trigger)."""
        return await self._create(scraper_id, ExecutionStatus.PENDING)

    async def create_running(self, scraper_id: uuid.UUID) -> Execution:
        """Create an execution that starts RUNNING (scheduler-triggered run)."""
        return await self._create(scraper_id, ExecutionStatus.RUNNING)

    async def _create(self, scraper_id: uuid.UUID, status: ExecutionStatus) -> Execution:
        execution = Execution(
            id=uuid.uuid4(),
            scraper_id=scraper_id,
            status=status,
            started_at=utcnow(),
            products_found=0,
            products_added=0,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(execution)

        self.logger.info(
            "execution_created",
            execution_id=str(execution.id),
            scraper_id=str(scraper_id),
            status=status.value,
        )
        return execution

    async def start(self, execution_id: uuid.UUID) -> bool:
        """Promote a PENDING execution to RUNNING with a fresh started_at.

        Returns:
            True if the execution was promoted, False if it was no longer PENDING
        """
        return await self._transition(
            execution_id,
            from_statuses=(ExecutionStatus.PENDING,),
            status=ExecutionStatus.RUNNING,
            started_at=utcnow(),
        )

    async def succeed(self, execution_id: uuid.UUID, found: int, added: int) -> bool:
        """Mark a RUNNING execution as SUCCESS and record its counts.

        Args:
            execution_id: Execution to complete
            found: Products returned by the strategy
            added: Products that were genuinely new (clamped to ``found``)

        Returns:
            True if the transition happened
        """
        return await self._transition(
            execution_id,
            from_statuses=(ExecutionStatus.RUNNING,),
            status=ExecutionStatus.SUCCESS,
            finished_at=utcnow(),
            products_found=found,
            products_added=min(added, found),
        )

    async def fail(
        self,
        execution_id: uuid.UUID,
        error: str,
        traceback: Optional[str] = None,
    ) -> bool:
        """Mark a PENDING or RUNNING execution as FAILED.

        Args:
            execution_id: Execution to fail
            error: Human-readable error message
            traceback: Optional formatted traceback

        Returns:
            True if the transition happened
        """
        return await self._transition(
            execution_id,
            from_statuses=ACTIVE_STATUSES,
            status=ExecutionStatus.FAILED,
            finished_at=utcnow(),
            error=error or "Unknown error",
            error_traceback=traceback,
        )

    async def _transition(self, execution_id: uuid.UUID, from_statuses, **values) -> bool:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Execution)
                    .where(Execution.id == execution_id, Execution.status.in_(from_statuses))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                changed = result.rowcount == 1

        log = self.logger.info if changed else self.logger.warning
        log(
            "execution_transitioned" if changed else "execution_transition_skipped",
            execution_id=str(execution_id),
            to_status=values["status"].value,
            from_statuses=[s.value for s in from_statuses],
        )
        return changed

    async def reap_stale(self, threshold: Optional[timedelta] = None) -> int:
        """Fail every PENDING or RUNNING execution older than ``threshold``.

        Each row is updated with a guard on both its status and the started_at
        that was read, so a run that completes or gets promoted in the
        meantime keeps its real outcome.

        Args:
            threshold: Age since started_at (default STALE_EXECUTION_MINUTES)

        Returns:
            Number of executions reaped
        """
        threshold = threshold or timedelta(minutes=settings.STALE_EXECUTION_MINUTES)
        now = utcnow()
        cutoff = now - threshold

        async with self.session_factory() as session:
            result = await session.execute(
                select(Execution.id, Execution.started_at).where(
                    Execution.status.in_(ACTIVE_STATUSES),
                    Execution.started_at < cutoff,
                )
            )
            stale = result.all()

        reaped = 0
        for execution_id, started_at in stale:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Execution)
                        .where(
                            Execution.id == execution_id,
                            Execution.status.in_(ACTIVE_STATUSES),
                            Execution.started_at == started_at,
                        )
                        .values(
                            status=ExecutionStatus.FAILED,
                            finished_at=now,
                            error=timeout_message(now - as_utc(started_at)),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        reaped += 1
                        self.logger.warning(
                            "execution_reaped",
                            execution_id=str(execution_id),
                            started_at=started_at.isoformat() if started_at else None,
                        )

        if stale:
            self.logger.info("stale_executions_reaped", found=len(stale), reaped=reaped)
        return reaped

    async def get(self, execution_id: uuid.UUID) -> Optional[Execution]:
        async with self.session_factory() as session:
            return await session.get(Execution, execution_id)

    async def list_pending(self, limit: Optional[int] = None) -> List[Execution]:
        """PENDING executions, oldest first."""
        stmt = (
            select(Execution)
            .where(Execution.status == ExecutionStatus.PENDING)
            .order_by(Execution.started_at.asc())
            .limit(limit or settings.PENDING_BATCH_SIZE)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_recent(
        self,
        status: Optional[ExecutionStatus] = None,
        scraper_id: Optional[uuid.UUID] = None,
        limit: int = 50,
    ) -> List[Execution]:
        """Most recent executions, newest first, optionally filtered."""
        stmt = select(Execution).order_by(Execution.started_at.desc()).limit(limit)
        if status is not None:
            stmt = stmt.where(Execution.status == status)
        if scraper_id is not None:
            stmt = stmt.where(Execution.scraper_id == scraper_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
