"""Health check endpoint."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from achadinhos.db.utils import check_database_health
from achadinhos.dependencies import get_db
from achadinhos.schemas import HealthCheckResponse

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Return service health status.

    Checks database connectivity and reports the scheduler state. The status
    is "degraded" when the database is unreachable.
    """
    db_health = await check_database_health(db)
    db_status = "ok" if db_health["healthy"] else f"error: {db_health['error']}"

    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        scheduler_status = "not_initialized"
        jobs = {}
        active = 0
    else:
        scheduler_status = "running" if runtime.scheduler.is_running() else "stopped"
        jobs = runtime.scheduler.get_jobs_status()
        active = runtime.orchestrator.queue.active

    return HealthCheckResponse(
        status="ok" if db_status == "ok" else "degraded",
        database=db_status,
        scheduler=scheduler_status,
        jobs=jobs,
        active_scrapes=active,
    )
