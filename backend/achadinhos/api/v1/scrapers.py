"""Scraper execution endpoints used by the dashboard."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from achadinhos.bootstrap import Runtime
from achadinhos.core.exceptions import NotFoundError
from achadinhos.dependencies import get_runtime
from achadinhos.models.enums import ExecutionStatus
from achadinhos.schemas import ApiResponse, ExecutionResponse, RunScraperResponse

router = APIRouter()


@router.post(
    "/{scraper_id}/run",
    response_model=ApiResponse[RunScraperResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_scraper(scraper_id: UUID, runtime: Runtime = Depends(get_runtime)):
    """Queue a manual run of a scraper.

    Creates a PENDING execution; the scheduler promotes and runs it on its
    next pending check (within about a minute).
    """
    try:
        execution = await runtime.orchestrator.enqueue_run(scraper_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    return ApiResponse(data=RunScraperResponse(execution_id=execution.id))


@router.get("/executions", response_model=ApiResponse[List[ExecutionResponse]])
async def list_executions(
    status_filter: Optional[ExecutionStatus] = Query(None, alias="status"),
    scraper_id: Optional[UUID] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    runtime: Runtime = Depends(get_runtime),
):
    """List the most recent executions, newest first."""
    executions = await runtime.state_machine.list_recent(
        status=status_filter,
        scraper_id=scraper_id,
        limit=limit,
    )
    return ApiResponse(data=[ExecutionResponse.model_validate(e) for e in executions])


@router.get("/executions/{execution_id}", response_model=ApiResponse[ExecutionResponse])
async def get_execution(execution_id: UUID, runtime: Runtime = Depends(get_runtime)):
    """Get one execution by id."""
    execution = await runtime.state_machine.get(execution_id)
    if execution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Execution with identifier '{execution_id}' not found",
        )
    return ApiResponse(data=ExecutionResponse.model_validate(execution))
