"""Execution Pydantic schemas for API responses."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from achadinhos.models.enums import ExecutionStatus


class ExecutionResponse(BaseModel):
    """One scraper execution."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    scraper_id: UUID
    status: ExecutionStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    products_found: int = 0
    products_added: int = 0
    error: Optional[str] = None


class RunScraperResponse(BaseModel):
    """Returned when a manual run has been queued."""

    execution_id: UUID
    status: ExecutionStatus = ExecutionStatus.PENDING
