"""Health check schemas."""

from typing import Dict, Optional

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    database: str
    scheduler: Optional[str] = None
    jobs: Dict[str, dict] = {}
    active_scrapes: int = 0
