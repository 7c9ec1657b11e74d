"""Pydantic schemas for API request/response validation."""

from achadinhos.schemas.common import ApiResponse
from achadinhos.schemas.execution import ExecutionResponse, RunScraperResponse
from achadinhos.schemas.health import HealthCheckResponse

__all__ = [
    "ApiResponse",
    "ExecutionResponse",
    "RunScraperResponse",
    "HealthCheckResponse",
]
