"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from achadinhos.api.v1 import health, scrapers

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(scrapers.router, prefix="/scrapers", tags=["scrapers"])
