"""Scraper utilities: HTTP fetching, retries, user agents, cron and caching."""

from .cron import calculate_next_run
from .http_fetcher import HttpFetcher
from .product_cache import RecentProductCache, cache_key
from .retry import fetch_retrying
from .user_agents import (
    get_random_user_agent,
    get_mobile_user_agent,
    USER_AGENTS,
)
from .work_queue import ScrapeQueue


__all__ = [
    # Scheduling
    "calculate_next_run",
    # HTTP
    "HttpFetcher",
    "fetch_retrying",
    # User agents
    "get_random_user_agent",
    "get_mobile_user_agent",
    "USER_AGENTS",
    # Orchestration
    "RecentProductCache",
    "cache_key",
    "ScrapeQueue",
]
