"""Scraping core: strategies, orchestration and scheduling."""

from achadinhos.scrapers.base import BaseScraperStrategy, ScrapedProduct

__all__ = [
    "BaseScraperStrategy",
    "ScrapedProduct",
]
