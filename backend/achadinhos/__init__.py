"""Achadinhos scraper service: scheduled marketplace scraping with affiliate links."""

__version__ = "0.1.0"
