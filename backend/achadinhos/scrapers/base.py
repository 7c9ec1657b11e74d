"""Base scraper strategy interface.

Every marketplace strategy inherits from BaseScraperStrategy and implements
``scrape``. The orchestrator only ever calls ``scrape`` and treats an empty
list as a successful run.
"""

import asyncio
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode, urlparse, urlunparse

import structlog
from bs4 import BeautifulSoup

from achadinhos.config import settings
from achadinhos.core.exceptions import ScraperError
from achadinhos.core.time_utils import utcnow
from achadinhos.models.enums import Marketplace
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.scrapers.utils.http_fetcher import HttpFetcher


CENTS = Decimal("0.01")
MAX_TITLE_LENGTH = 200


@dataclass
class ScrapedProduct:
    """Product record produced by a strategy, before persistence."""

    title: str
    price: Decimal
    product_url: str
    marketplace: Marketplace
    original_price: Optional[Decimal] = None
    discount: Optional[str] = None  # Free text, e.g. "25% OFF"
    image_url: Optional[str] = None
    category: Optional[str] = None
    scraped_at: datetime = field(default_factory=utcnow)
    ratings: Optional[float] = None
    review_count: Optional[int] = None
    sales_count: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        """Validate and normalize data after initialization."""
        self.title = (self.title or "").strip()[:MAX_TITLE_LENGTH]
        if not self.title:
            raise ValueError("title is required")
        if not self.product_url:
            raise ValueError("product_url is required")
        if self.price is None:
            raise ValueError("price is required")

        self.price = Decimal(str(self.price)).quantize(CENTS, rounding=ROUND_HALF_UP)
        if self.price < 0:
            raise ValueError("price must be non-negative")
        if self.original_price is not None:
            self.original_price = Decimal(str(self.original_price)).quantize(
                CENTS, rounding=ROUND_HALF_UP
            )
        self.marketplace = Marketplace(self.marketplace)


class BaseScraperStrategy(ABC):
    """Abstract base class for marketplace scraping strategies.

    Strategies share one injected HttpFetcher and never open their own
    connections.
    """

    marketplace: Marketplace  # Must be overridden in subclass
    display_name: str = ""

    def __init__(
        self,
        fetcher: HttpFetcher,
        min_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the strategy.

        Args:
            fetcher: Shared HTTP fetcher
            min_delay: Lower bound of the pause between searches, in seconds
            max_delay: Upper bound of the pause between searches, in seconds
            sleep: Awaitable sleep (tests inject a no-op)
        """
        self.fetcher = fetcher
        self.min_delay = settings.SCRAPER_MIN_DELAY_SECONDS if min_delay is None else min_delay
        self.max_delay = settings.SCRAPER_MAX_DELAY_SECONDS if max_delay is None else max_delay
        self._sleep = sleep or asyncio.sleep
        self.logger = structlog.get_logger(strategy=self.marketplace.value)

    @abstractmethod
    async def scrape(self, config: ScraperConfig) -> List[ScrapedProduct]:
        """Scrape products for a scraper configuration.

        Args:
            config: Scraper configuration (keywords, categories, filters)

        Returns:
            At most ``config.max_products`` products; empty when nothing was found

        Raises:
            ScraperError: If the marketplace could not be searched at all
        """

    async def search_terms(
        self,
        config: ScraperConfig,
        search: Callable[[str, ScraperConfig], Awaitable[List[ScrapedProduct]]],
    ) -> List[ScrapedProduct]:
        """Run ``search`` for every keyword then every category.

        A failing term is logged and skipped. Stops once ``max_products``
        is reached and pauses between terms.

        Args:
            config: Scraper configuration
            search: Coroutine searching a single term

        Returns:
            Products truncated to ``config.max_products``

        Raises:
            ScraperError: If every term failed with an error
        """
        terms = list(config.keywords or []) + list(config.categories or [])
        products: List[ScrapedProduct] = []
        failures = 0
        last_error: Optional[Exception] = None

        for index, term in enumerate(terms):
            if len(products) >= config.max_products:
                break
            try:
                found = await search(term, config)
                products.extend(found)
                self.logger.info("term_searched", term=term, found=len(found))
            except Exception as e:
                failures += 1
                last_error = e
                self.logger.warning("term_search_failed", term=term, error=str(e))

            if index < len(terms) - 1 and len(products) < config.max_products:
                await self.anti_bot_delay()

        if terms and failures == len(terms):
            raise ScraperError(
                self.marketplace.value,
                f"all {failures} searches failed, last error: {last_error}",
            )

        return products[: config.max_products]

    def passes_filters(
        self, config: ScraperConfig, price: Decimal, discount: Optional[str]
    ) -> bool:
        """Check a candidate against the config's discount and price bounds."""
        if config.min_discount and self.discount_value(discount) < config.min_discount:
            return False
        if config.min_price is not None and price < Decimal(str(config.min_price)):
            return False
        if config.max_price is not None and price > Decimal(str(config.max_price)):
            return False
        return True

    async def anti_bot_delay(self) -> None:
        """Sleep a random interval between ``min_delay`` and ``max_delay``."""
        delay = random.uniform(self.min_delay, self.max_delay)
        if delay > 0:
            await self._sleep(delay)

    async def fetch_soup(self, url: str, headers: Optional[Dict[str, str]] = None) -> BeautifulSoup:
        html = await self.fetcher.fetch_html(url, headers=headers)
        return BeautifulSoup(html, "html.parser")

    @staticmethod
    def extract_price(text: Optional[str]) -> Optional[Decimal]:
        """Parse a price in Brazilian or plain notation.

        ``"R$ 1.299,90"`` -> 1299.90, ``"1299.90"`` -> 1299.90, ``"2.499"`` -> 2499.

        Returns:
            Decimal price, or None if no number could be read
        """
        if not text:
            return None
        cleaned = re.sub(r"[^\d,.]", "", text)
        if not cleaned or not re.search(r"\d", cleaned):
            return None

        if "," in cleaned and "." in cleaned:
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif "," in cleaned:
            cleaned = cleaned.replace(",", ".") if cleaned.count(",") == 1 else cleaned.replace(",", "")
        elif re.fullmatch(r"\d{1,3}(\.\d{3})+", cleaned):
            cleaned = cleaned.replace(".", "")

        try:
            return Decimal(cleaned).quantize(CENTS, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            return None

    @staticmethod
    def calculate_discount(
        original: Optional[Decimal], current: Optional[Decimal]
    ) -> Optional[str]:
        """Format the discount between two prices as ``"N% OFF"``.

        Returns:
            Discount text, or None when there is no real discount
        """
        if not original or current is None or original <= 0 or current >= original:
            return None
        percent = ((original - current) / original * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return f"{percent}% OFF"

    @staticmethod
    def discount_value(discount: Optional[str]) -> int:
        """Read the leading percentage out of a discount text (0 if none)."""
        if not discount:
            return 0
        match = re.search(r"(\d+)", discount)
        return int(match.group(1)) if match else 0

    @staticmethod
    def build_search_url(base_url: str, params: Dict[str, Union[str, int, None]]) -> str:
        """Append query parameters to ``base_url``, skipping None values."""
        parsed = urlparse(base_url)
        extra = urlencode({k: v for k, v in params.items() if v is not None})
        query = "&".join(part for part in (parsed.query, extra) if part)
        return urlunparse(parsed._replace(query=query))

    @staticmethod
    def absolute_url(base_url: str, href: str) -> str:
        """Resolve a scraped href and drop its query string."""
        if href.startswith("//"):
            href = f"https:{href}"
        elif not href.startswith("http"):
            href = f"{base_url.rstrip('/')}/{href.lstrip('/')}"
        return href.split("?")[0].split("#")[0]
