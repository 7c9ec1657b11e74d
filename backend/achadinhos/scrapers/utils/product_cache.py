"""In-process recency cache of recently reconciled products."""

import threading
from decimal import Decimal
from typing import Dict, Optional

import structlog

from achadinhos.config import settings
from achadinhos.models.enums import Marketplace


logger = structlog.get_logger(__name__)


def cache_key(marketplace: Marketplace, product_url: str) -> str:
    """Build the ``marketplace:product_url`` key used for deduplication."""
    return f"{Marketplace(marketplace).value}:{product_url}"


class RecentProductCache:
    """Remember the last price seen for each product key.

    Advisory only: a hit at the same price lets the reconciler skip the
    database, anything else still goes through the lookup. Once the cache
    grows past ``max_size`` entries it is cleared entirely.
    """

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or settings.PRODUCT_CACHE_MAX_SIZE
        self._prices: Dict[str, Decimal] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Decimal]:
        with self._lock:
            return self._prices.get(key)

    def is_unchanged(self, key: str, price: Decimal) -> bool:
        """True when ``key`` was seen before at exactly ``price``."""
        with self._lock:
            cached = self._prices.get(key)
        return cached is not None and cached == price

    def put(self, key: str, price: Decimal) -> None:
        with self._lock:
            self._prices[key] = price
            if len(self._prices) > self.max_size:
                logger.info("product_cache_cleared", size=len(self._prices), max_size=self.max_size)
                self._prices.clear()

    def clear(self) -> None:
        with self._lock:
            self._prices.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._prices)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._prices
