"""Test data builders shared across test modules."""

import asyncio
from typing import Callable, List

from achadinhos.models import Marketplace
from achadinhos.scrapers.base import BaseScraperStrategy, ScrapedProduct


async def no_sleep(seconds: float) -> None:
    return None


async def wait_until(condition: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll ``condition`` on the event loop until it holds or ``timeout`` passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


def make_product(index: int = 1, price: str = "99.90", marketplace=Marketplace.MERCADOLIVRE, **overrides) -> ScrapedProduct:
    """Build a ScrapedProduct with predictable values."""
    data = {
        "title": f"Produto {index}",
        "price": price,
        "product_url": f"https://produto.mercadolivre.com.br/MLB-{index}",
        "marketplace": marketplace,
        "original_price": "149.90",
        "discount": "33% OFF",
        "category": "eletronicos",
    }
    data.update(overrides)
    return ScrapedProduct(**data)


class FakeStrategy(BaseScraperStrategy):
    """Strategy returning canned products, or raising a canned error."""

    marketplace = Marketplace.MERCADOLIVRE
    display_name = "Fake"

    def __init__(self, fetcher=None, products: List[ScrapedProduct] = None, error: Exception = None):
        super().__init__(fetcher, min_delay=0, max_delay=0, sleep=no_sleep)
        self.products = products or []
        self.error = error
        self.calls = 0

    async def scrape(self, config):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.products)
