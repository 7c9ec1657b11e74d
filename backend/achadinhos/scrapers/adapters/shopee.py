"""Shopee strategy: reads the JSON-LD ItemList embedded in search pages."""

import json
from typing import List, Optional

from bs4 import BeautifulSoup

from achadinhos.models.enums import Marketplace
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.scrapers.base import BaseScraperStrategy, ScrapedProduct
from achadinhos.scrapers.utils.user_agents import get_mobile_user_agent


class ShopeeStrategy(BaseScraperStrategy):
    """Scrape shopee.com.br via structured data.

    The product grid is rendered client-side, but search pages still ship a
    schema.org ItemList for crawlers. A mobile user agent gets the lighter
    page and trips fewer anti-bot checks.
    """

    marketplace = Marketplace.SHOPEE
    display_name = "Shopee"

    BASE_URL = "https://shopee.com.br"

    async def scrape(self, config: ScraperConfig) -> List[ScrapedProduct]:
        return await self.search_terms(config, self._search)

    async def _search(self, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        url = self.build_search_url(f"{self.BASE_URL}/search", {"keyword": term})
        soup = await self.fetch_soup(url, headers={"User-Agent": get_mobile_user_agent()})
        return self.parse_item_list(soup, term, config)

    def parse_item_list(self, soup: BeautifulSoup, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        """Extract products from every ItemList JSON-LD block on the page."""
        products = []
        for script in soup.select('script[type="application/ld+json"]'):
            try:
                data = json.loads(script.string or "{}")
            except json.JSONDecodeError:
                continue

            for entry in self._item_lists(data):
                for element in entry.get("itemListElement") or []:
                    if len(products) >= config.max_products:
                        return products
                    product = self._parse_element(element, term, config)
                    if product:
                        products.append(product)

        if not products:
            self.logger.warning("no_structured_items", term=term)
        return products

    @staticmethod
    def _item_lists(data) -> List[dict]:
        blocks = data if isinstance(data, list) else [data]
        return [b for b in blocks if isinstance(b, dict) and b.get("@type") == "ItemList"]

    def _parse_element(self, element: dict, term: str, config: ScraperConfig) -> Optional[ScrapedProduct]:
        item = element.get("item", element) if isinstance(element, dict) else None
        if not isinstance(item, dict):
            return None

        offers = item.get("offers") or {}
        if isinstance(offers, list):
            offers = offers[0] if offers else {}

        price = self.extract_price(str(offers.get("price") or offers.get("lowPrice") or ""))
        title = item.get("name")
        url = item.get("url")
        if not title or not url or price is None or price <= 0:
            return None

        original_price = self.extract_price(str(offers.get("highPrice") or ""))
        if original_price is not None and original_price <= price:
            original_price = None
        discount = self.calculate_discount(original_price, price)
        if not self.passes_filters(config, price, discount):
            return None

        image = item.get("image")
        if isinstance(image, list):
            image = image[0] if image else None

        rating = item.get("aggregateRating") or {}
        try:
            return ScrapedProduct(
                title=title,
                price=price,
                original_price=original_price,
                discount=discount,
                image_url=image,
                product_url=self.absolute_url(self.BASE_URL, url),
                marketplace=self.marketplace,
                category=term,
                ratings=float(rating["ratingValue"]) if rating.get("ratingValue") else None,
                review_count=int(rating["reviewCount"]) if rating.get("reviewCount") else None,
            )
        except (TypeError, ValueError) as e:
            self.logger.debug("item_parse_failed", term=term, error=str(e))
            return None
