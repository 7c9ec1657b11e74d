"""Mercado Livre strategy: parses the public search listing pages."""

import re
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from achadinhos.models.enums import Marketplace
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.scrapers.base import BaseScraperStrategy, ScrapedProduct


class MercadoLivreStrategy(BaseScraperStrategy):
    """Scrape lista.mercadolivre.com.br search results.

    Listing markup has changed several times, so item containers are tried
    from newest (poly-card) to oldest and the first selector with hits wins.
    """

    marketplace = Marketplace.MERCADOLIVRE
    display_name = "Mercado Livre"

    LIST_URL = "https://lista.mercadolivre.com.br"
    SITE_URL = "https://www.mercadolivre.com.br"

    ITEM_SELECTORS = [
        "li.ui-search-layout__item",
        ".poly-card",
        ".ui-search-result__wrapper",
    ]

    async def scrape(self, config: ScraperConfig) -> List[ScrapedProduct]:
        """Search every keyword and category on Mercado Livre.

        Args:
            config: Scraper configuration

        Returns:
            Products with at least ``config.min_discount`` percent off
        """
        return await self.search_terms(config, self._search)

    def search_url(self, term: str, config: ScraperConfig) -> str:
        params = {"_OrderId": "PRICE_DESC", "_NoIndex": "true"}
        if config.min_price is not None and config.max_price is not None:
            params["_PriceRange"] = f"{int(config.min_price)}-{int(config.max_price)}"
        if config.min_discount:
            # The site only filters in ranges starting at 30%
            params["_Discount"] = f"{max(config.min_discount, 30)}-100"
        slug = "-".join(term.split())
        return self.build_search_url(f"{self.LIST_URL}/{slug}", params)

    async def _search(self, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        url = self.search_url(term, config)
        soup = await self.fetch_soup(url)
        return self.parse_listing(soup, term, config)

    def parse_listing(self, soup: BeautifulSoup, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        """Parse a search listing page into products."""
        items: List[Tag] = []
        for selector in self.ITEM_SELECTORS:
            items = soup.select(selector)
            if items:
                break

        if not items:
            self.logger.warning("no_items_found", term=term)
            return []

        category = self._breadcrumb(soup) or term
        products = []
        for item in items:
            if len(products) >= config.max_products:
                break
            try:
                product = self._parse_item(item, category, config)
            except ValueError as e:
                self.logger.debug("item_parse_failed", term=term, error=str(e))
                continue
            if product:
                products.append(product)
        return products

    def _parse_item(self, item: Tag, category: str, config: ScraperConfig) -> Optional[ScrapedProduct]:
        title = self._first_text(item, ["h3.poly-component__title-wrapper", "a.poly-component__title", "h2.ui-search-item__title"])
        link = item.select_one("a.poly-component__title, a.ui-search-link, a[href]")
        href = link.get("href") if link else None

        price = self.extract_price(self._first_text(item, [
            ".poly-price__current .andes-money-amount__fraction",
            ".ui-search-price__second-line .andes-money-amount__fraction",
            ".andes-money-amount__fraction",
        ]))
        if not title or not href or price is None:
            return None

        original_price = self.extract_price(self._first_text(item, [
            ".poly-price__prev .andes-money-amount__fraction",
            "s .andes-money-amount__fraction",
            "s",
        ]))
        if original_price is not None and original_price <= price:
            original_price = None

        discount = self._first_text(item, [
            ".poly-price__current .andes-money-amount__discount",
            ".ui-search-price__discount",
        ]) or self.calculate_discount(original_price, price)

        if not self.passes_filters(config, price, discount):
            return None

        shipping = item.select_one(".poly-component__shipping, .ui-search-item__shipping--free")
        if discount and shipping and "grátis" in shipping.get_text(" ", strip=True).lower():
            discount = f"{discount} + FRETE GRÁTIS"

        image = item.select_one("img.poly-component__picture, img")
        image_url = None
        if image:
            image_url = image.get("data-src") or image.get("src")
            if image_url:
                image_url = image_url.replace("_I.jpg", "_W.jpg")

        product = ScrapedProduct(
            title=title,
            price=price,
            original_price=original_price,
            discount=discount,
            image_url=image_url,
            product_url=self.absolute_url(self.SITE_URL, href),
            marketplace=self.marketplace,
            category=category,
        )

        rating = self._first_text(item, [".poly-reviews__rating", ".ui-search-reviews__rating-number"])
        if rating:
            try:
                product.ratings = float(rating.replace(",", "."))
            except ValueError:
                pass

        reviews = self._first_text(item, [".poly-reviews__total", ".ui-search-reviews__amount"])
        match = re.search(r"(\d+)", reviews or "")
        if match:
            product.review_count = int(match.group(1))

        sales = self._first_text(item, [".poly-component__highlight", ".ui-search-item__highlight-label"])
        match = re.search(r"(\d+).*vendid", sales or "", re.IGNORECASE)
        if match:
            product.sales_count = int(match.group(1))

        return product

    @staticmethod
    def _first_text(item: Tag, selectors: List[str]) -> Optional[str]:
        for selector in selectors:
            node = item.select_one(selector)
            if node:
                text = node.get("title") if node.name == "a" and node.get("title") else node.get_text(" ", strip=True)
                if text:
                    return text
        return None

    @staticmethod
    def _breadcrumb(soup: BeautifulSoup) -> Optional[str]:
        crumbs = soup.select(".ui-search-breadcrumb__item, .andes-breadcrumb__item")
        return crumbs[-1].get_text(strip=True) if crumbs else None
