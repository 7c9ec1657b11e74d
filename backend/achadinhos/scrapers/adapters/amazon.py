"""Amazon Brasil strategy: parses the /s search results page."""

from typing import List, Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup, Tag

from achadinhos.models.enums import Marketplace
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.scrapers.base import BaseScraperStrategy, ScrapedProduct


class AmazonStrategy(BaseScraperStrategy):
    """Scrape amazon.com.br search results.

    A CAPTCHA interstitial is treated as an empty page; no placeholder
    products are produced.
    """

    marketplace = Marketplace.AMAZON
    display_name = "Amazon"

    BASE_URL = "https://www.amazon.com.br"

    RESULT_SELECTORS = [
        'div[data-component-type="s-search-result"]',
        ".s-result-item[data-asin]",
    ]

    async def scrape(self, config: ScraperConfig) -> List[ScrapedProduct]:
        return await self.search_terms(config, self._search)

    async def _search(self, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        url = f"{self.BASE_URL}/s?k={quote_plus(term)}"
        soup = await self.fetch_soup(url)
        return self.parse_results(soup, term, config)

    @staticmethod
    def is_captcha(soup: BeautifulSoup) -> bool:
        if soup.select_one('form[action*="validateCaptcha"]'):
            return True
        return "Digite os caracteres" in soup.get_text()

    def parse_results(self, soup: BeautifulSoup, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        """Parse a search results page into products."""
        if self.is_captcha(soup):
            self.logger.warning("captcha_detected", term=term)
            return []

        results: List[Tag] = []
        for selector in self.RESULT_SELECTORS:
            results = [r for r in soup.select(selector) if r.get("data-asin")]
            if results:
                break

        products = []
        for result in results:
            if len(products) >= config.max_products:
                break
            try:
                product = self._parse_result(result, term, config)
            except ValueError as e:
                self.logger.debug("result_parse_failed", term=term, error=str(e))
                continue
            if product:
                products.append(product)

        if not products:
            self.logger.warning("no_results_found", term=term)
        return products

    def _parse_result(self, result: Tag, term: str, config: ScraperConfig) -> Optional[ScrapedProduct]:
        asin = result.get("data-asin")
        title_node = result.select_one("h2 span") or result.select_one("h2")
        title = title_node.get_text(" ", strip=True) if title_node else None

        price_node = result.select_one(".a-price:not(.a-text-price) .a-offscreen") or result.select_one(".a-price-whole")
        price = self.extract_price(price_node.get_text(strip=True)) if price_node else None
        if not title or price is None or price <= 0:
            return None

        original_node = result.select_one(".a-price.a-text-price .a-offscreen")
        original_price = self.extract_price(original_node.get_text(strip=True)) if original_node else None
        if original_price is not None and original_price <= price:
            original_price = None

        discount = self.calculate_discount(original_price, price)
        if not self.passes_filters(config, price, discount):
            return None

        link = result.select_one("h2 a[href]") or result.select_one("a.a-link-normal[href]")
        href = link.get("href") if link else f"/dp/{asin}"

        image = result.select_one("img.s-image")
        return ScrapedProduct(
            title=title,
            price=price,
            original_price=original_price,
            discount=discount,
            image_url=image.get("src") if image else None,
            product_url=self.absolute_url(self.BASE_URL, href),
            marketplace=self.marketplace,
            category=term,
            metadata={"asin": asin, "prime": bool(result.select_one('[aria-label*="Prime"]'))},
        )
