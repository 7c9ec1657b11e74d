"""AliExpress strategy backed by the AliExpress Affiliate API.

Documentation: https://developers.aliexpress.com/en/doc.htm?docId=108976&docType=1
"""

import hashlib
import json
from typing import Any, Dict, List, Optional

from achadinhos.config import settings
from achadinhos.core.exceptions import ScraperError
from achadinhos.core.time_utils import utcnow
from achadinhos.models.enums import Marketplace
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.scrapers.base import BaseScraperStrategy, ScrapedProduct


class AliExpressStrategy(BaseScraperStrategy):
    """Search AliExpress through the affiliate product query API.

    Requires ALIEXPRESS_APP_KEY and ALIEXPRESS_APP_SECRET. Without them every
    run is an empty, successful one.
    """

    marketplace = Marketplace.ALIEXPRESS
    display_name = "AliExpress"

    API_BASE_URL = "https://api-sg.aliexpress.com/sync"
    API_METHOD = "aliexpress.affiliate.product.query"
    RESPONSE_KEY = "aliexpress_affiliate_product_query_response"
    MAX_PAGE_SIZE = 50

    def __init__(self, fetcher, app_key: Optional[str] = None, app_secret: Optional[str] = None, **kwargs):
        super().__init__(fetcher, **kwargs)
        self.app_key = settings.ALIEXPRESS_APP_KEY if app_key is None else app_key
        self.app_secret = settings.ALIEXPRESS_APP_SECRET if app_secret is None else app_secret

    async def scrape(self, config: ScraperConfig) -> List[ScrapedProduct]:
        if not self.app_key or not self.app_secret:
            self.logger.warning(
                "aliexpress_credentials_missing",
                message="ALIEXPRESS_APP_KEY or ALIEXPRESS_APP_SECRET not set",
            )
            return []
        return await self.search_terms(config, self._search)

    async def _search(self, term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        body = await self.fetcher.fetch_html(self.search_url(term, config))
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise ScraperError(self.marketplace.value, f"invalid API response: {e}")
        return self.parse_response(data, term, config)

    def search_url(self, term: str, config: ScraperConfig) -> str:
        """Build a signed product query URL for one search term."""
        params = {
            "app_key": self.app_key,
            "method": self.API_METHOD,
            "sign_method": "md5",
            "timestamp": utcnow().strftime("%Y-%m-%d %H:%M:%S"),
            "target_currency": "BRL",
            "target_language": "PT",
            "ship_to_country": "BR",
            "keywords": term,
            "page_no": "1",
            "page_size": str(min(config.max_products, self.MAX_PAGE_SIZE)),
            "sort": "SALE_PRICE_ASC",
        }
        if config.min_price is not None:
            params["min_sale_price"] = str(config.min_price)
        if config.max_price is not None:
            params["max_sale_price"] = str(config.max_price)

        params["sign"] = self.sign(params)
        return self.build_search_url(self.API_BASE_URL, params)

    def sign(self, params: Dict[str, Any]) -> str:
        """MD5 of secret + sorted key/value pairs + secret, uppercased."""
        payload = "".join(f"{key}{value}" for key, value in sorted(params.items()) if key != "sign")
        digest = hashlib.md5(f"{self.app_secret}{payload}{self.app_secret}".encode("utf-8"))
        return digest.hexdigest().upper()

    def parse_response(self, data: Dict[str, Any], term: str, config: ScraperConfig) -> List[ScrapedProduct]:
        """Turn an API response into products.

        Raises:
            ScraperError: If the API answered with an error code
        """
        resp_result = (data.get(self.RESPONSE_KEY) or {}).get("resp_result") or {}
        if resp_result.get("resp_code") != 200:
            raise ScraperError(
                self.marketplace.value,
                f"API error {resp_result.get('resp_code')}: {resp_result.get('resp_msg', 'Unknown error')}",
            )

        items = ((resp_result.get("result") or {}).get("products") or {}).get("product") or []
        products = []
        seen = set()
        for item in items:
            if len(products) >= config.max_products:
                break
            product_id = item.get("product_id")
            if product_id in seen:
                continue
            product = self._parse_item(item, term, config)
            if product:
                products.append(product)
                seen.add(product_id)
        return products

    def _parse_item(self, item: Dict[str, Any], term: str, config: ScraperConfig) -> Optional[ScrapedProduct]:
        title = item.get("product_title")
        url = item.get("product_detail_url")
        price = self.extract_price(str(item.get("target_sale_price") or ""))
        if not title or not url or price is None or price <= 0:
            return None

        original_price = self.extract_price(str(item.get("target_original_price") or ""))
        if original_price is not None and original_price <= price:
            original_price = None

        discount = self.calculate_discount(original_price, price)
        if discount is None and self.discount_value(item.get("discount")):
            discount = f"{self.discount_value(item.get('discount'))}% OFF"
        if not self.passes_filters(config, price, discount):
            return None

        try:
            return ScrapedProduct(
                title=title,
                price=price,
                original_price=original_price,
                discount=discount,
                image_url=item.get("product_main_image_url"),
                product_url=self.absolute_url("https://pt.aliexpress.com", url),
                marketplace=self.marketplace,
                category=item.get("second_level_category_name") or term,
                sales_count=int(item["lastest_volume"]) if item.get("lastest_volume") else None,
                metadata={"product_id": str(item.get("product_id") or "")},
            )
        except (TypeError, ValueError) as e:
            self.logger.debug("item_parse_failed", term=term, error=str(e))
            return None
