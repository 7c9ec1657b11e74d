"""Marketplace scraping strategies."""

from achadinhos.scrapers.adapters.aliexpress import AliExpressStrategy
from achadinhos.scrapers.adapters.amazon import AmazonStrategy
from achadinhos.scrapers.adapters.mercadolivre import MercadoLivreStrategy
from achadinhos.scrapers.adapters.shopee import ShopeeStrategy

__all__ = [
    "AliExpressStrategy",
    "AmazonStrategy",
    "MercadoLivreStrategy",
    "ShopeeStrategy",
]
