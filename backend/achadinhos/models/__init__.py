"""SQLAlchemy models for the scraper service.

All models are imported here so create_all (and Alembic) can discover them.
"""

from achadinhos.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from achadinhos.models.enums import ExecutionStatus, Marketplace, ProductStatus, UserRole
from achadinhos.models.user import User
from achadinhos.models.affiliate_config import AffiliateConfig
from achadinhos.models.scraper_config import ScraperConfig
from achadinhos.models.execution import Execution
from achadinhos.models.product import Product
from achadinhos.models.price_history import PriceHistory
from achadinhos.models.whatsapp_account import WhatsAppAccount

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "ExecutionStatus",
    "Marketplace",
    "ProductStatus",
    "UserRole",
    "User",
    "AffiliateConfig",
    "ScraperConfig",
    "Execution",
    "Product",
    "PriceHistory",
    "WhatsAppAccount",
]
