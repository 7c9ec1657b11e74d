"""Affiliate link generation.

Rewrites product URLs with the marketplace-specific tracking parameters of a
user's AffiliateConfig, or of the global identifiers from settings when the
user has none.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from achadinhos.config import settings
from achadinhos.models.affiliate_config import AffiliateConfig
from achadinhos.models.enums import Marketplace

logger = structlog.get_logger(__name__)


# Marketplace -> (tracking parameter, fixed companion parameters)
TRACKING_PARAMS: Dict[Marketplace, Tuple[str, Dict[str, str]]] = {
    Marketplace.MERCADOLIVRE: ("tracking_id", {"source": "affiliate-profile"}),
    Marketplace.AMAZON: ("tag", {}),
    Marketplace.SHOPEE: ("af_id", {"af_type": "cashback"}),
    Marketplace.ALIEXPRESS: ("aff_fcid", {"aff_platform": "promotion"}),
}

DEFAULT_UTM_MEDIUM = "affiliate"


@dataclass(frozen=True)
class AffiliateIds:
    """Detached snapshot of one user's AffiliateConfig."""

    mercadolivre_id: Optional[str] = None
    amazon_tag: Optional[str] = None
    shopee_id: Optional[str] = None
    aliexpress_id: Optional[str] = None
    enable_tracking: bool = False
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None

    @classmethod
    def from_model(cls, config: AffiliateConfig) -> "AffiliateIds":
        return cls(
            mercadolivre_id=config.mercadolivre_id,
            amazon_tag=config.amazon_tag,
            shopee_id=config.shopee_id,
            aliexpress_id=config.aliexpress_id,
            enable_tracking=config.enable_tracking,
            utm_source=config.custom_utm_source,
            utm_medium=config.custom_utm_medium,
            utm_campaign=config.custom_utm_campaign,
        )

    def identifier_for(self, marketplace: Marketplace) -> Optional[str]:
        return {
            Marketplace.MERCADOLIVRE: self.mercadolivre_id,
            Marketplace.AMAZON: self.amazon_tag,
            Marketplace.SHOPEE: self.shopee_id,
            Marketplace.ALIEXPRESS: self.aliexpress_id,
        }.get(marketplace) or None

    def utm_params(self) -> Dict[str, str]:
        if not (self.enable_tracking and self.utm_source):
            return {}
        params = {
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium or DEFAULT_UTM_MEDIUM,
        }
        if self.utm_campaign:
            params["utm_campaign"] = self.utm_campaign
        return params


def global_identifier(marketplace: Marketplace) -> Optional[str]:
    """Fallback identifier from settings for a marketplace."""
    return {
        Marketplace.MERCADOLIVRE: settings.MERCADOLIVRE_AFFILIATE_ID,
        Marketplace.AMAZON: settings.AMAZON_ASSOCIATE_TAG,
        Marketplace.SHOPEE: settings.SHOPEE_AFFILIATE_ID,
        Marketplace.ALIEXPRESS: settings.ALIEXPRESS_AFFILIATE_ID,
    }.get(marketplace) or None


def set_query_params(url: str, params: Dict[str, str]) -> str:
    """Overwrite query parameters by key, keeping every other part of the URL.

    Args:
        url: Absolute URL
        params: Parameters to set (existing values with the same key are dropped)

    Returns:
        Rewritten URL, or ``url`` unchanged if it cannot be parsed
    """
    if not params:
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url

    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AffiliateUrlResolver:
    """Resolve tracked product URLs.

    Affiliate configs are read through a small TTL cache keyed by user id.
    Nothing is ever written.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the resolver.

        Args:
            session_factory: Async session factory for AffiliateConfig lookups
            cache_ttl: Seconds a looked-up config stays cached
            clock: Monotonic clock (injectable for tests)
        """
        self.session_factory = session_factory
        self.cache_ttl = settings.AFFILIATE_CONFIG_CACHE_SECONDS if cache_ttl is None else cache_ttl
        self._clock = clock
        self._cache: Dict[uuid.UUID, Tuple[float, Optional[AffiliateIds]]] = {}
        self.logger = logger.bind(service="affiliate_service")

    async def get_config(self, user_id: Optional[uuid.UUID]) -> Optional[AffiliateIds]:
        """Load a user's affiliate ids, cached for ``cache_ttl`` seconds.

        Returns:
            AffiliateIds, or None if the user has no AffiliateConfig
        """
        if user_id is None:
            return None

        cached = self._cache.get(user_id)
        now = self._clock()
        if cached and now - cached[0] < self.cache_ttl:
            return cached[1]

        async with self.session_factory() as session:
            result = await session.execute(
                select(AffiliateConfig).where(AffiliateConfig.user_id == user_id)
            )
            config = result.scalar_one_or_none()

        ids = AffiliateIds.from_model(config) if config else None
        self._cache[user_id] = (now, ids)
        return ids

    def clear_cache(self, user_id: Optional[uuid.UUID] = None) -> None:
        """Forget cached configs for one user, or for everyone."""
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)

    def build_url(
        self,
        product_url: str,
        marketplace: Marketplace,
        ids: Optional[AffiliateIds] = None,
    ) -> str:
        """Apply user ids (falling back to global ids) to a product URL.

        Args:
            product_url: Raw product URL
            marketplace: Marketplace of the product
            ids: The user's affiliate ids, if any

        Returns:
            Tracked URL, or ``product_url`` unchanged when no identifier applies
        """
        marketplace = Marketplace(marketplace)
        tracking = TRACKING_PARAMS.get(marketplace)
        if tracking is None:
            return product_url
        param_name, companions = tracking

        params: Dict[str, str] = {}
        identifier = ids.identifier_for(marketplace) if ids else None
        if identifier:
            params = {param_name: identifier, **companions, **ids.utm_params()}
        else:
            identifier = global_identifier(marketplace)
            if identifier:
                params = {param_name: identifier, **companions}

        if not params:
            self.logger.debug("no_affiliate_id", marketplace=marketplace.value)
            return product_url

        return set_query_params(product_url, params)

    async def resolve(
        self,
        product_url: str,
        marketplace: Marketplace,
        user_id: Optional[uuid.UUID] = None,
    ) -> str:
        """Resolve the tracked URL for a product.

        Args:
            product_url: Raw product URL
            marketplace: Marketplace of the product
            user_id: Owner whose AffiliateConfig should be used

        Returns:
            Tracked URL (idempotent: resolving the result again is a no-op)
        """
        ids = await self.get_config(user_id)
        return self.build_url(product_url, marketplace, ids)
