"""Reconcile freshly scraped products against the products table.

New products are bulk-inserted with their affiliate URL, products whose
price changed get a PriceHistory row and an update, and unchanged products
are left alone. If the bulk path fails, every product is retried on its own.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from achadinhos.core.exceptions import UnsupportedDatabaseError
from achadinhos.core.time_utils import utcnow
from achadinhos.models.enums import Marketplace, ProductStatus
from achadinhos.models.price_history import PriceHistory
from achadinhos.models.product import Product
from achadinhos.scrapers.base import ScrapedProduct
from achadinhos.scrapers.utils.product_cache import RecentProductCache, cache_key
from achadinhos.services.affiliate_service import AffiliateIds, AffiliateUrlResolver

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


def _same_price(stored: Optional[Decimal], scraped: Decimal) -> bool:
    if stored is None:
        return False
    return Decimal(str(stored)).quantize(CENTS) == scraped.quantize(CENTS)


class ProductReconciler:
    """Persist scraped products with insert-or-skip and price tracking.

    The recency cache is written only after a successful commit and is
    consulted only by the per-product fallback.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        affiliate_resolver: AffiliateUrlResolver,
        cache: Optional[RecentProductCache] = None,
    ):
        """Initialize the reconciler.

        Args:
            session_factory: Async session factory; each save opens its own sessions
            affiliate_resolver: Resolver used for the affiliate URL of new products
            cache: Shared recency cache (a private one if omitted)
        """
        self.session_factory = session_factory
        self.affiliate_resolver = affiliate_resolver
        self.cache = cache if cache is not None else RecentProductCache()
        self.logger = logger.bind(service="product_reconciler")

    async def save(
        self,
        products: List[ScrapedProduct],
        marketplace: Marketplace,
        user_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Persist a batch of scraped products.

        Args:
            products: Products returned by a strategy (never truncated here)
            marketplace: Marketplace the products were scraped from
            user_id: Owner of the scraper config, for affiliate resolution

        Returns:
            Number of products that were genuinely new
        """
        if not products:
            return 0

        marketplace = Marketplace(marketplace)
        batch = self._collapse_duplicates(products)

        try:
            added = await self._save_bulk(batch, marketplace, user_id)
        except Exception as e:
            self.logger.warning(
                "bulk_save_failed_falling_back",
                marketplace=marketplace.value,
                products=len(batch),
                error=str(e),
                exc_info=True,
            )
            added = await self._save_individually(batch, marketplace, user_id)

        self.logger.info(
            "products_reconciled",
            marketplace=marketplace.value,
            received=len(products),
            unique=len(batch),
            added=added,
        )
        return added

    @staticmethod
    def _collapse_duplicates(products: Iterable[ScrapedProduct]) -> List[ScrapedProduct]:
        by_url: Dict[str, ScrapedProduct] = {}
        for product in products:
            by_url[product.product_url] = product
        return list(by_url.values())

    async def _save_bulk(
        self,
        batch: List[ScrapedProduct],
        marketplace: Marketplace,
        user_id: Optional[uuid.UUID],
    ) -> int:
        ids = await self.affiliate_resolver.get_config(user_id)
        now = utcnow()

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Product.id, Product.product_url, Product.price).where(
                        Product.marketplace == marketplace,
                        Product.product_url.in_([p.product_url for p in batch]),
                    )
                )
                existing = {row.product_url: (row.id, row.price) for row in result}

                new: List[ScrapedProduct] = []
                changed: List[Tuple[uuid.UUID, ScrapedProduct]] = []
                for product in batch:
                    match = existing.get(product.product_url)
                    if match is None:
                        new.append(product)
                    elif not _same_price(match[1], product.price):
                        changed.append((match[0], product))

                added = 0
                if new:
                    rows = [self._column_row(self._new_row(p, marketplace, ids, now)) for p in new]
                    table = Product.__table__
                    stmt = (
                        self._insert_for(session)(table)
                        .values(rows)
                        .on_conflict_do_nothing(index_elements=["marketplace", "product_url"])
                        .returning(table.c.id)
                    )
                    added = len((await session.execute(stmt)).all())

                for product_id, product in changed:
                    session.add(self._history_row(product_id, product, now))
                    await session.execute(
                        update(Product)
                        .where(Product.id == product_id)
                        .values(
                            price=product.price,
                            original_price=product.original_price,
                            discount=product.discount,
                            scraped_at=product.scraped_at,
                            updated_at=now,
                        )
                    )

        self._remember(batch, marketplace)
        self.logger.debug(
            "bulk_save_committed",
            marketplace=marketplace.value,
            new=len(new),
            inserted=added,
            changed=len(changed),
            unchanged=len(batch) - len(new) - len(changed),
        )
        return added

    async def _save_individually(
        self,
        batch: List[ScrapedProduct],
        marketplace: Marketplace,
        user_id: Optional[uuid.UUID],
    ) -> int:
        try:
            ids = await self.affiliate_resolver.get_config(user_id)
        except Exception as e:
            self.logger.warning("affiliate_config_unavailable", user_id=str(user_id), error=str(e))
            ids = None

        added = 0
        for product in batch:
            key = cache_key(marketplace, product.product_url)
            if self.cache.is_unchanged(key, product.price):
                continue
            try:
                inserted = await self._save_one(product, marketplace, ids)
            except Exception as e:
                self.logger.error(
                    "product_save_failed",
                    marketplace=marketplace.value,
                    product_url=product.product_url,
                    error=str(e),
                )
                continue

            self.cache.put(key, product.price)
            if inserted:
                added += 1
        return added

    async def _save_one(
        self,
        product: ScrapedProduct,
        marketplace: Marketplace,
        ids: Optional[AffiliateIds],
    ) -> bool:
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Product).where(
                        Product.marketplace == marketplace,
                        Product.product_url == product.product_url,
                    )
                )
                existing = result.scalar_one_or_none()

                if existing is None:
                    session.add(Product(**self._new_row(product, marketplace, ids, now)))
                    return True

                if not _same_price(existing.price, product.price):
                    session.add(self._history_row(existing.id, product, now))
                    existing.price = product.price
                    existing.original_price = product.original_price
                    existing.discount = product.discount
                    existing.scraped_at = product.scraped_at
        return False

    def _new_row(
        self,
        product: ScrapedProduct,
        marketplace: Marketplace,
        ids: Optional[AffiliateIds],
        now: datetime,
    ) -> dict:
        return {
            "id": uuid.uuid4(),
            "title": product.title,
            "price": product.price,
            "original_price": product.original_price,
            "discount": product.discount,
            "image_url": product.image_url,
            "product_url": product.product_url,
            "affiliate_url": self.affiliate_resolver.build_url(product.product_url, marketplace, ids),
            "marketplace": marketplace,
            "category": product.category,
            "status": ProductStatus.PENDING,
            "ratings": product.ratings,
            "review_count": product.review_count,
            "sales_count": product.sales_count,
            "scraped_at": product.scraped_at,
            "metadata_": dict(product.metadata or {}),
            "created_at": now,
            "updated_at": now,
        }

    @staticmethod
    def _column_row(row: dict) -> dict:
        # Core inserts address columns by name; the ORM attribute is metadata_
        row = dict(row)
        row["metadata"] = row.pop("metadata_")
        return row

    @staticmethod
    def _history_row(product_id: uuid.UUID, product: ScrapedProduct, now: datetime) -> PriceHistory:
        return PriceHistory(
            product_id=product_id,
            price=product.price,
            original_price=product.original_price,
            discount=product.discount,
            recorded_at=now,
        )

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert
        if dialect == "sqlite":
            return sqlite_insert
        raise UnsupportedDatabaseError(dialect, "insert-or-skip")

    def _remember(self, batch: List[ScrapedProduct], marketplace: Marketplace) -> None:
        for product in batch:
            self.cache.put(cache_key(marketplace, product.product_url), product.price)
