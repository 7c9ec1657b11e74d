"""Product model representing discounted items found on marketplaces."""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, Enum, Float, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from achadinhos.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from achadinhos.models.enums import Marketplace, ProductStatus

if TYPE_CHECKING:
    from achadinhos.models.price_history import PriceHistory


class Product(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Product scraped from a marketplace.

    Each product is uniquely identified by the (marketplace, product_url) pair.
    """

    __tablename__ = "products"

    title: Mapped[str] = mapped_column(String(500), nullable=False)

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="Current price")
    original_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Price before discount"
    )
    discount: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Free text as shown by the marketplace, e.g. '25% OFF'"
    )

    # Media and links
    image_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    product_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    affiliate_url: Mapped[Optional[str]] = mapped_column(String(2500), nullable=True)

    marketplace: Mapped[Marketplace] = mapped_column(
        Enum(Marketplace, native_enum=False, length=20),
        nullable=False,
    )
    category: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    status: Mapped[ProductStatus] = mapped_column(
        Enum(ProductStatus, native_enum=False, length=20),
        nullable=False,
        default=ProductStatus.PENDING,
    )

    # Social proof
    ratings: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    review_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sales_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    scraped_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    metadata_: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        UniqueConstraint("marketplace", "product_url", name="uq_product_marketplace_url"),
        Index("idx_products_status_scraped", "status", "scraped_at"),
    )

    # Relationships
    price_history: Mapped[list["PriceHistory"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="PriceHistory.recorded_at.desc()"
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, title='{self.title[:50]}...', marketplace={self.marketplace.value})>"
