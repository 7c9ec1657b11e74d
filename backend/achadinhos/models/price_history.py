"""Price history tracking for products."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from achadinhos.models.base import Base, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from achadinhos.models.product import Product


class PriceHistory(UUIDPrimaryKeyMixin, Base):
    """Snapshot written each time a re-scraped product changes price. Append-only."""

    __tablename__ = "price_history"

    product_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="Price at this point in time")
    original_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    discount: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_price_history_product_recorded", "product_id", "recorded_at"),
    )

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="price_history")

    def __repr__(self) -> str:
        return f"<PriceHistory(id={self.id}, product_id={self.product_id}, price={self.price}, recorded_at={self.recorded_at})>"
