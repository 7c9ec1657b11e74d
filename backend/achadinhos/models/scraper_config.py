"""Scraper configuration: what to search on which marketplace, and how often."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from achadinhos.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from achadinhos.models.enums import Marketplace

if TYPE_CHECKING:
    from achadinhos.models.execution import Execution
    from achadinhos.models.user import User


class ScraperConfig(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user-defined scraper.

    Created from the dashboard; the orchestrator only ever writes
    last_run and next_run after each execution.
    """

    __tablename__ = "scraper_configs"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    marketplace: Mapped[Marketplace] = mapped_column(
        Enum(Marketplace, native_enum=False, length=20),
        nullable=False,
        index=True,
    )

    # Search definition
    keywords: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    categories: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    min_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    max_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    min_discount: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Minimum discount percentage (0-100)"
    )
    max_products: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    proxy_rotation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Scheduling
    frequency: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="0 * * * *",
        comment="5-field cron expression (restricted subset)"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Ownership
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Strategy-specific extras (selectors overrides, regions, ...)
    metadata_: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        Index("idx_scraper_configs_due", "is_active", "next_run"),
    )

    # Relationships
    user: Mapped[Optional["User"]] = relationship(back_populates="scraper_configs")
    executions: Mapped[List["Execution"]] = relationship(
        back_populates="scraper", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ScraperConfig(id={self.id}, name='{self.name}', marketplace={self.marketplace.value})>"
