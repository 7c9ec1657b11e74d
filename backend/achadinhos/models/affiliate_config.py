"""Per-user affiliate identifiers and UTM overrides."""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from achadinhos.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from achadinhos.models.user import User


class AffiliateConfig(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Affiliate program ids for one user. Read-only for the scraper service."""

    __tablename__ = "affiliate_configs"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Marketplace tracking identifiers
    mercadolivre_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    amazon_tag: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    shopee_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    aliexpress_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # UTM overrides
    enable_tracking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    custom_utm_source: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    custom_utm_medium: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    custom_utm_campaign: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="affiliate_config")

    def __repr__(self) -> str:
        return f"<AffiliateConfig(id={self.id}, user_id={self.user_id})>"
