"""User model: owner of scraper configs and affiliate settings."""

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from achadinhos.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from achadinhos.models.enums import UserRole

if TYPE_CHECKING:
    from achadinhos.models.affiliate_config import AffiliateConfig
    from achadinhos.models.scraper_config import ScraperConfig


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Dashboard user. Authentication lives in the API service."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False, index=True,
        comment="User email address (unique)"
    )
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=20),
        nullable=False,
        default=UserRole.USER,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
        comment="Whether user account is active"
    )

    # Relationships
    affiliate_config: Mapped[Optional["AffiliateConfig"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )
    scraper_configs: Mapped[List["ScraperConfig"]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"
