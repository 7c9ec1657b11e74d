"""Messaging account with a daily send quota."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from achadinhos.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class WhatsAppAccount(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """WhatsApp sender account.

    The campaign system increments sent_today; the scraper service only
    resets it once a day has passed since last_reset_at.
    """

    __tablename__ = "whatsapp_accounts"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=200)
    sent_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reset_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<WhatsAppAccount(id={self.id}, phone_number='{self.phone_number}', sent_today={self.sent_today})>"
