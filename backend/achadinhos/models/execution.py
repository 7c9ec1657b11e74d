"""Execution tracking for scraper runs."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from achadinhos.models.base import Base, UUIDPrimaryKeyMixin
from achadinhos.models.enums import ExecutionStatus

if TYPE_CHECKING:
    from achadinhos.models.scraper_config import ScraperConfig


class Execution(UUIDPrimaryKeyMixin, Base):
    """One concrete run of a ScraperConfig.

    Scheduler-triggered runs start as RUNNING; manual runs start as PENDING
    and are promoted by the scheduler. Only ExecutionStateMachine writes here.
    """

    __tablename__ = "scraper_executions"

    scraper_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("scraper_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(ExecutionStatus, native_enum=False, length=20),
        nullable=False,
        default=ExecutionStatus.PENDING,
        index=True,
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Creation time for PENDING runs, promotion time once RUNNING"
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the run reached SUCCESS or FAILED"
    )

    # Metrics
    products_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    products_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Error tracking
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_traceback: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Full error traceback for debugging"
    )

    __table_args__ = (
        Index("idx_executions_status_started", "status", "started_at"),
    )

    # Relationships
    scraper: Mapped["ScraperConfig"] = relationship(back_populates="executions")

    def __repr__(self) -> str:
        return f"<Execution(id={self.id}, scraper_id={self.scraper_id}, status='{self.status.value}')>"
