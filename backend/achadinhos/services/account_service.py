"""Daily send-quota reset for messaging accounts."""

from datetime import timedelta

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from achadinhos.core.time_utils import utcnow
from achadinhos.models.whatsapp_account import WhatsAppAccount

logger = structlog.get_logger(__name__)

RESET_INTERVAL = timedelta(days=1)


class AccountService:
    """Maintenance operations on WhatsApp accounts run by the scheduler."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = logger.bind(service="account_service")

    async def reset_daily_counters(self) -> int:
        """Zero ``sent_today`` on accounts last reset at least a day ago.

        Returns:
            Number of accounts reset
        """
        now = utcnow()
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(WhatsAppAccount)
                    .where(WhatsAppAccount.last_reset_at <= now - RESET_INTERVAL)
                    .values(sent_today=0, last_reset_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )

        reset = result.rowcount or 0
        self.logger.info("daily_counters_reset", accounts=reset)
        return reset
