"""Wire the scraper core together.

The daemon, the API and the scripts all build the same object graph here so
every process shares one HttpFetcher, one recency cache and one concurrency
ceiling.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from achadinhos.db.session import async_session_factory
from achadinhos.scrapers.orchestrator import ScraperOrchestrator
from achadinhos.scrapers.register_strategies import register_all_strategies
from achadinhos.scrapers.registry import StrategyRegistry
from achadinhos.scrapers.scheduler import ScraperScheduler
from achadinhos.scrapers.utils.http_fetcher import HttpFetcher
from achadinhos.scrapers.utils.product_cache import RecentProductCache
from achadinhos.scrapers.utils.work_queue import ScrapeQueue
from achadinhos.services.account_service import AccountService
from achadinhos.services.affiliate_service import AffiliateUrlResolver
from achadinhos.services.execution_service import ExecutionStateMachine
from achadinhos.services.product_reconciler import ProductReconciler

logger = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Every long-lived collaborator of the scraper core."""

    session_factory: async_sessionmaker[AsyncSession]
    fetcher: HttpFetcher
    registry: StrategyRegistry
    cache: RecentProductCache
    affiliate_resolver: AffiliateUrlResolver
    reconciler: ProductReconciler
    state_machine: ExecutionStateMachine
    orchestrator: ScraperOrchestrator
    account_service: AccountService
    scheduler: ScraperScheduler

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling, drain in-flight runs and release the HTTP pool."""
        if self.scheduler.is_running():
            self.scheduler.stop()
        await self.orchestrator.shutdown(timeout)
        await self.fetcher.aclose()
        logger.info("runtime_closed")


def build_runtime(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    fetcher: Optional[HttpFetcher] = None,
    registry: Optional[StrategyRegistry] = None,
) -> Runtime:
    """Build the scraper core.

    Args:
        session_factory: Session factory (the configured database by default)
        fetcher: Shared HTTP fetcher (built from settings by default)
        registry: Strategy registry (all bundled strategies by default)

    Returns:
        Runtime with the scheduler built but not started
    """
    session_factory = session_factory or async_session_factory
    fetcher = fetcher or HttpFetcher()
    registry = registry or register_all_strategies(fetcher)

    cache = RecentProductCache()
    affiliate_resolver = AffiliateUrlResolver(session_factory)
    reconciler = ProductReconciler(session_factory, affiliate_resolver, cache)
    state_machine = ExecutionStateMachine(session_factory)
    orchestrator = ScraperOrchestrator(
        session_factory,
        registry,
        reconciler,
        state_machine,
        queue=ScrapeQueue(),
    )
    account_service = AccountService(session_factory)
    scheduler = ScraperScheduler(orchestrator, state_machine, account_service)

    return Runtime(
        session_factory=session_factory,
        fetcher=fetcher,
        registry=registry,
        cache=cache,
        affiliate_resolver=affiliate_resolver,
        reconciler=reconciler,
        state_machine=state_machine,
        orchestrator=orchestrator,
        account_service=account_service,
        scheduler=scheduler,
    )
