"""Build the strategy registry with every bundled marketplace strategy.

Called once at startup by the daemon, the API and the scripts.
"""

from typing import Optional

import structlog

from achadinhos.scrapers.adapters import (
    AliExpressStrategy,
    AmazonStrategy,
    MercadoLivreStrategy,
    ShopeeStrategy,
)
from achadinhos.scrapers.registry import StrategyRegistry
from achadinhos.scrapers.utils.http_fetcher import HttpFetcher

logger = structlog.get_logger(__name__)

STRATEGY_CLASSES = [
    MercadoLivreStrategy,
    AmazonStrategy,
    ShopeeStrategy,
    AliExpressStrategy,
]


def register_all_strategies(fetcher: HttpFetcher, registry: Optional[StrategyRegistry] = None) -> StrategyRegistry:
    """Instantiate and register every bundled strategy.

    Args:
        fetcher: Shared HTTP fetcher injected into each strategy
        registry: Registry to fill (a new one if omitted)

    Returns:
        The populated registry
    """
    registry = registry or StrategyRegistry()

    for strategy_class in STRATEGY_CLASSES:
        try:
            registry.register(strategy_class(fetcher))
        except Exception as e:
            logger.error(
                "strategy_registration_failed",
                strategy=strategy_class.__name__,
                error=str(e),
                exc_info=True,
            )

    logger.info(
        "strategy_registration_complete",
        registered=[m.value for m in registry.get_registered_marketplaces()],
    )
    return registry
