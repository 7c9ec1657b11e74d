"""Registry mapping each marketplace to its scraping strategy."""

from typing import Dict, List, Optional

import structlog

from achadinhos.core.exceptions import StrategyNotRegisteredError
from achadinhos.models.enums import Marketplace
from achadinhos.scrapers.base import BaseScraperStrategy


logger = structlog.get_logger(__name__)


class StrategyRegistry:
    """Holds one strategy instance per marketplace.

    Strategies are built once with the shared HttpFetcher and reused by every
    run, so they must not keep per-run state on the instance.
    """

    def __init__(self):
        self._strategies: Dict[Marketplace, BaseScraperStrategy] = {}

    def register(self, strategy: BaseScraperStrategy) -> None:
        """Register a strategy for its marketplace, replacing any previous one.

        Args:
            strategy: Strategy instance (must inherit from BaseScraperStrategy)
        """
        if not isinstance(strategy, BaseScraperStrategy):
            raise ValueError(f"Strategy must inherit from BaseScraperStrategy: {strategy!r}")

        self._strategies[strategy.marketplace] = strategy
        logger.info(
            "strategy_registered",
            marketplace=strategy.marketplace.value,
            strategy=type(strategy).__name__,
        )

    def get(self, marketplace: Marketplace) -> BaseScraperStrategy:
        """Look up the strategy for a marketplace.

        Raises:
            StrategyNotRegisteredError: If no strategy handles the marketplace
        """
        strategy = self.find(marketplace)
        if strategy is None:
            raise StrategyNotRegisteredError(Marketplace(marketplace).value)
        return strategy

    def find(self, marketplace: Marketplace) -> Optional[BaseScraperStrategy]:
        return self._strategies.get(Marketplace(marketplace))

    def has_strategy(self, marketplace: Marketplace) -> bool:
        return Marketplace(marketplace) in self._strategies

    def get_registered_marketplaces(self) -> List[Marketplace]:
        return list(self._strategies.keys())
