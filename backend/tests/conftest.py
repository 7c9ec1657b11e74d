"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time; keep the test run off the real database
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_default.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio

from achadinhos.db.session import build_engine, build_session_factory
from achadinhos.db.utils import create_tables
from achadinhos.models import Marketplace, ScraperConfig, User, UserRole
from achadinhos.scrapers.registry import StrategyRegistry
from achadinhos.scrapers.utils.http_fetcher import HttpFetcher
from achadinhos.scrapers.utils.product_cache import RecentProductCache
from achadinhos.services.affiliate_service import AffiliateUrlResolver
from achadinhos.services.execution_service import ExecutionStateMachine
from achadinhos.services.product_reconciler import ProductReconciler
from factories import FakeStrategy, make_product, no_sleep


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite database, fresh for every test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def user(session_factory) -> User:
    """Create a sample user for testing."""
    user = User(email="owner@example.com", name="Owner", role=UserRole.USER)
    async with session_factory() as session:
        async with session.begin():
            session.add(user)
    return user


@pytest_asyncio.fixture
async def scraper_config(session_factory, user) -> ScraperConfig:
    """Create an active Mercado Livre config owned by ``user``."""
    config = ScraperConfig(
        name="Ofertas de fones",
        marketplace=Marketplace.MERCADOLIVRE,
        keywords=["fone bluetooth"],
        categories=[],
        max_products=50,
        frequency="0 */6 * * *",
        is_active=True,
        user_id=user.id,
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(config)
    return config


@pytest.fixture
def fake_strategy():
    return FakeStrategy(products=[make_product(1), make_product(2)])


@pytest.fixture
def registry(fake_strategy):
    registry = StrategyRegistry()
    registry.register(fake_strategy)
    return registry


@pytest.fixture
def cache():
    return RecentProductCache(max_size=100)


@pytest.fixture
def affiliate_resolver(session_factory):
    return AffiliateUrlResolver(session_factory, cache_ttl=300)


@pytest.fixture
def reconciler(session_factory, affiliate_resolver, cache):
    return ProductReconciler(session_factory, affiliate_resolver, cache)


@pytest.fixture
def state_machine(session_factory):
    return ExecutionStateMachine(session_factory)


@pytest_asyncio.fixture
async def fetcher():
    fetcher = HttpFetcher(sleep=no_sleep)
    yield fetcher
    await fetcher.aclose()
