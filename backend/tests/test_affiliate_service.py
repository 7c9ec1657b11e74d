"""Tests for affiliate URL resolution."""

from urllib.parse import parse_qs, urlsplit

import pytest
import pytest_asyncio

from achadinhos.config import settings
from achadinhos.models import AffiliateConfig, Marketplace
from achadinhos.services.affiliate_service import (
    AffiliateIds,
    AffiliateUrlResolver,
    set_query_params,
)

ML_URL = "https://produto.mercadolivre.com.br/MLB-123-fone"
AMAZON_URL = "https://www.amazon.com.br/dp/B0TEST"


def query(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query, keep_blank_values=True).items()}


@pytest.fixture(autouse=True)
def no_global_ids(monkeypatch):
    """Start every test without global identifiers."""
    for name in (
        "MERCADOLIVRE_AFFILIATE_ID",
        "SHOPEE_AFFILIATE_ID",
        "AMAZON_ASSOCIATE_TAG",
        "ALIEXPRESS_AFFILIATE_ID",
    ):
        monkeypatch.setattr(settings, name, "")


@pytest_asyncio.fixture
async def affiliate_config(session_factory, user) -> AffiliateConfig:
    config = AffiliateConfig(
        user_id=user.id,
        mercadolivre_id="ML-USER",
        amazon_tag="user-20",
        shopee_id=None,
        enable_tracking=True,
        custom_utm_source="whatsapp",
        custom_utm_campaign="black-friday",
    )
    async with session_factory() as session:
        async with session.begin():
            session.add(config)
    return config


class TestSetQueryParams:
    def test_adds_params_and_keeps_fragment(self):
        url = set_query_params("https://x.com/p?color=blue#reviews", {"tag": "abc"})
        assert url == "https://x.com/p?color=blue&tag=abc#reviews"

    def test_overwrites_existing_key(self):
        url = set_query_params("https://x.com/p?tag=old&a=1", {"tag": "new"})
        assert query(url) == {"a": "1", "tag": "new"}

    def test_relative_url_unchanged(self):
        assert set_query_params("/dp/B0TEST", {"tag": "abc"}) == "/dp/B0TEST"

    def test_invalid_url_unchanged(self):
        assert set_query_params("http://[::1", {"tag": "abc"}) == "http://[::1"


class TestBuildUrl:
    def test_user_ids_with_utm(self, affiliate_resolver):
        ids = AffiliateIds(mercadolivre_id="ML-USER", enable_tracking=True, utm_source="telegram")
        url = affiliate_resolver.build_url(ML_URL, Marketplace.MERCADOLIVRE, ids)
        assert query(url) == {
            "tracking_id": "ML-USER",
            "source": "affiliate-profile",
            "utm_source": "telegram",
            "utm_medium": "affiliate",
        }

    def test_utm_requires_tracking_enabled(self, affiliate_resolver):
        ids = AffiliateIds(amazon_tag="user-20", enable_tracking=False, utm_source="telegram")
        url = affiliate_resolver.build_url(AMAZON_URL, Marketplace.AMAZON, ids)
        assert query(url) == {"tag": "user-20"}

    def test_shopee_and_aliexpress_companions(self, affiliate_resolver):
        ids = AffiliateIds(shopee_id="SH1", aliexpress_id="AE1")
        shopee = affiliate_resolver.build_url("https://shopee.com.br/item-i.1.2", Marketplace.SHOPEE, ids)
        aliexpress = affiliate_resolver.build_url(
            "https://pt.aliexpress.com/item/1.html", Marketplace.ALIEXPRESS, ids
        )
        assert query(shopee) == {"af_id": "SH1", "af_type": "cashback"}
        assert query(aliexpress) == {"aff_fcid": "AE1", "aff_platform": "promotion"}

    def test_global_fallback_without_utm(self, affiliate_resolver, monkeypatch):
        monkeypatch.setattr(settings, "AMAZON_ASSOCIATE_TAG", "global-20")
        ids = AffiliateIds(mercadolivre_id="ML-USER", enable_tracking=True, utm_source="telegram")
        url = affiliate_resolver.build_url(AMAZON_URL, Marketplace.AMAZON, ids)
        assert query(url) == {"tag": "global-20"}

    def test_no_identifier_returns_url_unchanged(self, affiliate_resolver):
        assert affiliate_resolver.build_url(ML_URL, Marketplace.MERCADOLIVRE, None) == ML_URL

    def test_idempotent(self, affiliate_resolver):
        ids = AffiliateIds(mercadolivre_id="ML-USER", enable_tracking=True, utm_source="telegram")
        once = affiliate_resolver.build_url(ML_URL, Marketplace.MERCADOLIVRE, ids)
        twice = affiliate_resolver.build_url(once, Marketplace.MERCADOLIVRE, ids)
        assert once == twice


class TestResolve:
    async def test_uses_user_config(self, affiliate_resolver, affiliate_config, user):
        url = await affiliate_resolver.resolve(ML_URL, Marketplace.MERCADOLIVRE, user.id)
        assert query(url) == {
            "tracking_id": "ML-USER",
            "source": "affiliate-profile",
            "utm_source": "whatsapp",
            "utm_medium": "affiliate",
            "utm_campaign": "black-friday",
        }

    async def test_missing_marketplace_id_falls_back_to_global(
        self, affiliate_resolver, affiliate_config, user, monkeypatch
    ):
        monkeypatch.setattr(settings, "SHOPEE_AFFILIATE_ID", "GLOBAL-SH")
        url = await affiliate_resolver.resolve("https://shopee.com.br/p", Marketplace.SHOPEE, user.id)
        assert query(url) == {"af_id": "GLOBAL-SH", "af_type": "cashback"}

    async def test_user_without_config_uses_global(self, affiliate_resolver, user, monkeypatch):
        monkeypatch.setattr(settings, "MERCADOLIVRE_AFFILIATE_ID", "GLOBAL-ML")
        url = await affiliate_resolver.resolve(ML_URL, Marketplace.MERCADOLIVRE, user.id)
        assert query(url)["tracking_id"] == "GLOBAL-ML"

    async def test_no_user_no_global(self, affiliate_resolver):
        assert await affiliate_resolver.resolve(ML_URL, Marketplace.MERCADOLIVRE, None) == ML_URL


class TestConfigCache:
    async def test_config_cached_until_ttl(self, session_factory, affiliate_config, user):
        now = [1000.0]
        resolver = AffiliateUrlResolver(session_factory, cache_ttl=60, clock=lambda: now[0])

        first = await resolver.get_config(user.id)
        assert first.mercadolivre_id == "ML-USER"

        async with session_factory() as session:
            async with session.begin():
                stored = await session.get(AffiliateConfig, affiliate_config.id)
                stored.mercadolivre_id = "ML-CHANGED"

        now[0] += 30
        assert (await resolver.get_config(user.id)).mercadolivre_id == "ML-USER"

        now[0] += 31
        assert (await resolver.get_config(user.id)).mercadolivre_id == "ML-CHANGED"

    async def test_clear_cache(self, session_factory, affiliate_config, user):
        resolver = AffiliateUrlResolver(session_factory, cache_ttl=3600)
        await resolver.get_config(user.id)

        async with session_factory() as session:
            async with session.begin():
                stored = await session.get(AffiliateConfig, affiliate_config.id)
                stored.amazon_tag = "new-20"

        resolver.clear_cache(user.id)
        assert (await resolver.get_config(user.id)).amazon_tag == "new-20"
