"""Seed example scraper configs (and an admin user to own them)."""

import asyncio

from sqlalchemy import select

from achadinhos.core.logging import configure_logging
from achadinhos.db.session import async_session_factory, engine
from achadinhos.db.utils import create_tables
from achadinhos.models import Marketplace, ScraperConfig, User, UserRole

ADMIN_EMAIL = "admin@achadinhos.local"

SCRAPERS = [
    {
        "name": "Mercado Livre - Eletrônicos",
        "marketplace": Marketplace.MERCADOLIVRE,
        "keywords": ["fone bluetooth", "smartwatch", "carregador portátil"],
        "categories": ["eletronicos"],
        "min_discount": 30,
        "max_products": 50,
        "frequency": "0 */6 * * *",
    },
    {
        "name": "Amazon - Casa e Cozinha",
        "marketplace": Marketplace.AMAZON,
        "keywords": ["air fryer", "cafeteira", "aspirador robô"],
        "categories": [],
        "min_discount": 20,
        "max_products": 30,
        "frequency": "0 8,20 * * *",
    },
    {
        "name": "Shopee - Beleza",
        "marketplace": Marketplace.SHOPEE,
        "keywords": ["kit skincare", "secador de cabelo"],
        "categories": [],
        "min_discount": None,
        "max_products": 30,
        "frequency": "30 10 * * *",
    },
]


async def seed_scrapers():
    """Insert the example configs, skipping names that already exist."""
    await create_tables(engine)

    print(f"\n{'='*60}")
    print(f"  Seeding Scraper Configs")
    print(f"{'='*60}\n")

    added_count = 0
    skipped_count = 0

    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.email == ADMIN_EMAIL))
        admin = result.scalar_one_or_none()
        if admin is None:
            admin = User(email=ADMIN_EMAIL, name="Admin", role=UserRole.ADMIN, is_active=True)
            session.add(admin)
            await session.flush()
            print(f"  ✅ Added admin user: {ADMIN_EMAIL}")

        for scraper_data in SCRAPERS:
            result = await session.execute(
                select(ScraperConfig).where(ScraperConfig.name == scraper_data["name"])
            )
            if result.scalar_one_or_none():
                print(f"  ⏭️  Scraper '{scraper_data['name']}' already exists, skipping")
                skipped_count += 1
                continue

            session.add(ScraperConfig(user_id=admin.id, is_active=True, **scraper_data))
            print(f"  ✅ Added scraper: {scraper_data['name']} ({scraper_data['frequency']})")
            added_count += 1

        await session.commit()

    await engine.dispose()

    print(f"\n{'='*60}")
    print(f"  Seeding Complete")
    print(f"{'='*60}")
    print(f"  ✅ Added: {added_count} scrapers")
    print(f"  ⏭️  Skipped: {skipped_count} scrapers (already exist)\n")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(seed_scrapers())
