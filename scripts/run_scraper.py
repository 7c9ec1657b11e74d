"""Run a scraper config now, or queue it for the scheduler.

Usage:
    python scripts/run_scraper.py <scraper-id>
    python scripts/run_scraper.py <scraper-id> --enqueue
    python scripts/run_scraper.py --list
"""

import argparse
import asyncio
import uuid

from sqlalchemy import select

from achadinhos.bootstrap import build_runtime
from achadinhos.core.exceptions import NotFoundError
from achadinhos.core.logging import configure_logging
from achadinhos.db.session import async_session_factory, engine
from achadinhos.db.utils import create_tables
from achadinhos.models.scraper_config import ScraperConfig


async def list_configs() -> None:
    """Print every scraper config with its schedule."""
    async with async_session_factory() as session:
        result = await session.execute(select(ScraperConfig).order_by(ScraperConfig.name))
        configs = result.scalars().all()

    if not configs:
        print("\n⚠️  No scraper configs found. Run scripts/seed_scrapers.py first.\n")
        return

    print(f"\n{'='*70}")
    print(f"  Scraper Configs")
    print(f"{'='*70}")
    for config in configs:
        state = "active" if config.is_active else "inactive"
        print(f"  {config.id}  {config.marketplace.value:<13} {config.frequency:<14} {state:<8} {config.name}")
        print(f"      last run: {config.last_run or '-'}  next run: {config.next_run or '-'}")
    print()


async def run(scraper_id: uuid.UUID, enqueue: bool) -> int:
    """Run or enqueue one config.

    Args:
        scraper_id: ScraperConfig id
        enqueue: Only create a PENDING execution for the scheduler to pick up

    Returns:
        Process exit code
    """
    await create_tables(engine)
    runtime = build_runtime()

    try:
        if enqueue:
            execution = await runtime.orchestrator.enqueue_run(scraper_id)
            print(f"\n✅ Queued execution {execution.id} (PENDING)\n")
            return 0

        config = await runtime.orchestrator.load_config(scraper_id)
        print(f"\n🔍 Running '{config.name}' on {config.marketplace.value}...\n")
        result = await runtime.orchestrator.run_scraper(config)

        if result is None:
            print("⏭️  Run skipped\n")
            return 1

        print(f"{'='*70}")
        print(f"  Execution {result.execution_id}: {result.status.value}")
        print(f"{'='*70}")
        print(f"  Products found: {result.products_found}")
        print(f"  Products added: {result.products_added}")
        print(f"  Next run:       {result.next_run.isoformat() if result.next_run else '-'}")
        if result.error:
            print(f"  ❌ Error: {result.error}")
        print()
        return 0 if result.error is None else 1

    except NotFoundError as e:
        print(f"\n❌ {e.message}\n")
        return 1

    finally:
        await runtime.aclose()
        await engine.dispose()


def main():
    """Parse arguments and run the scraper."""
    parser = argparse.ArgumentParser(
        description="Run or enqueue a scraper config",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_scraper.py 3f1c...   run immediately in this process
  python scripts/run_scraper.py 3f1c... --enqueue   queue for the scheduler
  python scripts/run_scraper.py --list
        """,
    )
    parser.add_argument("scraper_id", nargs="?", type=uuid.UUID, help="ScraperConfig id")
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Create a PENDING execution instead of running now",
    )
    parser.add_argument("--list", action="store_true", help="List scraper configs and exit")

    args = parser.parse_args()
    configure_logging()

    if args.list:
        asyncio.run(list_configs())
        return
    if args.scraper_id is None:
        parser.error("scraper_id is required unless --list is given")

    raise SystemExit(asyncio.run(run(args.scraper_id, args.enqueue)))


if __name__ == "__main__":
    main()
