"""Scraper daemon: ``python -m achadinhos``.

Starts the scheduler and runs until SIGINT or SIGTERM, then drains in-flight
executions before exiting.
"""

import asyncio
import signal

import structlog

from achadinhos.bootstrap import build_runtime
from achadinhos.config import settings
from achadinhos.core.logging import configure_logging
from achadinhos.db.session import engine
from achadinhos.db.utils import create_tables

logger = structlog.get_logger(__name__)


async def run_daemon() -> None:
    await create_tables(engine)

    runtime = build_runtime()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    runtime.scheduler.start()
    logger.info(
        "scraper_service_started",
        environment=settings.ENVIRONMENT,
        strategies=[m.value for m in runtime.registry.get_registered_marketplaces()],
        jobs=runtime.scheduler.get_jobs_status(),
    )

    try:
        await stop_event.wait()
    finally:
        logger.info("scraper_service_stopping")
        await runtime.aclose(settings.SHUTDOWN_GRACE_SECONDS)
        await engine.dispose()
        logger.info("scraper_service_stopped")


def main() -> None:
    configure_logging()
    asyncio.run(run_daemon())


if __name__ == "__main__":
    main()
