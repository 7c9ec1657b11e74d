"""Fail executions stuck in PENDING or RUNNING past the staleness threshold.

Same transition the scheduler's reaper performs every 10 minutes; useful
after a crash when the daemon is not running.

Usage:
    python scripts/cleanup_stuck_executions.py
    python scripts/cleanup_stuck_executions.py --minutes 60
"""

import argparse
import asyncio
from datetime import timedelta

from achadinhos.config import settings
from achadinhos.core.logging import configure_logging
from achadinhos.db.session import async_session_factory, engine
from achadinhos.services.execution_service import ExecutionStateMachine


async def cleanup(minutes: int) -> int:
    state_machine = ExecutionStateMachine(async_session_factory)
    try:
        reaped = await state_machine.reap_stale(timedelta(minutes=minutes))
    finally:
        await engine.dispose()

    print(f"\n{'='*60}")
    print(f"  Stuck Execution Cleanup")
    print(f"{'='*60}")
    print(f"  Threshold: {minutes} minutes")
    print(f"  ✅ Marked as FAILED: {reaped}\n")
    return reaped


def main():
    parser = argparse.ArgumentParser(description="Fail stuck scraper executions")
    parser.add_argument(
        "--minutes",
        type=int,
        default=settings.STALE_EXECUTION_MINUTES,
        help=f"Age after which an execution is stuck (default: {settings.STALE_EXECUTION_MINUTES})",
    )
    args = parser.parse_args()

    configure_logging()
    asyncio.run(cleanup(args.minutes))


if __name__ == "__main__":
    main()
