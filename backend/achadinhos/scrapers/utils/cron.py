"""Next-run computation for the restricted cron subset used by scraper configs.

Supported shapes (``minute hour day month weekday``, only the first two fields
are interpreted):

* ``* * * * *``       every minute
* ``*/N * * * *``     every N minutes, aligned to multiples of N
* ``M */N * * *``     minute M of every N-th hour
* ``M H1,H2,... * * *`` minute M of each listed hour
* ``M H * * *``       once a day at H:M

Anything else, including malformed input, falls back to one hour from now so
a bad expression can never stall a scraper.
"""

import math
from datetime import datetime, timedelta
from typing import List

import structlog

logger = structlog.get_logger(__name__)

FALLBACK_DELAY = timedelta(hours=1)
DEFAULT_RETRY_DELAY = timedelta(minutes=30)


class CronParseError(ValueError):
    """Raised internally when an expression is outside the supported subset."""


def _parse_int(value: str, low: int, high: int) -> int:
    if not value.isdigit():
        raise CronParseError(f"not a number: {value!r}")
    number = int(value)
    if number < low or number > high:
        raise CronParseError(f"{number} outside [{low}, {high}]")
    return number


def _parse_step(value: str, high: int) -> int:
    return _parse_int(value[2:], 1, high)


def _parse_hour_list(value: str) -> List[int]:
    hours = [_parse_int(part, 0, 23) for part in value.split(",")]
    return sorted(set(hours))


def _next_run(frequency: str, now: datetime) -> datetime:
    parts = frequency.split()
    if len(parts) != 5:
        raise CronParseError(f"expected 5 fields, got {len(parts)}")

    minute, hour = parts[0], parts[1]

    if minute == "*" and hour == "*":
        return now + timedelta(minutes=1)

    if minute.startswith("*/"):
        step = _parse_step(minute, 59)
        hour_base = now.replace(minute=0, second=0, microsecond=0)
        candidate = hour_base + timedelta(minutes=math.ceil(now.minute / step) * step)
        if candidate <= now:
            candidate += timedelta(minutes=step)
        return candidate

    if hour.startswith("*/"):
        step = _parse_step(hour, 23)
        fixed_minute = _parse_int(minute, 0, 59)
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        candidate = midnight + timedelta(
            hours=math.ceil(now.hour / step) * step, minutes=fixed_minute
        )
        if candidate <= now:
            candidate += timedelta(hours=step)
        return candidate

    if "," in hour:
        hours = _parse_hour_list(hour)
        fixed_minute = _parse_int(minute, 0, 59)
        for h in hours:
            candidate = now.replace(hour=h, minute=fixed_minute, second=0, microsecond=0)
            if candidate > now:
                return candidate
        tomorrow = now + timedelta(days=1)
        return tomorrow.replace(hour=hours[0], minute=fixed_minute, second=0, microsecond=0)

    fixed_hour = _parse_int(hour, 0, 23)
    fixed_minute = _parse_int(minute, 0, 59)
    candidate = now.replace(hour=fixed_hour, minute=fixed_minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def calculate_next_run(
    frequency: str,
    now: datetime,
    is_retry: bool = False,
    retry_delay: timedelta = DEFAULT_RETRY_DELAY,
) -> datetime:
    """Compute when a scraper should run next.

    Args:
        frequency: Cron expression from the scraper config
        now: Evaluation instant; hours and minutes are read in its timezone
        is_retry: Schedule a retry after a failed run instead of the next slot
        retry_delay: Delay used when ``is_retry`` is set

    Returns:
        The next run instant, strictly after ``now`` (or ``now + retry_delay``)
    """
    if is_retry:
        return now + retry_delay

    try:
        return _next_run(frequency or "", now)
    except (CronParseError, OverflowError, ValueError) as e:
        logger.warning("cron_expression_fallback", frequency=frequency, error=str(e))
        return now + FALLBACK_DELAY
