"""Retry policy with exponential backoff for page fetches."""

from typing import Awaitable, Callable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from achadinhos.core.exceptions import NetworkError, ServerHTTPError


logger = structlog.get_logger(__name__)

# Only transient failures are retried; 4xx responses and 429 waits are not
RETRYABLE_ERRORS = (ServerHTTPError, NetworkError)


def fetch_retrying(
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    before_sleep: Optional[Callable[[RetryCallState], None]] = None,
) -> AsyncRetrying:
    """Build the retry controller used around a single URL fetch.

    The wait before retry ``n`` is ``base_delay * 2 ** (n - 1)``, so the
    defaults give 1 s, 2 s and 4 s.

    Args:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, in seconds
        sleep: Awaitable sleep, injectable for tests
        before_sleep: Hook called before each wait

    Returns:
        Configured tenacity AsyncRetrying
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0, max=60),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep or _log_before_sleep,
        reraise=True,
        **kwargs,
    )


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "fetch_retry_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )
