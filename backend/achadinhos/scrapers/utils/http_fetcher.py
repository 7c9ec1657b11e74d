"""Pooled HTTP client shared by every scraper strategy.

One HttpFetcher is built at startup and injected into the strategies. It owns
the connection pool, rotates user agents, retries transient failures with
exponential backoff and honours ``Retry-After`` on 429 responses.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import RetryCallState

from achadinhos.config import settings
from achadinhos.core.exceptions import (
    ClientHTTPError,
    FetchError,
    NetworkError,
    RateLimitedError,
    ServerHTTPError,
)
from achadinhos.scrapers.utils.retry import fetch_retrying
from achadinhos.scrapers.utils.user_agents import get_random_user_agent


logger = structlog.get_logger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class _RetryAfter(Exception):
    """Internal signal for a 429 response; handled outside the retry budget."""

    def __init__(self, delay: float):
        self.delay = delay
        super().__init__(f"retry after {delay}s")


class HttpFetcher:
    """Fetch pages over a keep-alive connection pool.

    Retry rules:
        - 5xx and transport errors: retried ``max_retries`` times with waits of
          ``base_delay * 2 ** (n - 1)``; a fresh user agent on every retry
          unless the caller pinned one.
        - 429: wait ``Retry-After`` seconds (or the default) and ask again.
          These waits do not consume the retry budget.
        - other 4xx: raised immediately as ClientHTTPError.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        max_connections: Optional[int] = None,
        max_keepalive_connections: Optional[int] = None,
        rate_limit_default_delay: Optional[float] = None,
        max_rate_limit_waits: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the fetcher.

        Args:
            max_retries: Retries after the first attempt for transient errors
            base_delay: Backoff base in seconds
            timeout: Per-attempt timeout in seconds
            max_redirects: Redirects followed before giving up
            max_connections: Pool size
            max_keepalive_connections: Idle connections kept open
            rate_limit_default_delay: Wait used when a 429 has no Retry-After
            max_rate_limit_waits: Raise RateLimitedError after this many 429
                waits on one URL (None waits indefinitely)
            transport: Custom httpx transport (tests use httpx.MockTransport)
            sleep: Awaitable sleep used for every wait (tests inject a fake)
        """
        self.max_retries = settings.HTTP_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.HTTP_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self.rate_limit_default_delay = (
            settings.HTTP_RATE_LIMIT_DEFAULT_DELAY_SECONDS
            if rate_limit_default_delay is None
            else rate_limit_default_delay
        )
        self.max_rate_limit_waits = (
            settings.HTTP_MAX_RATE_LIMIT_WAITS
            if max_rate_limit_waits is None
            else max_rate_limit_waits
        )
        self._sleep = sleep or asyncio.sleep

        # Observable counter of 429 waits across all calls
        self.rate_limit_waits = 0

        client_kwargs = {
            "timeout": httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout),
            "follow_redirects": True,
            "max_redirects": settings.HTTP_MAX_REDIRECTS if max_redirects is None else max_redirects,
            "limits": httpx.Limits(
                max_connections=max_connections or settings.HTTP_MAX_CONNECTIONS,
                max_keepalive_connections=(
                    max_keepalive_connections or settings.HTTP_MAX_KEEPALIVE_CONNECTIONS
                ),
            ),
        }
        if transport is not None:
            client_kwargs["transport"] = transport

        self._client = httpx.AsyncClient(**client_kwargs)

    async def __aenter__(self) -> "HttpFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the connection pool."""
        await self._client.aclose()

    async def fetch_html(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        """Fetch a URL and return the decoded body.

        Args:
            url: Absolute URL to fetch
            headers: Extra headers; a caller-supplied User-Agent is kept as is

        Returns:
            Response body as text

        Raises:
            ClientHTTPError: 4xx other than 429
            ServerHTTPError: 5xx after retries are exhausted
            NetworkError: Transport failure after retries are exhausted
            RateLimitedError: More 429 waits than max_rate_limit_waits allows
            FetchError: Other non-retryable request errors (e.g. redirect loops)
        """
        waits = 0
        while True:
            try:
                return await self._fetch_with_retries(url, headers)
            except _RetryAfter as signal:
                if self.max_rate_limit_waits is not None and waits >= self.max_rate_limit_waits:
                    logger.warning("rate_limit_exhausted", url=url, waits=waits)
                    raise RateLimitedError(url, waits) from None

                waits += 1
                self.rate_limit_waits += 1
                logger.warning(
                    "rate_limited",
                    url=url,
                    wait_seconds=signal.delay,
                    waits=waits,
                )
                await self._sleep(signal.delay)

    async def _fetch_with_retries(self, url: str, headers: Optional[Dict[str, str]]) -> str:
        caller_headers = dict(headers or {})
        pinned_user_agent = any(key.lower() == "user-agent" for key in caller_headers)

        request_headers = dict(DEFAULT_HEADERS)
        if not pinned_user_agent:
            request_headers["User-Agent"] = get_random_user_agent()
        request_headers.update(caller_headers)

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            if not pinned_user_agent:
                request_headers["User-Agent"] = get_random_user_agent(
                    exclude=request_headers.get("User-Agent")
                )
            logger.warning(
                "fetch_retry_scheduled",
                url=url,
                attempt=retry_state.attempt_number,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(exc) if exc else None,
            )

        body = ""
        async for attempt in fetch_retrying(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            sleep=self._sleep,
            before_sleep=before_sleep,
        ):
            with attempt:
                body = await self._request_once(url, request_headers)
        return body

    async def _request_once(self, url: str, headers: Dict[str, str]) -> str:
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.TooManyRedirects as e:
            raise FetchError(url, f"Too many redirects fetching {url}: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(url, str(e) or type(e).__name__) from e
        except httpx.RequestError as e:
            raise FetchError(url, f"Request failed for {url}: {e}") from e

        status = response.status_code
        if status == 429:
            raise _RetryAfter(self._retry_after_delay(response))
        if 400 <= status < 500:
            raise ClientHTTPError(url, status, response.reason_phrase)
        if status >= 500:
            raise ServerHTTPError(url, status, response.reason_phrase)

        logger.debug("page_fetched", url=url, status=status, size=len(response.content))
        return response.text

    def _retry_after_delay(self, response: httpx.Response) -> float:
        value = response.headers.get("Retry-After")
        if value is None:
            return self.rate_limit_default_delay
        try:
            delay = float(value)
        except ValueError:
            # HTTP-date form is not worth parsing for scraping targets
            return self.rate_limit_default_delay
        return delay if delay >= 0 else self.rate_limit_default_delay
