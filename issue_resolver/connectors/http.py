"""
HTTP client for AI vendor APIs.

Vendor APIs are rate limited and occasionally unavailable. The transport
defined here retries such responses before they reach the connector
pipeline, independently of the pipeline's own retry policy.
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional

import httpx

from .base import VendorAdapter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_TIMEOUT_SECONDS = 600.0


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header given either in seconds or as an HTTP date.

    Returns:
        Seconds to wait, or None if the header is absent or unparseable
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


class RateLimitRetryTransport(httpx.AsyncBaseTransport):
    """Transport retrying rate limited, failing and unreachable requests.

    Waits for the duration the server asks for in Retry-After, otherwise
    backs off with decorrelated jitter. Once attempts are exhausted the last
    response is returned unchanged, or the last transport error is raised.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_attempts: int = 10,
        base_delay: float = 3.0,
        max_delay: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._transport = transport or httpx.AsyncHTTPTransport()
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def _next_backoff(self, previous: float) -> float:
        upper = max(self.base_delay, previous * 3)
        return min(self.max_delay, random.uniform(self.base_delay, upper))

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        backoff = self.base_delay
        attempt = 1
        while True:
            try:
                response = await self._transport.handle_async_request(request)
            except httpx.TransportError as exc:
                if attempt >= self.max_attempts:
                    raise
                backoff = self._next_backoff(backoff)
                logger.warning(
                    "%s %s failed (%s), retry %d/%d in %.1fs",
                    request.method, request.url, type(exc).__name__, attempt, self.max_attempts - 1, backoff
                )
                await self._sleep(backoff)
                attempt += 1
                continue

            if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= self.max_attempts:
                return response

            delay = parse_retry_after(response.headers.get("Retry-After"))
            if delay is None:
                backoff = self._next_backoff(backoff)
                delay = backoff
            logger.warning(
                "%s %s returned %d, retry %d/%d in %.1fs",
                request.method, request.url, response.status_code, attempt, self.max_attempts - 1, delay
            )
            await response.aclose()
            await self._sleep(delay)
            attempt += 1

    async def aclose(self) -> None:
        await self._transport.aclose()


def create_http_client(
    adapter: VendorAdapter,
    token: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create the HTTP client used for all requests against one vendor.

    Args:
        adapter: Adapter providing the default base URL and auth headers
        token: API token of the vendor
        base_url: Override of the adapter's default base URL
        timeout_seconds: Timeout of a single request
        transport: Inner transport, wrapped with rate limit retries

    Returns:
        Configured async HTTP client
    """
    headers = {"Accept": "application/json"}
    headers.update(adapter.auth_headers(token))
    return httpx.AsyncClient(
        base_url=base_url or adapter.default_base_url,
        headers=headers,
        timeout=httpx.Timeout(timeout_seconds),
        transport=RateLimitRetryTransport(transport),
    )
