"""Resilient HTTP fetch layer.

Requests optionally go through a relay endpoint chosen by the
ProxyHealthTracker. Every request has its own deadline; expiry cancels that
request only and surfaces as a retryable FetchError.

Failure handling:
- relay failure (connection error or deadline while relayed): the endpoint is
  demoted and the request is retried once without a relay
- rate limit (HTTP 429, or a 5xx answered with an HTML page, which is how
  edge protection usually shows up): cooldown, demote, pick a fresh endpoint,
  exactly one retry, then RateLimitError
- any other error status through a relay, except 404: the endpoint is demoted
  and UpstreamStatusError is raised
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from .proxy_pool import ProxyHealthTracker, display_endpoint

logger = logging.getLogger(__name__)

RATE_LIMIT_COOLDOWN_SECONDS = 30.0
DEFAULT_TIMEOUT_SECONDS = 30.0

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
}


class FetchError(Exception):
    """Transient failure: timeout, connection error, unusable response."""


class RateLimitError(FetchError):
    """Upstream kept rate limiting after the cooldown retry."""


class UpstreamStatusError(FetchError):
    """Upstream answered with a non-success status."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(message)


@dataclass
class FetchResponse:
    """Fully read HTTP response."""
    status: int
    body: str
    url: str
    endpoint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_html(self) -> bool:
        head = self.body[:512].lower()
        return "<!doctype" in head or "<html" in head

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429 or (self.status >= 500 and self.is_html)

    def json(self) -> Any:
        return json.loads(self.body)


class ResilientFetcher:
    """HTTP client that rotates relay endpoints and absorbs rate limits."""

    def __init__(
        self,
        proxy_pool: ProxyHealthTracker,
        rate_limit_cooldown: float = RATE_LIMIT_COOLDOWN_SECONDS,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.proxy_pool = proxy_pool
        self.rate_limit_cooldown = rate_limit_cooldown
        self.default_timeout = default_timeout
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}

    async def request(
        self,
        url: str,
        *,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> FetchResponse:
        """Issue a GET, through `endpoint` when given.

        Raises:
            FetchError: The direct request failed or timed out.
        """
        timeout = timeout or self.default_timeout

        if endpoint:
            try:
                response = await self._send(url, endpoint, timeout, params, headers)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(
                    f"[Fetch] Relay {display_endpoint(endpoint)} failed for {url} "
                    f"({type(e).__name__}), retrying direct"
                )
                await self.proxy_pool.mark_failed(endpoint)
            else:
                if response.ok:
                    await self.proxy_pool.mark_working(endpoint)
                return response

        try:
            return await self._send(url, None, timeout, params, headers)
        except asyncio.TimeoutError as e:
            raise FetchError(f"Timed out after {timeout}s: {url}") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e

    async def fetch_json(
        self,
        url: str,
        *,
        batch_index: int = 0,
        batch_count: int = 1,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        use_relay: bool = True,
        label: Optional[str] = None,
    ) -> Any:
        """Fetch and decode a JSON document with relay rotation and rate-limit handling.

        Args:
            url: Target URL.
            batch_index: Unit-of-work position, drives endpoint rotation.
            batch_count: Units in the current run.
            params: Query parameters.
            headers: Extra request headers.
            timeout: Per-request deadline in seconds.
            use_relay: Go direct when False.
            label: Name used in log lines and errors.

        Raises:
            RateLimitError: Still rate limited after the cooldown retry.
            UpstreamStatusError: Non-success status or undecodable body.
            FetchError: Transport failure.
        """
        label = label or url

        async def attempt() -> FetchResponse:
            endpoint = await self.proxy_pool.select(batch_index, batch_count) if use_relay else None
            return await self.request(url, endpoint=endpoint, timeout=timeout, params=params, headers=headers)

        response = await attempt()

        if response.is_rate_limited:
            logger.warning(
                f"[Fetch] Rate limited (HTTP {response.status}) on {label} via "
                f"{display_endpoint(response.endpoint)}, waiting {self.rate_limit_cooldown:.0f}s"
            )
            await self.proxy_pool.mark_failed(response.endpoint)
            await asyncio.sleep(self.rate_limit_cooldown)

            response = await attempt()
            logger.info(f"[Fetch] Retried {label} via {display_endpoint(response.endpoint)}: HTTP {response.status}")
            if not response.ok:
                await self.proxy_pool.mark_failed(response.endpoint)
                raise RateLimitError(f"{label}: HTTP {response.status} (retry after rate limit failed)")

        if not response.ok:
            # 404 is upstream's own answer (unknown id); anything else may be the relay
            if response.endpoint and response.status != 404:
                logger.warning(
                    f"[Fetch] {label} via {display_endpoint(response.endpoint)} returned HTTP {response.status}, "
                    f"demoting relay"
                )
                await self.proxy_pool.mark_failed(response.endpoint)
            raise UpstreamStatusError(response.status, f"{label}: HTTP {response.status} {response.body[:100]}")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamStatusError(response.status, f"{label}: response is not JSON") from e

    async def fetch_text(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Fetch a text document directly (feeds, HTML pages)."""
        response = await self.request(url, timeout=timeout, headers=headers)
        if not response.ok:
            raise UpstreamStatusError(response.status, f"{url}: HTTP {response.status}")
        return response.body

    async def _send(
        self,
        url: str,
        endpoint: Optional[str],
        timeout: float,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> FetchResponse:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        merged_headers = {**self.headers, **(headers or {})}
        async with aiohttp.ClientSession(timeout=client_timeout, headers=merged_headers) as session:
            async with session.get(url, params=params, proxy=endpoint) as resp:
                body = await resp.text(errors="replace")
                return FetchResponse(status=resp.status, body=body, url=str(resp.url), endpoint=endpoint)
