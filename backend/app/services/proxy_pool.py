"""Relay endpoint health tracking.

Keeps an advisory, process-local view of which outbound relay endpoints
(HTTP proxies) are usable. Nothing here is persisted: a restart forgets every
verdict and endpoints are simply re-probed on their next use.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

COINGECKO_API = "https://api.coingecko.com/api/v3"
PROBE_TIMEOUT_SECONDS = 8.0

# Used only when no relay endpoints are configured
FALLBACK_PROXIES = [
    "http://103.149.162.194:80",
    "http://103.152.112.162:80",
    "http://103.48.68.107:83",
    "http://103.49.202.252:80",
    "http://103.75.190.195:80",
    "http://103.78.141.10:80",
    "http://103.83.232.122:80",
    "http://103.85.162.60:80",
    "http://103.88.238.227:8080",
    "http://103.90.231.93:80",
    "http://103.92.235.250:80",
    "http://103.94.52.178:80",
    "http://103.95.40.81:80",
    "http://103.96.50.250:80",
    "http://103.97.246.82:80",
    "http://103.98.72.162:80",
    "http://45.77.56.214:8080",
    "http://45.77.56.215:8080",
    "http://185.199.228.220:8080",
    "http://185.199.229.220:8080",
    "http://185.199.230.220:8080",
    "http://185.199.231.220:8080",
]


class EndpointStatus(str, Enum):
    """Health verdict for a relay endpoint."""
    UNTESTED = "untested"
    WORKING = "working"
    FAILED = "failed"


def display_endpoint(endpoint: Optional[str]) -> str:
    """Endpoint without credentials, for log lines."""
    if not endpoint:
        return "direct"
    return endpoint.split("@")[-1]


class ProxyHealthTracker:
    """Round-robin relay selection over a pool with working/failed bookkeeping.

    ``working`` and ``failed`` are kept disjoint. Updates may race between
    concurrent fetches; the worst outcome is a redundant probe.
    """

    def __init__(
        self,
        endpoints: Optional[Iterable[str]] = None,
        probe_url: str = f"{COINGECKO_API}/ping",
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        probe: Optional[Callable[[str], Awaitable[bool]]] = None,
    ):
        """
        Args:
            endpoints: Explicit relay pool. Empty or None selects FALLBACK_PROXIES.
            probe_url: Lightweight upstream path used for liveness checks.
            probe_timeout: Deadline for a single probe.
            probe: Replacement liveness check (tests, alternative transports).
        """
        configured = [e for e in (endpoints or []) if e]
        self.endpoints: List[str] = configured or list(FALLBACK_PROXIES)
        self.explicit = bool(configured)
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._probe = probe or self._http_probe

        self._working: set = set()
        self._failed: set = set()
        self._lock = asyncio.Lock()

    def status(self, endpoint: str) -> EndpointStatus:
        if endpoint in self._failed:
            return EndpointStatus.FAILED
        if endpoint in self._working:
            return EndpointStatus.WORKING
        return EndpointStatus.UNTESTED

    async def mark_working(self, endpoint: Optional[str]) -> None:
        if not endpoint:
            return
        async with self._lock:
            self._failed.discard(endpoint)
            self._working.add(endpoint)

    async def mark_failed(self, endpoint: Optional[str]) -> None:
        if not endpoint:
            return
        async with self._lock:
            self._working.discard(endpoint)
            self._failed.add(endpoint)

    async def reset(self) -> None:
        async with self._lock:
            self._working.clear()
            self._failed.clear()

    def summary(self) -> Dict[str, int]:
        return {
            "pool_size": len(self.endpoints),
            "working": len(self._working),
            "failed": len(self._failed),
            "untested": len(self.endpoints) - len(self._working) - len(self._failed),
        }

    async def check(self, endpoint: str) -> bool:
        """Probe an endpoint and record the verdict."""
        logger.debug(f"[Proxy] Probing {display_endpoint(endpoint)}")
        try:
            alive = await self._probe(endpoint)
        except Exception as e:
            logger.debug(f"[Proxy] Probe error for {display_endpoint(endpoint)}: {e}")
            alive = False

        if alive:
            await self.mark_working(endpoint)
            logger.info(f"[Proxy] Working: {display_endpoint(endpoint)}")
        else:
            await self.mark_failed(endpoint)
            logger.info(f"[Proxy] Failed: {display_endpoint(endpoint)}")
        return alive

    async def select(self, batch_index: int, batch_count: int = 1) -> Optional[str]:
        """Pick a relay endpoint for a unit of work.

        Args:
            batch_index: Position of the unit of work; consecutive indexes land
                on different endpoints.
            batch_count: Number of units in the current run (informational).

        Returns:
            An endpoint believed to be live, or None to go direct.
        """
        if not self.endpoints:
            return None

        selected = self.endpoints[batch_index % len(self.endpoints)]

        if selected in self._failed:
            alternatives = [e for e in self.endpoints if e in self._working and e not in self._failed]
            if alternatives:
                choice = alternatives[batch_index % len(alternatives)]
                logger.debug(
                    f"[Proxy] Batch {batch_index + 1}/{batch_count}: "
                    f"{display_endpoint(selected)} failed, using {display_endpoint(choice)}"
                )
                return choice
            return await self._first_live(
                [e for e in self.endpoints if e not in self._failed], limit=3
            )

        if selected in self._working:
            return selected

        # Untested: probe before first real use
        if await self.check(selected):
            return selected
        return await self._first_live(
            [e for e in self.endpoints if e not in self._failed and e != selected], limit=2
        )

    async def _first_live(self, candidates: List[str], limit: int) -> Optional[str]:
        for endpoint in candidates[:limit]:
            if await self.check(endpoint):
                return endpoint
        logger.warning("[Proxy] No live relay endpoint found, falling back to direct requests")
        return None

    async def _http_probe(self, endpoint: str) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.probe_url, proxy=endpoint) as resp:
                    return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False
