"""Coin listing acquisition pipeline.

FETCH_CORE_PAGES -> DEDUP -> FILTER_STABLECOINS -> [BACKFILL_PAGES] -> CAP
-> BACKFILL_SUPPLY -> NORMALIZE_AND_RANK

Pages are fetched strictly one after another; a failed page is skipped and
the rest still contribute. Only a run in which no page ever succeeded is an
error.
"""

import asyncio
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .fetcher import FetchError, RateLimitError, ResilientFetcher
from .proxy_pool import COINGECKO_API
from .stablecoins import is_stablecoin

logger = logging.getLogger(__name__)


class AcquisitionError(Exception):
    """No listing page could be fetched, even after backoff."""


@dataclass
class PipelineSettings:
    """Tunables for a listing run."""
    base_url: str = COINGECKO_API
    core_pages: int = 5
    page_size: int = 100
    target_count: int = 500
    max_pages: int = 10
    inter_page_delay: float = 2.0
    page_timeout: float = 30.0

    # Whole-fetch retries when every core page failed
    core_retry_attempts: int = 2
    core_retry_base_delay: float = 2.0
    core_retry_max_delay: float = 10.0

    supply_backfill_top: int = 200
    supply_batch_size: int = 10
    supply_batch_delay: float = 5.0
    supply_item_delay: float = 1.0
    supply_retries: int = 2
    supply_timeout: float = 15.0
    supply_budget: float = 120.0

    @classmethod
    def from_config(cls, config) -> "PipelineSettings":
        defaults = cls()
        return cls(
            base_url=config.get("upstream.coingecko_url", defaults.base_url),
            core_pages=config.get("acquisition.core_pages", defaults.core_pages),
            max_pages=config.get("acquisition.max_pages", defaults.max_pages),
            inter_page_delay=config.get("acquisition.inter_page_delay_seconds", defaults.inter_page_delay),
            page_timeout=config.get("acquisition.page_timeout_seconds", defaults.page_timeout),
            supply_budget=config.get("acquisition.supply_backfill_budget_seconds", defaults.supply_budget),
        )


@dataclass
class ListingRecord:
    """Normalized coin listing entry.

    ``total_supply`` and ``max_supply`` stay None when unknown; every other
    numeric field falls back to zero.
    """
    id: str
    name: str
    symbol: str
    image: Optional[str]
    current_price: float
    price_change_percentage_24h: float
    market_cap: float
    market_cap_rank: int
    circulating_supply: float
    total_supply: Optional[float]
    max_supply: Optional[float]
    total_volume: float
    sparkline_in_7d: List[float] = field(default_factory=list)

    @classmethod
    def from_upstream(cls, coin: Dict[str, Any], rank: int) -> "ListingRecord":
        sparkline = coin.get("sparkline_in_7d") or {}
        if isinstance(sparkline, dict):
            sparkline = sparkline.get("price") or []
        return cls(
            id=coin["id"],
            name=coin.get("name") or "",
            symbol=coin.get("symbol") or "",
            image=coin.get("image"),
            current_price=coin.get("current_price") or 0,
            price_change_percentage_24h=coin.get("price_change_percentage_24h") or 0,
            market_cap=coin.get("market_cap") or 0,
            market_cap_rank=rank,
            circulating_supply=coin.get("circulating_supply") or 0,
            total_supply=coin.get("total_supply"),
            max_supply=coin.get("max_supply"),
            total_volume=coin.get("total_volume") or 0,
            sparkline_in_7d=list(sparkline),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PageStatus:
    """Outcome of a single listing page fetch."""
    page: int
    success: bool
    count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AcquisitionResult:
    records: List[ListingRecord]
    page_statuses: List[PageStatus]
    supply_backfilled: int = 0


def dedupe_coins(coins: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop repeated upstream ids; the first occurrence wins."""
    seen = set()
    unique = []
    for coin in coins:
        coin_id = coin.get("id")
        if not coin_id or coin_id in seen:
            continue
        seen.add(coin_id)
        unique.append(coin)
    return unique


def normalize_and_rank(coins: Iterable[Dict[str, Any]]) -> List[ListingRecord]:
    """Map upstream entries to ListingRecords ranked 1..N in input order."""
    return [ListingRecord.from_upstream(coin, rank) for rank, coin in enumerate(coins, start=1)]


class CryptoListPipeline:
    """Builds the ranked, stablecoin-free coin listing."""

    def __init__(self, fetcher: ResilientFetcher, settings: Optional[PipelineSettings] = None):
        self.fetcher = fetcher
        self.settings = settings or PipelineSettings()

    async def fetch_page(self, page: int, batch_index: int, batch_count: int) -> List[Dict[str, Any]]:
        """Fetch one markets page (market-cap desc, with 7d sparkline)."""
        s = self.settings
        data = await self.fetcher.fetch_json(
            f"{s.base_url}/coins/markets",
            params={
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": s.page_size,
                "page": page,
                "sparkline": "true",
                "price_change_percentage": "24h",
            },
            batch_index=batch_index,
            batch_count=batch_count,
            timeout=s.page_timeout,
            label=f"CoinGecko page {page}",
        )
        if not isinstance(data, list):
            raise FetchError(f"CoinGecko page {page}: expected a list, got {type(data).__name__}")
        return data

    async def fetch_core_pages(self) -> Tuple[List[Dict[str, Any]], List[PageStatus]]:
        """Fetch the core pages, retrying the whole run while nothing succeeds.

        Raises:
            AcquisitionError: Every attempt produced zero successful pages.
        """
        s = self.settings

        for attempt in range(s.core_retry_attempts + 1):
            if attempt > 0:
                delay = min(s.core_retry_base_delay * 2 ** (attempt - 1), s.core_retry_max_delay)
                logger.warning(f"[CryptoList] No page succeeded, retrying in {delay:.0f}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)

            coins: List[Dict[str, Any]] = []
            statuses: List[PageStatus] = []

            for index in range(s.core_pages):
                page = index + 1
                if index > 0 and s.inter_page_delay:
                    await asyncio.sleep(s.inter_page_delay)
                try:
                    page_coins = await self.fetch_page(page, index, s.core_pages)
                except FetchError as e:
                    logger.warning(f"[CryptoList] Page {page} skipped: {e}")
                    statuses.append(PageStatus(page=page, success=False, error=str(e)))
                    continue
                coins.extend(page_coins)
                statuses.append(PageStatus(page=page, success=True, count=len(page_coins)))

            if any(status.success for status in statuses):
                return coins, statuses

        raise AcquisitionError(
            f"No CoinGecko page succeeded after {s.core_retry_attempts + 1} attempts"
        )

    async def backfill_pages(
        self,
        filtered: List[Dict[str, Any]],
        statuses: List[PageStatus],
    ) -> List[Dict[str, Any]]:
        """Top up a short listing from the pages after the core range."""
        s = self.settings
        result = list(filtered)
        seen = {coin["id"] for coin in result}
        extra_pages = list(range(s.core_pages + 1, s.max_pages + 1))

        for k, page in enumerate(extra_pages):
            if len(result) >= s.target_count:
                break
            await asyncio.sleep(s.inter_page_delay * (k + 1))
            try:
                page_coins = await self.fetch_page(page, s.core_pages + k, s.max_pages)
            except RateLimitError as e:
                logger.warning(f"[CryptoList] Backfill page {page} rate limited, skipping: {e}")
                statuses.append(PageStatus(page=page, success=False, error=str(e)))
                continue
            except FetchError as e:
                logger.warning(f"[CryptoList] Backfill page {page} failed: {e}")
                statuses.append(PageStatus(page=page, success=False, error=str(e)))
                continue

            added = 0
            for coin in page_coins:
                coin_id = coin.get("id")
                if not coin_id or coin_id in seen or is_stablecoin(coin):
                    continue
                seen.add(coin_id)
                result.append(coin)
                added += 1
            statuses.append(PageStatus(page=page, success=True, count=len(page_coins)))
            logger.info(f"[CryptoList] Backfill page {page}: +{added} coins ({len(result)} total)")

        return result

    async def backfill_supply(self, coins: List[Dict[str, Any]]) -> int:
        """Fill missing total/max supply for the top entries from coin detail.

        Entries are updated in place. Stops when the time budget runs out;
        whatever was filled by then is kept.

        Returns:
            Number of entries that received at least one value.
        """
        s = self.settings
        loop = asyncio.get_running_loop()
        deadline = loop.time() + s.supply_budget

        candidates = [
            coin for coin in coins[:s.supply_backfill_top]
            if coin.get("total_supply") is None or coin.get("max_supply") is None
        ]
        if not candidates:
            return 0

        batches = [
            candidates[i:i + s.supply_batch_size]
            for i in range(0, len(candidates), s.supply_batch_size)
        ]
        logger.info(f"[CryptoList] Supply backfill: {len(candidates)} coins in {len(batches)} batches")

        filled = 0
        for batch_index, batch in enumerate(batches):
            for item_index, coin in enumerate(batch):
                if item_index > 0:
                    pause = s.supply_item_delay
                elif batch_index > 0:
                    pause = s.supply_batch_delay
                else:
                    pause = 0.0

                # The budget bounds the whole stage, lookups in flight included
                if deadline - loop.time() <= pause:
                    logger.warning(f"[CryptoList] Supply backfill budget exhausted after {filled} coins")
                    return filled
                if pause:
                    await asyncio.sleep(pause)

                try:
                    market_data = await asyncio.wait_for(
                        self._fetch_supply_detail(coin["id"], batch_index),
                        timeout=deadline - loop.time(),
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"[CryptoList] Supply backfill budget exhausted during {coin['id']} after {filled} coins"
                    )
                    return filled
                if not market_data:
                    continue

                updated = False
                for key in ("total_supply", "max_supply"):
                    if coin.get(key) is None and market_data.get(key) is not None:
                        coin[key] = market_data[key]
                        updated = True
                if updated:
                    filled += 1

        logger.info(f"[CryptoList] Supply backfill complete: {filled}/{len(candidates)} coins updated")
        return filled

    async def _fetch_supply_detail(self, coin_id: str, batch_index: int) -> Optional[Dict[str, Any]]:
        s = self.settings
        for attempt in range(s.supply_retries + 1):
            try:
                detail = await self.fetcher.fetch_json(
                    f"{s.base_url}/coins/{coin_id}",
                    params={
                        "localization": "false",
                        "tickers": "false",
                        "market_data": "true",
                        "community_data": "false",
                        "developer_data": "false",
                        "sparkline": "false",
                    },
                    batch_index=batch_index + attempt,
                    timeout=s.supply_timeout,
                    label=f"CoinGecko detail {coin_id}",
                )
            except FetchError as e:
                logger.debug(f"[CryptoList] Detail {coin_id} attempt {attempt + 1} failed: {e}")
                continue
            if isinstance(detail, dict):
                return detail.get("market_data") or {}
        return None

    async def run(self) -> AcquisitionResult:
        """Execute the full pipeline.

        Raises:
            AcquisitionError: Zero listing pages succeeded.
        """
        s = self.settings
        raw, statuses = await self.fetch_core_pages()

        unique = dedupe_coins(raw)
        filtered = [coin for coin in unique if not is_stablecoin(coin)]
        logger.info(
            f"[CryptoList] {len(raw)} fetched, {len(unique)} unique, "
            f"{len(unique) - len(filtered)} stablecoins removed"
        )

        if len(filtered) < s.target_count:
            filtered = await self.backfill_pages(filtered, statuses)

        capped = filtered[:s.target_count]
        filled = await self.backfill_supply(capped)
        records = normalize_and_rank(capped)

        logger.info(f"[CryptoList] Listing ready: {len(records)} coins")
        return AcquisitionResult(records=records, page_statuses=statuses, supply_backfilled=filled)
