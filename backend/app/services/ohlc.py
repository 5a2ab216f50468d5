"""OHLC candles for a single coin, passed through from CoinGecko."""

import logging
from typing import List

from .fetcher import ResilientFetcher, UpstreamStatusError
from .proxy_pool import COINGECKO_API

logger = logging.getLogger(__name__)

TIMEOUT_SECONDS = 30.0


class OhlcService:
    """Fetches ``[timestamp_ms, open, high, low, close]`` rows on request."""

    def __init__(self, fetcher: ResilientFetcher, base_url: str = COINGECKO_API):
        self.fetcher = fetcher
        self.base_url = base_url

    async def fetch(self, coin_id: str, days: int = 1) -> List[List[float]]:
        """Candles for `coin_id` over the last `days` days, priced in USD.

        Raises:
            UpstreamStatusError: Non-success status or a body that is not a
                list of candles (404 for an unknown coin).
            FetchError: Transport failure.
        """
        data = await self.fetcher.fetch_json(
            f"{self.base_url}/coins/{coin_id}/ohlc",
            params={"vs_currency": "usd", "days": days},
            timeout=TIMEOUT_SECONDS,
            label=f"CoinGecko OHLC {coin_id}",
        )
        if not isinstance(data, list):
            raise UpstreamStatusError(200, f"CoinGecko OHLC {coin_id}: invalid OHLC data format")

        logger.debug(f"[OHLC] {coin_id}: {len(data)} candles over {days}d")
        return data
