"""Market dominance dataset.

CoinMarketCap global metrics when an API key is configured, otherwise (or
when it fails or rate limits) CoinGecko global data plus top markets.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from .fallback import first_available
from .fetcher import FetchError
from .proxy_pool import COINGECKO_API
from .sources import BaseDataSource, Dataset
from .stablecoins import is_stablecoin

logger = logging.getLogger(__name__)

COINMARKETCAP_API = "https://pro-api.coinmarketcap.com/v1"
CMC_IMAGE_URL = "https://s2.coinmarketcap.com/static/img/coins/64x64/{id}.png"
TIMEOUT_SECONDS = 20.0

BTC_COLOR = "#f7931a"
ETH_COLOR = "#627eea"
OTHERS_COLOR = "#6b7280"


def _dominance_slices(btc: float, eth: float) -> List[Dict[str, Any]]:
    return [
        {"name": "BTC", "value": btc, "color": BTC_COLOR, "change": 0},
        {"name": "ETH", "value": eth, "color": ETH_COLOR, "change": 0},
        {"name": "Others", "value": 100 - btc - eth, "color": OTHERS_COLOR, "change": 0},
    ]


def _share(part: float, whole: float) -> float:
    return part / whole * 100 if whole else 0.0


def build_dominance_document(
    coins: List[Dict[str, Any]],
    btc_dominance: float,
    eth_dominance: float,
    total_market_cap: float,
    total_volume: float,
    active_cryptocurrencies: int,
    active_exchanges: int,
) -> Dict[str, Any]:
    """Shape the dominance document from market-cap ordered coins.

    `coins` use the CoinGecko market fields (``total_volume``, ``market_cap``,
    ``price_change_percentage_24h``, ...).
    """
    btc_volume = next(
        (coin.get("total_volume") or 0 for coin in coins if (coin.get("symbol") or "").lower() == "btc"), 0
    )

    top3 = [
        {
            "id": str(coin.get("id")),
            "name": coin.get("name"),
            "symbol": (coin.get("symbol") or "").upper(),
            "image": coin.get("image"),
            "total_volume": coin.get("total_volume") or 0,
            "market_cap": coin.get("market_cap") or 0,
            "price_change_percentage_24h": coin.get("price_change_percentage_24h") or 0,
            "volume_dominance": _share(coin.get("total_volume") or 0, total_volume),
            "volume_change_24h": coin.get("volume_change_24h"),
        }
        for coin in coins[:3]
    ]

    volume_data = [
        {
            "name": (coin.get("symbol") or "").upper(),
            "volume": coin.get("total_volume") or 0,
            "dominance": _share(coin.get("total_volume") or 0, total_volume),
            "image": coin.get("image"),
            "change": coin.get("price_change_percentage_24h") or 0,
        }
        for coin in [c for c in coins if not is_stablecoin(c)][:5]
    ]

    table = [
        {
            "name": coin.get("name"),
            "symbol": (coin.get("symbol") or "").upper(),
            "image": coin.get("image"),
            "dominance": _share(coin.get("market_cap") or 0, total_market_cap),
            "marketCap": coin.get("market_cap") or 0,
            "volume": coin.get("total_volume") or 0,
            "change": coin.get("price_change_percentage_24h") or 0,
        }
        for coin in coins[:10]
    ]

    return {
        "dominanceData": _dominance_slices(btc_dominance, eth_dominance),
        "volumeData": volume_data,
        "global": {
            "total_market_cap": {"usd": total_market_cap},
            "total_volume": {"usd": total_volume},
            "btc_dominance": btc_dominance,
            "eth_dominance": eth_dominance,
            "active_cryptocurrencies": active_cryptocurrencies,
            "active_exchanges": active_exchanges,
        },
        "top3Coins": top3,
        "dominanceTableData": table,
        "btcVolume": btc_volume,
        "lastUpdate": int(time.time() * 1000),
    }


class DominanceSource(BaseDataSource):
    """BTC/ETH dominance, volume leaders and global totals."""

    dataset = Dataset.DOMINANCE

    def __init__(self, fetcher, coinmarketcap_api_key: Optional[str] = None, coingecko_url: str = COINGECKO_API):
        super().__init__(fetcher)
        self.coinmarketcap_api_key = coinmarketcap_api_key
        self.coingecko_url = coingecko_url

    async def fetch(self) -> Dict[str, Any]:
        providers = []
        if self.coinmarketcap_api_key:
            providers.append(("coinmarketcap", self.fetch_from_coinmarketcap))
        providers.append(("coingecko", self.fetch_from_coingecko))

        resolved = await first_available(*providers)
        if resolved is None:
            raise FetchError("Dominance: every source failed")

        source, document = resolved
        logger.info(f"[Dominance] Updated from {source}")
        return document

    async def fetch_from_coinmarketcap(self) -> Dict[str, Any]:
        headers = {"X-CMC_PRO_API_KEY": self.coinmarketcap_api_key}
        metrics = await self.fetcher.fetch_json(
            f"{COINMARKETCAP_API}/global-metrics/quotes/latest",
            headers=headers,
            timeout=TIMEOUT_SECONDS,
            use_relay=False,
            label="CoinMarketCap global metrics",
        )
        await asyncio.sleep(1)
        listings = await self.fetcher.fetch_json(
            f"{COINMARKETCAP_API}/cryptocurrency/listings/latest",
            params={"limit": 100},
            headers=headers,
            timeout=TIMEOUT_SECONDS,
            use_relay=False,
            label="CoinMarketCap listings",
        )

        data = metrics.get("data") or {}
        quote = (data.get("quote") or {}).get("USD") or {}

        coins = []
        for coin in listings.get("data") or []:
            usd = (coin.get("quote") or {}).get("USD") or {}
            coins.append({
                "id": coin.get("id"),
                "name": coin.get("name"),
                "symbol": coin.get("symbol"),
                "image": CMC_IMAGE_URL.format(id=coin.get("id")),
                "current_price": usd.get("price") or 0,
                "total_volume": usd.get("volume_24h") or 0,
                "market_cap": usd.get("market_cap") or 0,
                "price_change_percentage_24h": usd.get("percent_change_24h") or 0,
                "volume_change_24h": usd.get("volume_change_24h"),
            })

        return build_dominance_document(
            coins,
            btc_dominance=data.get("btc_dominance") or 0,
            eth_dominance=data.get("eth_dominance") or 0,
            total_market_cap=quote.get("total_market_cap") or 0,
            total_volume=quote.get("total_volume_24h") or 0,
            active_cryptocurrencies=data.get("active_cryptocurrencies") or 0,
            active_exchanges=data.get("active_exchanges") or 0,
        )

    async def fetch_from_coingecko(self) -> Dict[str, Any]:
        global_data = await self.fetcher.fetch_json(
            f"{self.coingecko_url}/global",
            timeout=TIMEOUT_SECONDS,
            label="CoinGecko global",
        )
        markets = await self.fetcher.fetch_json(
            f"{self.coingecko_url}/coins/markets",
            params={"vs_currency": "usd", "order": "market_cap_desc", "per_page": 10, "sparkline": "false"},
            batch_index=1,
            timeout=TIMEOUT_SECONDS,
            label="CoinGecko top markets",
        )

        data = global_data.get("data") or {}
        percentages = data.get("market_cap_percentage") or {}

        return build_dominance_document(
            markets if isinstance(markets, list) else [],
            btc_dominance=percentages.get("btc") or 0,
            eth_dominance=percentages.get("eth") or 0,
            total_market_cap=(data.get("total_market_cap") or {}).get("usd") or 0,
            total_volume=(data.get("total_volume") or {}).get("usd") or 0,
            active_cryptocurrencies=data.get("active_cryptocurrencies") or 0,
            active_exchanges=data.get("markets") or 0,
        )
