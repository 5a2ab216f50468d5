"""USD-based FX rates."""

import logging
from typing import Dict

from .fetcher import FetchError
from .sources import BaseDataSource, Dataset

logger = logging.getLogger(__name__)

EXCHANGE_RATE_URL = "https://api.exchangerate-api.com/v4/latest/USD"
TIMEOUT_SECONDS = 10.0


class CurrencySource(BaseDataSource):
    """Exchange rates against USD, e.g. ``{"EUR": 0.92, "USD": 1.0}``."""

    dataset = Dataset.CURRENCY_RATES

    def __init__(self, fetcher, url: str = EXCHANGE_RATE_URL):
        super().__init__(fetcher)
        self.url = url

    async def fetch(self) -> Dict[str, float]:
        data = await self.fetcher.fetch_json(
            self.url,
            timeout=TIMEOUT_SECONDS,
            use_relay=False,
            label="ExchangeRate API",
        )
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise FetchError("ExchangeRate API: response has no rates")

        rates = dict(rates)
        rates["USD"] = 1.0
        logger.info(f"[Currency] Fetched {len(rates)} rates")
        return rates
