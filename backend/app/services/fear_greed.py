"""Crypto Fear & Greed index."""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from .fetcher import FetchError
from .sources import BaseDataSource, Dataset

logger = logging.getLogger(__name__)

FEAR_GREED_URL = "https://api.alternative.me/fng/"
TIMEOUT_SECONDS = 10.0


@dataclass
class FearGreedData:
    """Fear and Greed Index data."""
    value: int  # 0-100
    classification: str  # Extreme Fear, Fear, Neutral, Greed, Extreme Greed
    timestamp: int  # epoch ms
    timeUntilUpdate: Optional[int] = None
    previousValue: Optional[int] = None
    previousClassification: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FearGreedSource(BaseDataSource):
    """Fear and Greed Index data source."""

    dataset = Dataset.FEAR_GREED

    def __init__(self, fetcher, url: str = FEAR_GREED_URL):
        super().__init__(fetcher)
        self.url = url

    async def fetch(self) -> FearGreedData:
        """Fetch the current and previous index values."""
        data = await self.fetcher.fetch_json(
            self.url,
            params={"limit": 2},
            timeout=TIMEOUT_SECONDS,
            use_relay=False,
            label="Fear & Greed API",
        )

        items = data.get("data", []) if isinstance(data, dict) else []
        if not items:
            raise FetchError("No data returned from Fear & Greed API")

        current = items[0]
        previous = items[1] if len(items) > 1 else None

        time_until_update = current.get("time_until_update")
        return FearGreedData(
            value=int(current["value"]),
            classification=current["value_classification"],
            timestamp=int(current["timestamp"]) * 1000,
            timeUntilUpdate=int(time_until_update) if time_until_update else None,
            previousValue=int(previous["value"]) if previous else None,
            previousClassification=previous["value_classification"] if previous else None,
        )
