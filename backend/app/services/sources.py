"""Common shape of the upstream dataset sources."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .fetcher import ResilientFetcher

logger = logging.getLogger(__name__)


class Dataset(str, Enum):
    """Persisted dataset document keys."""
    CRYPTO_LIST = "crypto_list"
    SUPPLY_TRACKING = "supply_tracking"
    FED_RATE = "fed_rate"
    CURRENCY_RATES = "currency_rates"
    DOMINANCE = "dominance_data"
    FEAR_GREED = "fear_greed"
    NEWS = "news"
    TRENDING = "trending_coins"
    WHALE_TRANSACTIONS = "whale_transactions"


@dataclass
class DataSourceStatus:
    """Health of a data source as of its last fetch."""
    dataset: Dataset
    healthy: bool
    last_fetch: Optional[datetime] = None
    last_error: Optional[str] = None


class BaseDataSource(ABC):
    """Upstream source producing one dataset document."""

    dataset: Dataset

    def __init__(self, fetcher: ResilientFetcher):
        self.fetcher = fetcher
        self._last_fetch: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._healthy = True

    @abstractmethod
    async def fetch(self) -> Any:
        """Fetch and shape the dataset payload."""
        pass

    async def get_data(self) -> Any:
        """Fetch, recording health. Errors propagate to the caller."""
        try:
            data = await self.fetch()
        except Exception as e:
            self._healthy = False
            self._last_error = str(e)
            logger.error(f"Error fetching {self.dataset.value}: {e}")
            raise
        self._last_fetch = datetime.utcnow()
        self._healthy = True
        self._last_error = None
        return data

    def get_status(self) -> DataSourceStatus:
        return DataSourceStatus(
            dataset=self.dataset,
            healthy=self._healthy,
            last_fetch=self._last_fetch,
            last_error=self._last_error,
        )
