"""Update actions: fetch a dataset and persist it as a document.

Every action is idempotent and reports an UpdateResult instead of raising.
A failed update leaves the previously stored document untouched.
"""

import logging
from dataclasses import dataclass, asdict, is_dataclass
from typing import Any, Awaitable, Callable, Dict

from .crypto_list import AcquisitionError, CryptoListPipeline
from .document_store import DocumentStore
from .fallback import first_available
from .sources import BaseDataSource, Dataset
from .supply_tracking import SupplyTracker
from .trending import calculate_trending_scores

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    """Outcome of an update action."""
    success: bool
    dataset: str
    count: int = 0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _count(data: Any) -> int:
    if isinstance(data, (list, dict)):
        return len(data)
    return 1 if data is not None else 0


class UnknownDatasetError(KeyError):
    """No update action is registered for the dataset name."""


class DataUpdateService:
    """Runs the update action for each dataset."""

    def __init__(
        self,
        documents: DocumentStore,
        pipeline: CryptoListPipeline,
        supply_tracker: SupplyTracker,
        sources: Dict[Dataset, BaseDataSource],
    ):
        self.documents = documents
        self.pipeline = pipeline
        self.supply_tracker = supply_tracker
        self.sources = sources

        self._actions: Dict[Dataset, Callable[[], Awaitable[UpdateResult]]] = {
            Dataset.CRYPTO_LIST: self.update_crypto_list,
            Dataset.SUPPLY_TRACKING: self.update_supply_tracking,
            Dataset.CURRENCY_RATES: self.update_currency_rates,
            Dataset.TRENDING: self.update_trending,
            Dataset.WHALE_TRANSACTIONS: self.update_whale_transactions,
        }
        for dataset in (Dataset.FED_RATE, Dataset.DOMINANCE, Dataset.FEAR_GREED, Dataset.NEWS):
            self._actions[dataset] = self._source_action(dataset)

    @property
    def datasets(self):
        return [dataset.value for dataset in self._actions]

    async def run(self, dataset: str) -> UpdateResult:
        """Run the update action registered for `dataset`.

        Raises:
            UnknownDatasetError: `dataset` is not a known dataset name.
        """
        try:
            key = Dataset(dataset)
        except ValueError:
            raise UnknownDatasetError(dataset) from None
        if key not in self._actions:
            raise UnknownDatasetError(dataset)
        return await self._actions[key]()

    async def _guarded(self, dataset: Dataset, action: Callable[[], Awaitable[UpdateResult]]) -> UpdateResult:
        try:
            result = await action()
        except Exception as e:
            logger.error(f"[Update] {dataset.value} failed: {e}")
            return UpdateResult(success=False, dataset=dataset.value, message=str(e))
        if result.success:
            logger.info(f"[Update] {dataset.value}: {result.message}")
        else:
            logger.warning(f"[Update] {dataset.value}: {result.message}")
        return result

    async def _store(self, dataset: Dataset, data: Any) -> UpdateResult:
        if is_dataclass(data):
            data = asdict(data)
        await self.documents.put(dataset.value, data)
        count = _count(data)
        return UpdateResult(success=True, dataset=dataset.value, count=count, message=f"{count} records stored")

    async def update_crypto_list(self) -> UpdateResult:
        async def action():
            try:
                result = await self.pipeline.run()
            except AcquisitionError as e:
                return UpdateResult(success=False, dataset=Dataset.CRYPTO_LIST.value, message=str(e))
            return await self._store(Dataset.CRYPTO_LIST, [record.to_dict() for record in result.records])

        return await self._guarded(Dataset.CRYPTO_LIST, action)

    async def update_supply_tracking(self) -> UpdateResult:
        async def action():
            changes = await self.supply_tracker.update()
            if changes is None:
                return UpdateResult(
                    success=False,
                    dataset=Dataset.SUPPLY_TRACKING.value,
                    message="No stored coin listing to snapshot",
                )
            return UpdateResult(
                success=True,
                dataset=Dataset.SUPPLY_TRACKING.value,
                count=len(changes),
                message=f"{len(changes)} coins tracked",
            )

        return await self._guarded(Dataset.SUPPLY_TRACKING, action)

    async def update_currency_rates(self) -> UpdateResult:
        dataset = Dataset.CURRENCY_RATES

        async def action():
            resolved = await first_available(
                ("live", self.sources[dataset].get_data),
                ("prior_persisted", lambda: self.documents.get_data(dataset.value)),
            )
            if resolved is None:
                return UpdateResult(success=False, dataset=dataset.value, message="No currency rates available")

            source, rates = resolved
            if source == "prior_persisted":
                return UpdateResult(
                    success=True,
                    dataset=dataset.value,
                    count=len(rates),
                    message="Live rates unavailable, keeping stored rates",
                )
            return await self._store(dataset, rates)

        return await self._guarded(dataset, action)

    async def update_trending(self) -> UpdateResult:
        dataset = Dataset.TRENDING

        async def action():
            coins = await self.documents.get_data(Dataset.CRYPTO_LIST.value)
            if not coins:
                return UpdateResult(success=False, dataset=dataset.value, message="No stored coin listing to score")
            return await self._store(dataset, calculate_trending_scores(coins))

        return await self._guarded(dataset, action)

    async def update_whale_transactions(self) -> UpdateResult:
        dataset = Dataset.WHALE_TRANSACTIONS

        async def action():
            data = await self.sources[dataset].get_data()
            await self.documents.put(dataset.value, data)
            count = len(data["transactions"])
            return UpdateResult(
                success=True,
                dataset=dataset.value,
                count=count,
                message=f"{count} whale transfers stored",
            )

        return await self._guarded(dataset, action)

    def _source_action(self, dataset: Dataset) -> Callable[[], Awaitable[UpdateResult]]:
        async def update() -> UpdateResult:
            async def action():
                return await self._store(dataset, await self.sources[dataset].get_data())
            return await self._guarded(dataset, action)
        return update

    def source_statuses(self) -> Dict[str, Dict[str, Any]]:
        statuses = {}
        for dataset, source in self.sources.items():
            status = asdict(source.get_status())
            status["dataset"] = dataset.value
            statuses[dataset.value] = status
        return statuses
