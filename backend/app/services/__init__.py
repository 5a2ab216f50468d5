# Business Logic Services

from .config import (
    ConfigService,
    config_service,
    configure_logging,
    ConfigValidationException,
    ConfigValidationError,
)
from .proxy_pool import (
    ProxyHealthTracker,
    EndpointStatus,
)
from .fetcher import (
    ResilientFetcher,
    FetchError,
    RateLimitError,
    UpstreamStatusError,
)
from .change_feed import (
    ChangeFeed,
    ChangeEvent,
)
from .document_store import DocumentStore
from .sources import (
    BaseDataSource,
    Dataset,
    DataSourceStatus,
)
from .crypto_list import (
    CryptoListPipeline,
    PipelineSettings,
    ListingRecord,
    AcquisitionError,
)
from .supply_tracking import (
    SnapshotStore,
    SupplyTracker,
    calculate_supply_changes,
)
from .fed_rate import (
    FedRateService,
    FedRateUnavailable,
)
from .currency import CurrencySource
from .dominance import DominanceSource
from .fear_greed import FearGreedSource
from .news import NewsSource
from .trending import calculate_trending_scores
from .whale import (
    WhaleAlertSource,
    WhaleAlertKeyMissing,
    WhaleTradeBook,
    calculate_exchange_flow,
)
from .ohlc import OhlcService
from .data_updates import (
    DataUpdateService,
    UpdateResult,
    UnknownDatasetError,
)
from .scheduler import (
    DataScheduler,
    CadenceJob,
)

__all__ = [
    # Config
    "ConfigService",
    "config_service",
    "configure_logging",
    "ConfigValidationException",
    "ConfigValidationError",
    # Fetching
    "ProxyHealthTracker",
    "EndpointStatus",
    "ResilientFetcher",
    "FetchError",
    "RateLimitError",
    "UpstreamStatusError",
    # Storage
    "ChangeFeed",
    "ChangeEvent",
    "DocumentStore",
    "SnapshotStore",
    # Datasets
    "BaseDataSource",
    "Dataset",
    "DataSourceStatus",
    "CryptoListPipeline",
    "PipelineSettings",
    "ListingRecord",
    "AcquisitionError",
    "SupplyTracker",
    "calculate_supply_changes",
    "FedRateService",
    "FedRateUnavailable",
    "CurrencySource",
    "DominanceSource",
    "FearGreedSource",
    "NewsSource",
    "calculate_trending_scores",
    "WhaleAlertSource",
    "WhaleAlertKeyMissing",
    "WhaleTradeBook",
    "calculate_exchange_flow",
    "OhlcService",
    # Updates
    "DataUpdateService",
    "UpdateResult",
    "UnknownDatasetError",
    "DataScheduler",
    "CadenceJob",
]
