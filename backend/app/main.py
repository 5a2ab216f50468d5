"""Market data FastAPI application.

Keeps a set of market datasets (coin listing, supply changes, dominance,
currency rates, Fed rate, fear & greed, news, trending) fresh on fixed
wall-clock cadences and serves them from the local store. Document changes
are pushed to websocket clients.
"""

import sys
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import async_sessionmaker

from .models import configure_database, init_db
from .models.database import DATABASE_URL
from .routers import crypto, datasets, health, whale
from .routers import websocket as ws_router
from .services.config import ConfigService, config_service, configure_logging, ConfigValidationException
from .services.change_feed import ChangeFeed
from .services.crypto_list import CryptoListPipeline, PipelineSettings
from .services.currency import CurrencySource
from .services.data_updates import DataUpdateService
from .services.document_store import DocumentStore
from .services.dominance import DominanceSource
from .services.fear_greed import FearGreedSource
from .services.fed_rate import FedRateService
from .services.fetcher import RATE_LIMIT_COOLDOWN_SECONDS, ResilientFetcher
from .services.news import NewsSource
from .services.ohlc import OhlcService
from .services.proxy_pool import PROBE_TIMEOUT_SECONDS, ProxyHealthTracker
from .services.scheduler import DataScheduler
from .services.sources import Dataset
from .services.supply_tracking import SnapshotStore, SupplyTracker
from .services.whale import DEFAULT_MIN_VALUE_USD, WhaleAlertSource, WhaleTradeBook

logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, config: ConfigService, session_factory: async_sessionmaker) -> None:
    """Build the service graph from configuration and hang it on ``app.state``."""
    proxy_pool = ProxyHealthTracker(
        endpoints=config.proxy_endpoints(),
        probe_timeout=config.get("proxies.probe_timeout_seconds", PROBE_TIMEOUT_SECONDS),
    )
    fetcher = ResilientFetcher(
        proxy_pool,
        rate_limit_cooldown=config.get("acquisition.rate_limit_cooldown_seconds", RATE_LIMIT_COOLDOWN_SECONDS),
    )

    change_feed = ChangeFeed()
    documents = DocumentStore(session_factory, change_feed)
    snapshots = SnapshotStore(session_factory)

    settings = PipelineSettings.from_config(config)
    sources = {
        Dataset.FED_RATE: FedRateService(fetcher, documents, fred_api_key=config.get("upstream.fred_api_key")),
        Dataset.CURRENCY_RATES: CurrencySource(fetcher),
        Dataset.DOMINANCE: DominanceSource(
            fetcher,
            coinmarketcap_api_key=config.get("upstream.coinmarketcap_api_key"),
            coingecko_url=settings.base_url,
        ),
        Dataset.FEAR_GREED: FearGreedSource(fetcher),
        Dataset.NEWS: NewsSource(fetcher, feeds=config.get("upstream.news_feeds")),
        Dataset.WHALE_TRANSACTIONS: WhaleAlertSource(
            fetcher,
            api_key=config.get("upstream.whale_alert_api_key"),
            min_value=config.get("upstream.whale_min_value_usd", DEFAULT_MIN_VALUE_USD),
        ),
    }
    updates = DataUpdateService(
        documents,
        CryptoListPipeline(fetcher, settings),
        SupplyTracker(documents, snapshots),
        sources,
    )

    app.state.proxy_pool = proxy_pool
    app.state.fetcher = fetcher
    app.state.change_feed = change_feed
    app.state.documents = documents
    app.state.snapshots = snapshots
    app.state.updates = updates
    app.state.whale_trades = WhaleTradeBook(documents)
    app.state.ohlc = OhlcService(fetcher, settings.base_url)
    app.state.scheduler = DataScheduler(updates)
    app.state.scheduler_enabled = bool(config.get("scheduler.enabled", True))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: Validate configuration
    try:
        config_service.load_and_validate()
    except ConfigValidationException as e:
        print(f"FATAL: {e}")
        print("Server cannot start with invalid configuration.")
        sys.exit(1)

    configure_logging(config_service)

    # Initialize database
    session_factory = configure_database(config_service.get("database.url", DATABASE_URL))
    await init_db()
    logger.info("Database initialized")

    attach_services(app, config_service, session_factory)

    if app.state.scheduler_enabled:
        app.state.scheduler.start(run_on_start=bool(config_service.get("scheduler.run_on_start", True)))
    else:
        logger.warning("Scheduler disabled by configuration; datasets update only on request")

    yield

    # Shutdown: stop timers and in-flight ticks
    logger.info("Initiating graceful shutdown...")
    await app.state.scheduler.stop()
    logger.info("Graceful shutdown complete")


app = FastAPI(
    title="Market Data API",
    description="Crypto market dataset acquisition and cache API",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(ws_router.router, prefix="/api", tags=["WebSocket"])
app.include_router(whale.router, prefix="/api/whale", tags=["Whale"])
app.include_router(crypto.router, prefix="/api/crypto", tags=["Crypto"])
app.include_router(datasets.router, prefix="/api", tags=["Datasets"])


@app.get("/")
async def root():
    """Root endpoint redirect to docs."""
    return {"message": "Market Data API", "docs": "/docs"}
