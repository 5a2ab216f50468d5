# Database Models

from .database import Base, engine, async_session_maker, configure_database, init_db
from .api_cache import ApiCacheDocument
from .supply_snapshot import SupplySnapshot

__all__ = [
    "Base",
    "engine",
    "async_session_maker",
    "configure_database",
    "init_db",
    "ApiCacheDocument",
    "SupplySnapshot",
]
