"""Persisted dataset documents (``api_cache`` table)."""

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models import ApiCacheDocument
from .change_feed import ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)

COLLECTION = "api_cache"


def now_ms() -> int:
    return int(time.time() * 1000)


class DocumentStore:
    """Whole-document reads and upserts keyed by dataset name."""

    def __init__(self, session_factory: async_sessionmaker, change_feed: Optional[ChangeFeed] = None):
        self.session_factory = session_factory
        self.change_feed = change_feed

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Stored document for `key`, or None."""
        async with self.session_factory() as session:
            row = await session.get(ApiCacheDocument, key)
            return row.to_document() if row else None

    async def get_data(self, key: str) -> Any:
        document = await self.get(key)
        return document["data"] if document else None

    async def put(self, key: str, data: Any, last_update: Optional[int] = None) -> Dict[str, Any]:
        """Replace the document for `key` and notify change feed subscribers.

        Writing the same payload twice leaves a single row.
        """
        last_update = last_update or now_ms()

        async with self.session_factory() as session:
            existing = await session.get(ApiCacheDocument, key)
            operation = "update" if existing else "insert"
            row = await session.merge(ApiCacheDocument(
                key=key,
                data=data,
                last_update=last_update,
                updated_at=datetime.utcnow(),
            ))
            await session.commit()
            document = row.to_document()

        logger.debug(f"[Store] {operation} {key} (lastUpdate={last_update})")

        if self.change_feed:
            await self.change_feed.publish(ChangeEvent(
                collection=COLLECTION,
                operationType=operation,
                documentId=key,
                fullDocument=document,
            ))
        return document
