"""Crypto news aggregated from RSS feeds."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .feeds import parse_feed
from .fetcher import FetchError
from .sources import BaseDataSource, Dataset

logger = logging.getLogger(__name__)

DEFAULT_FEEDS = {
    "kriptofoni": "https://kriptofoni.com/feed/",
    "cointelegraph": "https://cointelegraph.com.tr/rss",
    "bitcoinsistemi": "https://www.bitcoinsistemi.com/feed/",
}

MAX_AGE = timedelta(hours=48)
MAX_ITEMS = 100
DESCRIPTION_LIMIT = 500
TIMEOUT_SECONDS = 15.0


def _absolute_image(url: Optional[str], feed_url: str) -> Optional[str]:
    if not url:
        return None
    url = url.strip().split("#")[0]
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("/"):
        origin = "/".join(feed_url.split("/")[:3])
        return origin + url
    return url


class NewsSource(BaseDataSource):
    """Recent news items, newest first, one entry per URL."""

    dataset = Dataset.NEWS

    def __init__(
        self,
        fetcher,
        feeds: Optional[Dict[str, str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(fetcher)
        self.feeds = feeds or dict(DEFAULT_FEEDS)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch_feed(self, source: str, url: str) -> List[Dict[str, Any]]:
        """Items of one feed from the last 48 hours; empty when the feed fails."""
        try:
            xml = await self.fetcher.fetch_text(
                url,
                headers={"Accept": "application/rss+xml, application/xml, text/xml, */*"},
                timeout=TIMEOUT_SECONDS,
            )
        except FetchError as e:
            logger.warning(f"[News] Feed {source} skipped: {e}")
            return []

        cutoff = self._clock() - MAX_AGE
        items = []
        for item in parse_feed(xml):
            if not item.link or item.published is None or item.published < cutoff:
                continue
            items.append({
                "id": item.link,
                "url": item.link,
                "title": item.title,
                "description": item.description[:DESCRIPTION_LIMIT],
                "publishedAt": item.published.astimezone(timezone.utc).isoformat(),
                "source": source,
                "category": "crypto",
                "image": _absolute_image(item.image, url),
            })
        logger.info(f"[News] {len(items)} items from {source}")
        return items

    async def fetch(self) -> List[Dict[str, Any]]:
        results = await asyncio.gather(
            *(self.fetch_feed(source, url) for source, url in self.feeds.items())
        )

        merged: Dict[str, Dict[str, Any]] = {}
        for items in results:
            for item in items:
                merged.setdefault(item["url"], item)

        news = sorted(
            merged.values(),
            key=lambda item: datetime.fromisoformat(item["publishedAt"]),
            reverse=True,
        )
        if not news:
            raise FetchError("News: no feed returned any recent item")
        return news[:MAX_ITEMS]
