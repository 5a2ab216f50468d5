"""Circulating supply snapshots and windowed supply deltas.

Every core tick stores one ``{coin_id: circulating_supply}`` snapshot per
5-minute bucket, drops snapshots older than 30 days, and recomputes the
24h / 7d / 30d change table from the retained history.

Delta rules:
- window bounds: oldest = min timestamp >= latest - window, newest = latest
- oldest and newest being the same snapshot leaves the window unresolved
- ``(new - old) / old * 100`` rounded to 2 decimals, undefined when
  ``old <= 0`` or either side is missing
- unresolved windows are forward-filled from the two most recent snapshots
- exactly one snapshot in history zeroes every coin
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models import SupplySnapshot
from .document_store import DocumentStore

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
WINDOWS_MS = {
    "24h": 24 * HOUR_MS,
    "7d": 168 * HOUR_MS,
    "1m": 720 * HOUR_MS,
}
RETENTION_MS = 30 * 24 * HOUR_MS
BUCKET_MINUTES = 5
MAX_SNAPSHOTS = 1000

_BUCKET_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})-(\d{2})(\d{2})$")


@dataclass
class Snapshot:
    """In-memory view of a stored supply snapshot."""
    bucket_key: str
    timestamp: int
    supplies: Dict[str, float] = field(default_factory=dict)


def bucket_key(moment: datetime) -> str:
    """``YYYY-MM-DD-HHMM`` of the UTC 5-minute bucket containing `moment`."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    floored = moment.replace(minute=moment.minute - moment.minute % BUCKET_MINUTES, second=0, microsecond=0)
    return floored.strftime("%Y-%m-%d-%H%M")


def timestamp_from_bucket_key(key: str) -> Optional[int]:
    """Epoch ms of a bucket key's start, or None if the key is malformed."""
    match = _BUCKET_KEY_RE.match(key or "")
    if not match:
        return None
    year, month, day, hour, minute = (int(part) for part in match.groups())
    try:
        moment = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None
    return int(moment.timestamp() * 1000)


def _percent_change(old: Any, new: Any) -> Optional[Dict[str, float]]:
    if old is None or new is None or old <= 0:
        return None
    return {"change": round((new - old) / old * 100, 2), "absolute": new - old}


def calculate_supply_changes(snapshots: List[Snapshot]) -> Dict[str, Dict[str, Optional[float]]]:
    """Compute the per-coin delta table from retained snapshots.

    Returns:
        ``{coin_id: {change24h, absoluteChange24h, change7d, absoluteChange7d,
        change1m, absoluteChange1m}}`` for every coin in the latest snapshot.
        A change/absolute pair is either two numbers or two Nones.
    """
    changes: Dict[str, Dict[str, Optional[float]]] = {}
    if not snapshots:
        return changes

    ordered = sorted(snapshots, key=lambda s: s.timestamp)
    latest = ordered[-1]

    if len(ordered) == 1:
        for coin_id in latest.supplies:
            changes[coin_id] = {}
            for window in WINDOWS_MS:
                changes[coin_id][f"change{window}"] = 0
                changes[coin_id][f"absoluteChange{window}"] = 0
        return changes

    bounds = {}
    for window, span in WINDOWS_MS.items():
        start = latest.timestamp - span
        in_window = [s for s in ordered if start <= s.timestamp <= latest.timestamp]
        oldest = min(in_window, key=lambda s: s.timestamp)
        newest = max(in_window, key=lambda s: s.timestamp)
        bounds[window] = None if oldest.timestamp == newest.timestamp else (oldest, newest)

    # Forward-fill only pairs the latest snapshot with the one right before it;
    # a coin absent from that one stays unresolved even if older rows carry it.
    previous = ordered[-2]

    for coin_id, latest_supply in latest.supplies.items():
        if latest_supply is None:
            continue

        row: Dict[str, Optional[float]] = {}
        for window in WINDOWS_MS:
            delta = None
            if bounds[window]:
                oldest, newest = bounds[window]
                delta = _percent_change(oldest.supplies.get(coin_id), newest.supplies.get(coin_id))
            if delta is None:
                delta = _percent_change(previous.supplies.get(coin_id), latest_supply)

            row[f"change{window}"] = delta["change"] if delta else None
            row[f"absoluteChange{window}"] = delta["absolute"] if delta else None
        changes[coin_id] = row

    return changes


class SnapshotStore:
    """``supply_snapshots`` table access."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def upsert(self, key: str, timestamp: int, supplies: Dict[str, float]) -> None:
        async with self.session_factory() as session:
            await session.merge(SupplySnapshot(bucket_key=key, timestamp=timestamp, supplies=supplies))
            await session.commit()

    async def purge(self, cutoff_ms: int) -> int:
        """Delete snapshots captured before `cutoff_ms`; returns the row count."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SupplySnapshot).where(SupplySnapshot.timestamp < cutoff_ms)
            )
            await session.commit()
            return result.rowcount or 0

    async def load_recent(self, now_ms: int, limit: int = MAX_SNAPSHOTS) -> List[Snapshot]:
        """Most recent snapshots inside the retention window, oldest first.

        Rows without a timestamp get one derived from their bucket key, and
        the derived value is written back.
        """
        cutoff = now_ms - RETENTION_MS
        snapshots = []
        async with self.session_factory() as session:
            result = await session.execute(
                select(SupplySnapshot).order_by(SupplySnapshot.bucket_key.desc()).limit(limit)
            )
            repaired = 0
            for row in result.scalars().all():
                timestamp = row.timestamp
                if timestamp is None:
                    timestamp = timestamp_from_bucket_key(row.bucket_key)
                    if timestamp is None:
                        logger.warning(f"[Supply] Snapshot {row.bucket_key} has no usable timestamp, skipping")
                        continue
                    row.timestamp = timestamp
                    repaired += 1
                if timestamp >= cutoff:
                    snapshots.append(Snapshot(row.bucket_key, timestamp, dict(row.supplies or {})))

            if repaired:
                await session.commit()
                logger.info(f"[Supply] Backfilled timestamp on {repaired} legacy snapshots")

        snapshots.sort(key=lambda s: s.timestamp)
        return snapshots

    async def get(self, key: str) -> Optional[Snapshot]:
        async with self.session_factory() as session:
            row = await session.get(SupplySnapshot, key)
            if row is None:
                return None
            timestamp = row.timestamp if row.timestamp is not None else timestamp_from_bucket_key(row.bucket_key)
            return Snapshot(row.bucket_key, timestamp, dict(row.supplies or {}))

    async def coin_history(self, coin_id: str, limit: int = MAX_SNAPSHOTS) -> List[Dict[str, Any]]:
        """Supply series for one coin, oldest first."""
        snapshots = await self.load_recent(int(time.time() * 1000), limit=limit)
        return [
            {"bucket_key": s.bucket_key, "timestamp": s.timestamp, "supply": s.supplies[coin_id]}
            for s in snapshots
            if s.supplies.get(coin_id) is not None
        ]


class SupplyTracker:
    """Snapshot + delta cycle over the persisted listing."""

    def __init__(self, documents: DocumentStore, snapshots: SnapshotStore):
        self.documents = documents
        self.snapshots = snapshots

    async def update(self, now: Optional[datetime] = None) -> Optional[Dict[str, Dict[str, Optional[float]]]]:
        """Run one cycle.

        Returns:
            The persisted delta table, or None when no listing is stored yet.
        """
        now = now or datetime.now(timezone.utc)
        now_ms = int(now.timestamp() * 1000)

        coins = await self.documents.get_data("crypto_list")
        if not coins or not isinstance(coins, list):
            logger.warning("[Supply] No persisted listing, skipping supply tracking")
            return None

        supplies = {
            coin["id"]: coin["circulating_supply"]
            for coin in coins
            if coin.get("id") and coin.get("circulating_supply") is not None
        }
        key = bucket_key(now)
        await self.snapshots.upsert(key, now_ms, supplies)
        logger.info(f"[Supply] Snapshot {key} stored with {len(supplies)} coins")

        purged = await self.snapshots.purge(now_ms - RETENTION_MS)
        if purged:
            logger.info(f"[Supply] Purged {purged} snapshots older than 30 days")

        history = await self.snapshots.load_recent(now_ms)
        if len(history) == 1:
            logger.warning("[Supply] Only one snapshot available, reporting zero change")

        changes = calculate_supply_changes(history)
        await self.documents.put("supply_tracking", changes, last_update=now_ms)
        logger.info(f"[Supply] Supply tracking updated ({len(changes)} coins, {len(history)} snapshots)")
        return changes
