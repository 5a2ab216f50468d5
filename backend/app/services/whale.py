"""Large on-chain transfers (Whale Alert) and recorded exchange whale trades.

Two documents:
- ``whale_transactions``: the last 24h of Whale Alert transfers with
  exchange inflow/outflow totals, refreshed by the update action
- ``whale_trades``: large exchange trades posted by clients, pruned to 24h
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .document_store import DocumentStore
from .fetcher import FetchError
from .sources import BaseDataSource, Dataset

logger = logging.getLogger(__name__)

WHALE_ALERT_API = "https://api.whale-alert.io/v1"
TIMEOUT_SECONDS = 15.0
DEFAULT_MIN_VALUE_USD = 1_000_000
MAX_TRANSACTIONS = 100

WHALE_TRADES_DOCUMENT = "whale_trades"
MIN_TRADE_VALUE_USD = 200_000
TRADE_WINDOW_MS = 24 * 60 * 60 * 1000
RECENT_TRADES_LIMIT = 200


class WhaleAlertKeyMissing(FetchError):
    """No Whale Alert API key is configured."""


def transaction_type(tx: Dict[str, Any]) -> str:
    """Classify a transfer by the owner types on both sides."""
    from_type = (tx.get("from") or {}).get("owner_type")
    to_type = (tx.get("to") or {}).get("owner_type")

    if from_type == "exchange" and to_type == "exchange":
        return "exchange_to_exchange"
    if from_type == "exchange":
        return "exchange_outflow"
    if to_type == "exchange":
        return "exchange_inflow"
    if from_type == "unknown" and to_type == "unknown":
        return "wallet_to_wallet"
    return "unknown"


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _party(side: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    side = side or {}
    return {
        "address": side.get("address"),
        "owner": side.get("owner"),
        "owner_type": side.get("owner_type"),
    }


def format_transaction(tx: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    if tx.get("timestamp"):
        moment = datetime.fromtimestamp(tx["timestamp"], tz=timezone.utc)
    else:
        moment = now or datetime.now(timezone.utc)

    return {
        "id": tx.get("id") or tx.get("hash"),
        "hash": tx.get("hash"),
        "blockchain": tx.get("blockchain"),
        "symbol": tx.get("symbol"),
        "amount": _as_float(tx.get("amount")),
        "amount_usd": _as_float(tx.get("amount_usd")),
        "from": _party(tx.get("from")),
        "to": _party(tx.get("to")),
        "timestamp": moment.isoformat(),
        "transaction_count": tx.get("transaction_count") or 1,
        "type": transaction_type(tx),
    }


def calculate_exchange_flow(transactions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Sum USD moved into and out of exchanges, per exchange and per currency.

    ``byExchange`` is signed: inflows add, outflows subtract.
    """
    flow: Dict[str, Any] = {"inflow": 0.0, "outflow": 0.0, "net": 0.0, "byExchange": {}, "byCurrency": {}}

    for tx in transactions:
        amount = tx.get("amount_usd") or 0
        kind = tx.get("type")

        if kind == "exchange_inflow":
            flow["inflow"] += amount
            exchange = (tx.get("to") or {}).get("owner") or "Unknown"
            flow["byExchange"][exchange] = flow["byExchange"].get(exchange, 0) + amount
        elif kind == "exchange_outflow":
            flow["outflow"] += amount
            exchange = (tx.get("from") or {}).get("owner") or "Unknown"
            flow["byExchange"][exchange] = flow["byExchange"].get(exchange, 0) - amount

        currency = flow["byCurrency"].setdefault(tx.get("symbol") or "Unknown", {"inflow": 0.0, "outflow": 0.0})
        if kind == "exchange_inflow":
            currency["inflow"] += amount
        elif kind == "exchange_outflow":
            currency["outflow"] += amount

    flow["net"] = flow["inflow"] - flow["outflow"]
    return flow


class WhaleAlertSource(BaseDataSource):
    """Whale Alert transfers over the last 24 hours."""

    dataset = Dataset.WHALE_TRANSACTIONS

    def __init__(
        self,
        fetcher,
        api_key: Optional[str] = None,
        min_value: int = DEFAULT_MIN_VALUE_USD,
        url: str = WHALE_ALERT_API,
        clock=time.time,
    ):
        super().__init__(fetcher)
        self.api_key = api_key
        self.min_value = min_value
        self.url = url
        self._clock = clock

    async def fetch(self) -> Dict[str, Any]:
        if not self.api_key:
            raise WhaleAlertKeyMissing("Whale Alert API key missing (set WHALE_ALERT_API_KEY)")

        now = self._clock()
        result = await self.fetcher.fetch_json(
            f"{self.url}/transactions",
            params={
                "api_key": self.api_key,
                "min_value": self.min_value,
                "start": int(now - TRADE_WINDOW_MS / 1000),
                "limit": MAX_TRANSACTIONS,
            },
            timeout=TIMEOUT_SECONDS,
            use_relay=False,
            label="Whale Alert API",
        )

        if not isinstance(result, dict) or result.get("result") != "success":
            message = result.get("message") if isinstance(result, dict) else None
            raise FetchError(f"Whale Alert API error: {message or 'unexpected response'}")

        raw = result.get("transactions") or []
        transactions = [format_transaction(tx) for tx in raw]
        logger.info(f"[Whale] {len(transactions)} transfers above ${self.min_value:,}")

        return {
            "transactions": transactions,
            "exchangeFlow": calculate_exchange_flow(transactions),
            "count": result.get("count") or len(transactions),
            "cursor": result.get("cursor"),
            "lastUpdate": int(now * 1000),
        }


def trade_value(trade: Dict[str, Any]) -> float:
    if trade.get("tradeValue"):
        return _as_float(trade["tradeValue"])
    return _as_float(trade.get("price")) * _as_float(trade.get("quantity"))


def trade_time_ms(trade: Dict[str, Any]) -> int:
    """Trade time as epoch ms; 0 when missing or unreadable."""
    value = trade.get("timestamp")
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return 0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def _trade_key(trade: Dict[str, Any]) -> str:
    return f"{trade.get('id')}_{trade.get('source') or 'unknown'}"


class WhaleTradeBook:
    """Rolling 24-hour record of large exchange trades."""

    def __init__(self, documents: DocumentStore, clock=time.time):
        self.documents = documents
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _load(self) -> List[Dict[str, Any]]:
        data = await self.documents.get_data(WHALE_TRADES_DOCUMENT)
        if isinstance(data, dict) and isinstance(data.get("trades"), list):
            return data["trades"]
        return []

    async def _save(self, trades: List[Dict[str, Any]], now_ms: int) -> None:
        await self.documents.put(WHALE_TRADES_DOCUMENT, {"trades": trades, "lastUpdate": now_ms}, last_update=now_ms)

    async def record(self, trades: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Add trades worth at least MIN_TRADE_VALUE_USD, skipping ones already held.

        Returns:
            ``{"newTrades", "totalTrades", "message"}``
        """
        valid = [trade for trade in trades if trade_value(trade) >= MIN_TRADE_VALUE_USD]
        if not valid:
            return {"newTrades": 0, "totalTrades": 0, "message": f"No trades worth ${MIN_TRADE_VALUE_USD:,} or more"}

        now_ms = self._now_ms()
        existing = await self._load()
        recent = [trade for trade in existing if trade_time_ms(trade) >= now_ms - TRADE_WINDOW_MS]

        held = {_trade_key(trade) for trade in recent}
        new_trades = []
        for trade in valid:
            key = _trade_key(trade)
            if key not in held:
                held.add(key)
                new_trades.append(trade)

        if not new_trades and len(recent) == len(existing):
            return {"newTrades": 0, "totalTrades": len(recent), "message": "All trades already recorded"}

        if len(recent) != len(existing):
            logger.info(f"[Whale] Pruned {len(existing) - len(recent)} trades older than 24h")

        combined = new_trades + recent
        await self._save(combined, now_ms)
        return {
            "newTrades": len(new_trades),
            "totalTrades": len(combined),
            "message": f"{len(new_trades)} new trades recorded",
        }

    async def recent(self, min_value: float = MIN_TRADE_VALUE_USD) -> List[Dict[str, Any]]:
        """Trades from the last 24h worth at least `min_value`, newest first.

        `min_value` never goes below MIN_TRADE_VALUE_USD. Expired trades are
        pruned from the stored document.
        """
        min_value = max(min_value, MIN_TRADE_VALUE_USD)
        now_ms = self._now_ms()
        cutoff = now_ms - TRADE_WINDOW_MS

        existing = await self._load()
        recent = [trade for trade in existing if trade_time_ms(trade) >= cutoff]
        if len(recent) != len(existing):
            logger.info(f"[Whale] Pruned {len(existing) - len(recent)} trades older than 24h")
            await self._save(recent, now_ms)

        matching = [trade for trade in recent if trade_value(trade) >= min_value]
        matching.sort(key=trade_time_ms, reverse=True)
        return matching[:RECENT_TRADES_LIMIT]
