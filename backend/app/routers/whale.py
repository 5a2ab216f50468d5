"""Whale trade API router.

Large exchange trades are posted by clients watching exchange streams and
kept for 24 hours. Whale Alert transfers are a regular dataset
(``POST /api/whale_transactions/update``, ``GET /api/cache/whale_transactions``).
"""

from typing import Any, Dict, List
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ..services.whale import MIN_TRADE_VALUE_USD, WhaleTradeBook

router = APIRouter()


class TradesRequest(BaseModel):
    """Trades to record."""
    trades: List[Dict[str, Any]]


class RecordTradesResponse(BaseModel):
    """Outcome of recording trades."""
    success: bool = True
    message: str
    newTrades: int
    totalTrades: int


class RecentTradesResponse(BaseModel):
    """Recent whale trades, newest first."""
    success: bool = True
    trades: List[Dict[str, Any]]
    total: int
    minValue: float
    timeRange: str = "24 hours"


def get_trade_book(request: Request) -> WhaleTradeBook:
    return request.app.state.whale_trades


@router.get("/recent-trades", response_model=RecentTradesResponse)
async def get_recent_trades(
    min_value: float = Query(MIN_TRADE_VALUE_USD, ge=0, alias="minValue"),
    book: WhaleTradeBook = Depends(get_trade_book),
):
    """Get trades from the last 24 hours worth at least `minValue` USD."""
    min_value = max(min_value, MIN_TRADE_VALUE_USD)
    trades = await book.recent(min_value)
    return RecentTradesResponse(trades=trades, total=len(trades), minValue=min_value)


@router.post("/trades", response_model=RecordTradesResponse)
async def record_trades(body: TradesRequest, book: WhaleTradeBook = Depends(get_trade_book)):
    """Record trades; smaller ones and ones already held are skipped."""
    result = await book.record(body.trades)
    return RecordTradesResponse(**result)
