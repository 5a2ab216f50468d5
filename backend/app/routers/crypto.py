"""Per-coin market data read through to CoinGecko."""

from typing import Any, List
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from ..services.fetcher import FetchError, UpstreamStatusError
from ..services.ohlc import OhlcService

router = APIRouter()


class OhlcResponse(BaseModel):
    """OHLC candles: ``[timestamp_ms, open, high, low, close]``."""
    success: bool = True
    coin_id: str
    days: int
    data: List[List[Any]]


def get_ohlc(request: Request) -> OhlcService:
    return request.app.state.ohlc


@router.get("/ohlc/{coin_id}", response_model=OhlcResponse)
async def get_ohlc_data(
    coin_id: str,
    days: int = Query(1, ge=1, le=365),
    ohlc: OhlcService = Depends(get_ohlc),
):
    """Get OHLC candles for a coin over the last `days` days."""
    try:
        data = await ohlc.fetch(coin_id, days)
    except UpstreamStatusError as e:
        if e.status == 404:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown coin: {coin_id}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except FetchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return OhlcResponse(coin_id=coin_id, days=days, data=data)
