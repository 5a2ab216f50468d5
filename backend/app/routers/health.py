"""Health check router."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    feed = getattr(request.app.state, "change_feed", None)
    return {
        "status": "ok",
        "service": "marketdata",
        "version": "1.0.0",
        "websocket_clients": feed.client_count if feed else 0,
    }
