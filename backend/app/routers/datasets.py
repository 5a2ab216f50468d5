"""Dataset API router.

Provides endpoints for the persisted market datasets:
- Read a stored dataset document
- Trigger an update of a dataset
- Read a coin's supply snapshot history
- Scheduler, relay pool and source status
"""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from ..services.data_updates import DataUpdateService, UnknownDatasetError
from ..services.document_store import DocumentStore
from ..services.scheduler import DataScheduler
from ..services.supply_tracking import MAX_SNAPSHOTS, SnapshotStore
from ..services.proxy_pool import ProxyHealthTracker

router = APIRouter()


class UpdateResponse(BaseModel):
    """Outcome of a dataset update."""
    success: bool
    dataset: str
    count: int
    message: str


class DocumentResponse(BaseModel):
    """Stored dataset document."""
    id: str
    data: Any
    lastUpdate: int
    updatedAt: Optional[str]


class SupplyPoint(BaseModel):
    """Circulating supply of a coin at a snapshot."""
    timestamp: Optional[int]
    bucket_key: str
    supply: float


class SchedulerStatusResponse(BaseModel):
    """Cadence, relay pool and source health."""
    enabled: bool
    jobs: Dict[str, Dict[str, Any]]
    proxies: Dict[str, int]
    sources: Dict[str, Dict[str, Any]]


def get_updates(request: Request) -> DataUpdateService:
    return request.app.state.updates


def get_documents(request: Request) -> DocumentStore:
    return request.app.state.documents


def get_snapshots(request: Request) -> SnapshotStore:
    return request.app.state.snapshots


@router.get("/cache/{dataset}", response_model=DocumentResponse)
async def get_dataset(dataset: str, documents: DocumentStore = Depends(get_documents)):
    """Get the stored document for a dataset."""
    document = await documents.get(dataset)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No stored document for dataset: {dataset}"
        )

    return DocumentResponse(
        id=document["_id"],
        data=document["data"],
        lastUpdate=document["lastUpdate"],
        updatedAt=document["updatedAt"],
    )


@router.get("/supply-snapshots/{coin_id}", response_model=List[SupplyPoint])
async def get_supply_history(
    coin_id: str,
    limit: int = Query(MAX_SNAPSHOTS, ge=1, le=MAX_SNAPSHOTS),
    snapshots: SnapshotStore = Depends(get_snapshots),
):
    """Get a coin's circulating supply across stored snapshots, oldest first."""
    history = await snapshots.coin_history(coin_id, limit=limit)
    if not history:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No supply snapshots for coin: {coin_id}"
        )
    return history


@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status(request: Request, updates: DataUpdateService = Depends(get_updates)):
    """Get the state of each update cadence and of the relay pool."""
    scheduler: DataScheduler = request.app.state.scheduler
    proxy_pool: ProxyHealthTracker = request.app.state.proxy_pool

    return SchedulerStatusResponse(
        enabled=request.app.state.scheduler_enabled,
        jobs=scheduler.status(),
        proxies=proxy_pool.summary(),
        sources=updates.source_statuses(),
    )


@router.post("/{dataset}/update", response_model=UpdateResponse)
async def update_dataset(dataset: str, updates: DataUpdateService = Depends(get_updates)):
    """Fetch a dataset now and store it.

    Returns 404 for an unknown dataset and 502 when the upstream data could
    not be acquired (the stored document is left as it was).
    """
    try:
        result = await updates.run(dataset)
    except UnknownDatasetError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown dataset: {dataset}. Valid datasets: {updates.datasets}"
        )

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.to_dict()
        )

    return UpdateResponse(**result.to_dict())
