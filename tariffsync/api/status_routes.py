"""TariffSync — Status Routes."""

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from tariffsync.api.deps import get_context, require_api_key
from tariffsync.core.cache import CacheTier
from tariffsync.core.context import ServiceContext
from tariffsync.core.logging import get_logger
from tariffsync.models.db_models import SyncRun, SyncType
from tariffsync.services.sync_service import (
    clear_cache,
    database_stats,
    get_cache_stats,
    list_sync_runs,
)

logger = get_logger("api.status")

router = APIRouter(
    prefix="/status", tags=["Status"], dependencies=[Depends(require_api_key)]
)


@router.get("/sync")
async def sync_status(
    type: Optional[SyncType] = Query(None, description="Filter by sync type"),
    context: ServiceContext = Depends(get_context),
):
    """Last 10 sync runs, newest first."""
    runs: List[SyncRun] = list_sync_runs(context, sync_type=type, limit=10)
    return {"data": [run.model_dump() for run in runs]}


@router.get("/cache")
async def cache_status(context: ServiceContext = Depends(get_context)):
    return {"data": get_cache_stats(context)}


@router.post("/cache/clear")
async def cache_clear(
    type: Optional[str] = Query(None, description="short, default or long; absent clears all"),
    context: ServiceContext = Depends(get_context),
):
    if type is not None and type not in {t.value for t in CacheTier}:
        raise HTTPException(status_code=400, detail=f"Unknown cache tier: {type}")
    clear_cache(context, type)
    logger.info(f"Cache{f' ({type})' if type else ''} cleared")
    return {
        "message": f"Cache{f' ({type})' if type else ''} cleared successfully",
        "timestamp": datetime.now(timezone.utc),
    }


@router.get("/database")
async def database_status(context: ServiceContext = Depends(get_context)):
    return {"data": {"counts": database_stats(context)}}
