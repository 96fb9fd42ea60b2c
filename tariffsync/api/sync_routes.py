"""TariffSync — Sync Trigger Routes.

Each trigger starts its run immediately and lets it finish in the background.
A held lease surfaces as 409 when nothing could be started; a multi-type
trigger that started some runs reports the rest as skipped.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from tariffsync.api.deps import get_context, get_dispatcher, require_api_key
from tariffsync.core.context import ServiceContext
from tariffsync.core.errors import SyncInProgressError
from tariffsync.core.logging import get_logger
from tariffsync.sync.dispatch import SyncDispatcher
from tariffsync.sync.products import ProductSync
from tariffsync.sync.runner import SyncRunner
from tariffsync.sync.tariffs import TariffSync
from tariffsync.sync.updates import UpdateSync

logger = get_logger("api.sync")

router = APIRouter(
    prefix="/sync", tags=["Sync"], dependencies=[Depends(require_api_key)]
)


# ── Response Models ──


class SyncStartedResponse(BaseModel):
    message: str
    run_ids: List[int]
    skipped: List[str] = []
    full_sync: bool = False
    timestamp: datetime


def _start(
    dispatcher: SyncDispatcher, runners: List[SyncRunner]
) -> Tuple[List[int], List[str]]:
    """Dispatch each runner; returns (started run ids, skipped sync types)."""
    run_ids: List[int] = []
    skipped: List[str] = []
    rejected: Optional[SyncInProgressError] = None
    for runner in runners:
        try:
            handle = dispatcher.dispatch(runner)
        except SyncInProgressError as e:
            logger.warning(f"Rejected sync request: {e}")
            skipped.append(e.sync_type)
            rejected = rejected or e
            continue
        run_ids.append(handle.detach().run_id)
    if not run_ids and rejected is not None:
        raise HTTPException(status_code=409, detail=str(rejected))
    return run_ids, skipped


def _started(
    message: str, run_ids: List[int], full: bool = False, skipped: Optional[List[str]] = None
) -> SyncStartedResponse:
    return SyncStartedResponse(
        message=message,
        run_ids=run_ids,
        skipped=skipped or [],
        full_sync=full,
        timestamp=datetime.now(timezone.utc),
    )


# ── Endpoints ──


@router.post("/products", status_code=202, response_model=SyncStartedResponse)
async def sync_products(
    full: bool = Query(False, description="Re-sync every HTS chapter"),
    context: ServiceContext = Depends(get_context),
    dispatcher: SyncDispatcher = Depends(get_dispatcher),
):
    """Start a product sync (incremental unless ``full``)."""
    run_ids, _ = _start(dispatcher, [ProductSync(context, full=full)])
    label = "(full sync) " if full else ""
    return _started(f"Product sync job {label}started successfully", run_ids, full)


@router.post("/tariffs", status_code=202, response_model=SyncStartedResponse)
async def sync_tariffs(
    context: ServiceContext = Depends(get_context),
    dispatcher: SyncDispatcher = Depends(get_dispatcher),
):
    run_ids, _ = _start(dispatcher, [TariffSync(context)])
    return _started("Tariff sync job started successfully", run_ids)


@router.post("/updates", status_code=202, response_model=SyncStartedResponse)
async def sync_updates(
    context: ServiceContext = Depends(get_context),
    dispatcher: SyncDispatcher = Depends(get_dispatcher),
):
    run_ids, _ = _start(dispatcher, [UpdateSync(context)])
    return _started("Updates sync job started successfully", run_ids)


@router.post("/all", status_code=202, response_model=SyncStartedResponse)
async def sync_all(
    full: bool = Query(False),
    context: ServiceContext = Depends(get_context),
    dispatcher: SyncDispatcher = Depends(get_dispatcher),
):
    """Start all three syncs; types whose lease is held are skipped."""
    runners: List[SyncRunner] = [
        ProductSync(context, full=full),
        TariffSync(context),
        UpdateSync(context),
    ]
    run_ids, skipped = _start(dispatcher, runners)
    if skipped:
        message = f"Sync jobs started; already running: {', '.join(skipped)}"
    else:
        message = "All sync jobs started successfully"
    return _started(message, run_ids, full, skipped)
