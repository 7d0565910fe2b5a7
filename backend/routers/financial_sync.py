"""
Financial Sync API Endpoints

REST API for the financial synchronization engine:
- POST /api/financial-sync/run - Synchronize a window (or preview it with dry_run)
- GET /api/financial-sync/status - Dry-run the window and report whether it is in sync
- GET /api/financial-sync/pending - Pending writes stored by the last full review
- GET /api/financial-sync/health - Module health (no auth)

All endpoints except health require the X-Internal-Api-Key header.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import Settings, get_settings
from middleware.internal_auth import InternalService, require_internal_service
from financial_sync.errors import (
    DataIntegrityError,
    LedgerUnavailable,
    SourceFormatError,
    SourceUnavailable,
)
from financial_sync.models import SyncOptions, SyncResult
from financial_sync.service import FinancialSyncService, parse_window
from financial_sync.tracking import SyncTrackingStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/financial-sync", tags=["Financial Sync"])

UPSTREAM_ERRORS = {
    SourceUnavailable.__name__,
    SourceFormatError.__name__,
    LedgerUnavailable.__name__,
}


# ==================== Request/Response Models ====================

class RunSyncRequest(BaseModel):
    """Request to synchronize a date window."""
    organization_id: str = Field(..., min_length=1, description="Organization owning the ledger rows")
    start_date: str = Field(..., description="First day of the window (YYYY-MM-DD)")
    end_date: str = Field(..., description="Last day of the window (YYYY-MM-DD)")
    dry_run: bool = Field(default=False, description="Preview the changes without writing")
    delete_orphaned: bool = Field(default=False, description="Delete uninvoiced ledger rows with no source record")
    use_pending_only: bool = Field(default=False, description="Apply the plan stored by the last full review")


class PendingSyncResponse(BaseModel):
    """Pending writes stored for a window."""
    organization_id: str
    start_date: str
    end_date: str
    has_pending: bool
    to_create: int
    to_update: int
    to_delete: int
    last_review: Optional[str] = None


# ==================== Dependencies ====================

async def get_sync_service() -> AsyncIterator[FinancialSyncService]:
    """FinancialSyncService wired from settings; closed after the request."""
    service = FinancialSyncService.from_settings()
    try:
        yield service
    finally:
        await service.close()


def get_tracking_store(settings: Settings = Depends(get_settings)) -> SyncTrackingStore:
    return SyncTrackingStore(Path(settings.SYNC_TRACKING_DIR))


def status_code_for(result: SyncResult) -> int:
    """HTTP status for a sync result."""
    if result.success:
        return 200
    if result.error_type == DataIntegrityError.__name__:
        return 409
    if result.error_type in UPSTREAM_ERRORS:
        return 502
    if result.error_type == ValueError.__name__:
        return 400
    return 500


def _validated_window(start_date: str, end_date: str):
    try:
        return parse_window(start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ==================== Endpoints ====================

@router.get("/health", summary="Module health")
async def health():
    """Liveness check for the financial sync module."""
    return {
        "module": "financial_sync",
        "status": "operational",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/run", response_model=SyncResult, summary="Synchronize a window")
async def run_sync(
    request: RunSyncRequest,
    caller: InternalService = Depends(require_internal_service),
    service: FinancialSyncService = Depends(get_sync_service),
):
    """
    Synchronize practice store records into customer_sales for a window.

    Per-record write failures are reported in ``changes.errors`` with a 200.
    Fatal errors return the failed envelope with 502 (a store is unavailable
    or returned malformed data) or 409 (duplicate mappings).
    """
    start, end = _validated_window(request.start_date, request.end_date)
    logger.info(
        f"Financial sync requested by {caller.name} for {request.organization_id} "
        f"{start.isoformat()} to {end.isoformat()} (dry_run={request.dry_run})"
    )

    result = await service.synchronize(
        request.organization_id,
        start,
        end,
        SyncOptions(
            dry_run=request.dry_run,
            delete_orphaned=request.delete_orphaned,
            use_pending_only=request.use_pending_only,
        ),
    )

    code = status_code_for(result)
    if code != 200:
        return JSONResponse(status_code=code, content=result.model_dump(mode="json"))
    return result


@router.get("/status", summary="Sync status for a window")
async def sync_status(
    organization_id: str = Query(..., min_length=1),
    start_date: str = Query(..., description="YYYY-MM-DD"),
    end_date: str = Query(..., description="YYYY-MM-DD"),
    _caller: InternalService = Depends(require_internal_service),
    service: FinancialSyncService = Depends(get_sync_service),
):
    """Dry-run the window and report counts and would-be changes."""
    start, end = _validated_window(start_date, end_date)
    status = await service.get_sync_status(organization_id, start, end)
    if not status["success"]:
        code = status_code_for(SyncResult(success=False, error_type=status.get("error_type")))
        return JSONResponse(status_code=code, content=status)
    return status


@router.get("/pending", response_model=PendingSyncResponse, summary="Pending writes for a window")
async def pending_sync(
    organization_id: str = Query(..., min_length=1),
    start_date: str = Query(..., description="YYYY-MM-DD"),
    end_date: str = Query(..., description="YYYY-MM-DD"),
    _caller: InternalService = Depends(require_internal_service),
    tracking: SyncTrackingStore = Depends(get_tracking_store),
):
    """Summary of the plan stored by the last full review, if any."""
    start, end = _validated_window(start_date, end_date)
    summary = tracking.pending_summary(organization_id, start, end)
    return PendingSyncResponse(
        organization_id=organization_id,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        **summary,
    )
