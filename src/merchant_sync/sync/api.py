"""API endpoints for triggering and inspecting sync runs."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..auth import verify_api_key, verify_cron_secret, limiter
from ..database.session import get_async_session_factory
from .models import SyncInvoicesRequest, SyncLogResponse, SyncTransactionsRequest
from .service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

_service: Optional[SyncService] = None


def get_sync_service() -> SyncService:
    """Process-wide SyncService over the global session factory."""
    global _service
    if _service is None:
        _service = SyncService(get_async_session_factory())
    return _service


def reset_sync_service() -> None:
    global _service
    _service = None


@router.post("/transactions")
@limiter.limit("30/minute")
async def sync_transactions(
    request: Request,
    body: SyncTransactionsRequest,
    service: SyncService = Depends(get_sync_service),
    api_key: str = Depends(verify_api_key),
):
    """
    Pull the latest ``count`` transactions for a merchant.

    Fetches invoices the new transactions reference, links them and fills
    product categories. Record-level failures are reported in ``errors``.
    """
    logger.info(f"Manual transaction sync for merchant {body.merchant_id} (count={body.count})")
    result = await service.engine.sync_transactions(
        body.merchant_id,
        count=body.count,
        date_filter=body.date_filter,
    )
    return result.to_summary_dict()


@router.post("/invoices")
@limiter.limit("10/minute")
async def sync_invoices(
    request: Request,
    body: SyncInvoicesRequest,
    service: SyncService = Depends(get_sync_service),
    api_key: str = Depends(verify_api_key),
):
    """Pull every invoice for a merchant, page by page."""
    logger.info(f"Manual invoice sync for merchant {body.merchant_id}")
    result = await service.engine.sync_invoices(body.merchant_id, page_size=body.page_size)
    return result.to_summary_dict()


@router.get("/logs", response_model=List[SyncLogResponse])
async def list_sync_logs(
    limit: int = Query(default=20, ge=1, le=200),
    merchant_id: Optional[str] = Query(default=None),
    service: SyncService = Depends(get_sync_service),
    api_key: str = Depends(verify_api_key),
):
    """Most recent sync runs, newest first."""
    logs = await service.audit.recent(limit=limit, merchant_id=merchant_id)
    return [SyncLogResponse.model_validate(log) for log in logs]


@router.post("/runs/{run_id}/cancel")
async def cancel_sync_run(
    run_id: str,
    service: SyncService = Depends(get_sync_service),
    api_key: str = Depends(verify_api_key),
):
    """Ask a running sync to stop at its next page or batch boundary."""
    if not await service.audit.request_cancel(run_id):
        log = await service.audit.get(run_id)
        if log is None:
            raise HTTPException(status_code=404, detail="Sync run not found")
        raise HTTPException(status_code=409, detail=f"Sync run already {log.status}")
    return {"run_id": run_id, "cancel_requested": True}


@router.get("/cron")
async def scheduled_sync(
    count: int = Query(default=100, ge=1, le=1000),
    service: SyncService = Depends(get_sync_service),
    secret: str = Depends(verify_cron_secret),
):
    """Incremental sync of the latest transactions for every active merchant."""
    results = await service.engine.sync_active_merchants(count=count)
    return {
        "merchants": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "results": [r.to_summary_dict() for r in results],
    }


@router.get("/health")
async def sync_health():
    """Health check endpoint for the sync service."""
    return {"status": "healthy", "service": "merchant-sync"}
