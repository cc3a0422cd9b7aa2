"""FastAPI application: MX Merchant webhook receiver plus the sync endpoints."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from .auth import limiter
from .database.session import close_db, init_db
from .errors import ValidationError, WebhookSignatureError
from .sync.api import get_sync_service, reset_sync_service, router as sync_router
from .sync.service import SyncService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    reset_sync_service()
    await close_db()


app = FastAPI(title="Merchant Sync", lifespan=lifespan)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {request.client.host if request.client else 'unknown'}: {exc.detail}")
    return JSONResponse(status_code=429, content={"detail": f"Rate limit exceeded: {exc.detail}"})


app.include_router(sync_router)


@app.post("/webhook")
@limiter.limit("120/minute")
async def mx_webhook(
    request: Request,
    x_mx_signature: Optional[str] = Header(None),
    service: SyncService = Depends(get_sync_service),
):
    """
    Receive a payment event from MX Merchant.

    The raw body is verified against the merchant's webhook secret before
    anything is fetched or written.
    """
    body = await request.body()
    try:
        outcome = await service.webhooks.handle_event(body, x_mx_signature)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except WebhookSignatureError:
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    if not outcome.success:
        return JSONResponse(status_code=500, content=outcome.model_dump(mode="json"))
    return outcome.model_dump(mode="json")


@app.get("/health")
async def health():
    return {"status": "healthy"}
