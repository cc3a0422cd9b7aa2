"""Result and request models for sync runs."""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field

from ..database.models import SyncStatus, SyncType


class SyncResult(BaseModel):
    """Outcome of one reconciliation run."""
    run_id: Optional[str] = Field(None, description="Audit record of the run")
    merchant_id: str
    sync_type: SyncType = SyncType.INCREMENTAL
    status: SyncStatus = SyncStatus.STARTED
    success: bool = False

    transactions_processed: int = Field(default=0, description="New plus already stored")
    transactions_new: int = 0
    transactions_existing: int = 0
    transactions_failed: int = 0

    invoices_processed: int = 0
    invoices_new: int = 0
    invoices_failed: int = 0

    products_processed: int = 0
    links_created: int = 0
    api_calls: int = 0

    errors: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def records_processed(self) -> int:
        return self.transactions_processed + self.invoices_processed

    @property
    def records_failed(self) -> int:
        return self.transactions_failed + self.invoices_failed

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def to_summary_dict(self) -> Dict[str, Any]:
        """Convert result to a JSON-friendly summary."""
        return {
            "run_id": self.run_id,
            "merchant_id": self.merchant_id,
            "sync_type": self.sync_type.value,
            "status": self.status.value,
            "success": self.success,
            "transactions": {
                "processed": self.transactions_processed,
                "new": self.transactions_new,
                "existing": self.transactions_existing,
                "failed": self.transactions_failed,
            },
            "invoices": {
                "processed": self.invoices_processed,
                "new": self.invoices_new,
                "failed": self.invoices_failed,
            },
            "products_processed": self.products_processed,
            "links_created": self.links_created,
            "api_calls": self.api_calls,
            "errors": self.errors,
            "notes": self.notes,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class WebhookOutcome(BaseModel):
    """What happened to one pushed payment event."""
    success: bool
    run_id: Optional[str] = None
    event_type: Optional[str] = None
    merchant_id: Optional[str] = None
    mx_payment_id: Optional[int] = None
    transaction_created: bool = False
    invoice_created: bool = False
    mx_invoice_id: Optional[int] = None
    product_name: Optional[str] = None
    product_category: Optional[str] = None
    linked: bool = False
    error: Optional[str] = None


class SyncTransactionsRequest(BaseModel):
    """Request body for a manual transaction sync."""
    merchant_id: str = Field(..., min_length=1)
    count: int = Field(default=100, ge=1, le=1000, description="Latest N transactions to pull")
    date_filter: Optional[str] = Field(None, description="Passed to the API as the created filter")


class SyncInvoicesRequest(BaseModel):
    """Request body for a full invoice pull."""
    merchant_id: str = Field(..., min_length=1)
    page_size: int = Field(default=100, ge=1, le=100)


class SyncLogResponse(BaseModel):
    """Audit record as returned over HTTP."""
    id: str
    merchant_id: Optional[str] = None
    sync_type: str
    status: str
    records_processed: int = 0
    records_failed: int = 0
    api_calls_made: int = 0
    last_processed_id: Optional[str] = None
    error_message: Optional[str] = None
    cancel_requested: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
