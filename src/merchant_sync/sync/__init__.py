"""Synchronization of MX Merchant transactions and invoices.

This module keeps a local, queryable copy of a merchant's payment data:
- Paginated pulls of the latest transactions and of every invoice
- Idempotent writes that never touch locally-owned workflow fields
- Transaction to invoice linking and product category resolution
- Verified webhook ingestion that converges with scheduled syncs
- An audit record for every run
"""

from .audit import SyncAuditRecorder
from .categories import CategoryResolver, DEFAULT_CATEGORY
from .credentials import CredentialResolver, DatabaseCredentialSource
from .engine import ReconciliationEngine
from .models import SyncResult, WebhookOutcome
from .service import SyncService
from .webhook import WebhookIngestor, compute_signature, verify_signature, SIGNATURE_HEADER
from .writer import SyncWriter

__all__ = [
    # Models
    "SyncResult",
    "WebhookOutcome",
    # Components
    "CredentialResolver",
    "DatabaseCredentialSource",
    "CategoryResolver",
    "DEFAULT_CATEGORY",
    "SyncAuditRecorder",
    "SyncWriter",
    "ReconciliationEngine",
    "WebhookIngestor",
    "SyncService",
    # Signatures
    "compute_signature",
    "verify_signature",
    "SIGNATURE_HEADER",
]
