"""Persistence for the local copy of merchant transactions and invoices."""

from .models import (
    Base,
    Invoice,
    Transaction,
    ProductCategory,
    SyncLog,
    MerchantConfig,
    SyncType,
    SyncStatus,
    DataSentStatus,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    create_tables,
    make_session_factory,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    TransactionRepository,
    InvoiceRepository,
    ProductCategoryRepository,
    SyncLogRepository,
    MerchantConfigRepository,
)
from .merge import merge_remote_fields, merge_invoice, merge_transaction

__all__ = [
    # Models
    "Base",
    "Invoice",
    "Transaction",
    "ProductCategory",
    "SyncLog",
    "MerchantConfig",
    "SyncType",
    "SyncStatus",
    "DataSentStatus",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "create_tables",
    "make_session_factory",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "TransactionRepository",
    "InvoiceRepository",
    "ProductCategoryRepository",
    "SyncLogRepository",
    "MerchantConfigRepository",
    # Merge
    "merge_remote_fields",
    "merge_invoice",
    "merge_transaction",
]
