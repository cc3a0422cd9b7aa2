# merchant_sync package
__version__ = "0.1.0"

from .database import (
    Transaction,
    Invoice,
    ProductCategory,
    SyncLog,
    MerchantConfig,
    SyncStatus,
    SyncType,
    init_db,
    close_db,
    get_db,
)
from .client import MXMerchantClient, MerchantCredential
from .errors import (
    SyncError,
    AuthError,
    TransientNetworkError,
    RemoteAPIError,
    ValidationError,
    PersistenceError,
    WebhookSignatureError,
    SyncRunStateError,
)

# Sync exports
from .sync import (
    SyncService,
    ReconciliationEngine,
    WebhookIngestor,
    SyncResult,
    WebhookOutcome,
    CredentialResolver,
    CategoryResolver,
    SyncAuditRecorder,
)
