"""Exception hierarchy for the merchant sync engine."""

from typing import Optional


class SyncError(Exception):
    """Base class for all merchant sync errors."""
    pass


class AuthError(SyncError):
    """Missing, inactive or rejected merchant credentials. Fatal to a run."""

    def __init__(self, message: str, merchant_id: Optional[str] = None):
        super().__init__(message)
        self.merchant_id = merchant_id


class TransientNetworkError(SyncError):
    """Network-level failure talking to the remote API (timeouts, resets)."""
    pass


class RemoteAPIError(SyncError):
    """The remote API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", url: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"MX Merchant API error: {status_code} - {body[:500]}")


class ValidationError(SyncError):
    """A remote record does not have the shape the engine expects."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class PersistenceError(SyncError):
    """A storage write failed."""
    pass


class WebhookSignatureError(SyncError):
    """Webhook signature missing or not matching the merchant's secret."""
    pass


class SyncRunStateError(RuntimeError):
    """Illegal transition of a sync run record (e.g. finishing it twice)."""
    pass
