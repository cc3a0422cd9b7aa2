"""MX Merchant API client."""

from .models import (
    CardAccount,
    InvoiceCustomer,
    InvoiceDetail,
    InvoicePage,
    MerchantCredential,
    PaymentPage,
    PaymentRecord,
    Purchase,
    RejectedRecord,
    WebhookEvent,
)
from .mx_client import MXMerchantClient, basic_auth_header
from .retry import RETRYABLE_STATUS, send_with_retry

__all__ = [
    "CardAccount",
    "InvoiceCustomer",
    "InvoiceDetail",
    "InvoicePage",
    "MerchantCredential",
    "PaymentPage",
    "PaymentRecord",
    "Purchase",
    "RejectedRecord",
    "WebhookEvent",
    "MXMerchantClient",
    "basic_auth_header",
    "RETRYABLE_STATUS",
    "send_with_retry",
]
