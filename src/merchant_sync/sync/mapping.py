"""Map validated MX Merchant payloads onto storage rows."""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..client.models import InvoiceDetail, PaymentRecord

# Card fields that must never reach storage
SENSITIVE_CARD_FIELDS = ("number", "cardNumber", "cvv", "cvv2", "trackData", "expiryMonth", "expiryYear")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to naive UTC, the form every DateTime column stores."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def redact_payment_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``payload`` with card secrets removed from ``cardAccount``."""
    cleaned = copy.deepcopy(payload)
    card = cleaned.get("cardAccount")
    if isinstance(card, dict):
        for field in SENSITIVE_CARD_FIELDS:
            card.pop(field, None)
    return cleaned


def _last4(record: PaymentRecord) -> Optional[str]:
    if record.card_account is None or not record.card_account.last4:
        return None
    digits = "".join(ch for ch in record.card_account.last4 if ch.isdigit())
    return digits[-4:] or None


def transaction_fields(record: PaymentRecord, merchant_id: str) -> Dict[str, Any]:
    """
    Build the ``transactions`` column mapping for a payment.

    Args:
        record: Validated payment payload.
        merchant_id: Tenant the run is for. The payload's own merchantId
            stays in raw_data.

    Returns:
        Column name to value mapping, ``raw_data`` included.
    """
    card = record.card_account
    return {
        "mx_payment_id": record.id,
        "merchant_id": merchant_id,
        "amount": record.amount,
        "currency": record.currency,
        "status": record.status,
        "transaction_date": to_naive_utc(record.created),
        "customer_name": record.customer_name,
        "customer_code": record.customer_code,
        "card_type": card.card_type if card else None,
        "card_last4": _last4(record),
        "auth_code": record.auth_code,
        "auth_message": record.auth_message,
        "response_code": record.response_code,
        "reference_number": record.reference,
        "client_reference": record.client_reference,
        "tax_amount": record.tax,
        "surcharge_amount": record.surcharge_amount,
        "surcharge_label": record.surcharge_label,
        "refunded_amount": record.refunded_amount,
        "settled_amount": record.settled_amount,
        "tender_type": record.tender_type,
        "transaction_type": record.type,
        "source": record.source,
        "batch": record.batch,
        "mx_invoice_id": record.primary_invoice_id,
        "mx_invoice_number": record.invoice_number,
        "raw_data": redact_payment_payload(record.raw or record.model_dump(by_alias=True, mode="json")),
    }


def invoice_fields(record: InvoiceDetail, merchant_id: str) -> Dict[str, Any]:
    """Build the ``invoices`` column mapping. Workflow fields are left out."""
    customer = record.customer
    return {
        "mx_invoice_id": record.id,
        "merchant_id": merchant_id,
        "invoice_number": record.invoice_number,
        "customer_name": record.customer_name or (customer.name if customer else None),
        "customer_number": record.customer_number,
        "customer_id": customer.id if customer else None,
        "status": record.status,
        "invoice_date": to_naive_utc(record.invoice_date),
        "due_date": to_naive_utc(record.due_date),
        "api_created": to_naive_utc(record.created),
        "subtotal_amount": record.sub_total_amount,
        "tax_amount": record.tax_amount,
        "discount_amount": record.discount_amount,
        "total_amount": record.total_amount,
        "balance": record.balance,
        "paid_amount": record.paid_amount,
        "currency": record.currency,
        "receipt_number": record.receipt_number,
        "quantity": record.quantity,
        "return_quantity": record.return_quantity,
        "return_status": record.return_status,
        "source_type": record.source_type,
        "invoice_type": record.type,
        "terms": record.terms,
        "memo": record.memo,
        "is_tax_exempt": record.is_tax_exempt,
        "raw_data": record.raw or record.model_dump(by_alias=True, mode="json"),
    }
