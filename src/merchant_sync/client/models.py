"""Payload schemas for the MX Merchant checkout API.

Every optional remote field is declared ``Optional`` so an absent key maps
to ``None`` instead of a fabricated default. Unknown keys are allowed and
kept, so the stored ``raw_data`` stays a faithful copy of what was sent.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PrivateAttr, field_validator


def _to_str(value: Any) -> Any:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


def _to_datetime(value: Any) -> Any:
    # Date-only values ("2024-01-15") appear on invoice date fields
    if isinstance(value, str) and len(value) == 10 and value[4] == "-":
        return f"{value}T00:00:00"
    if value == "":
        return None
    return value


LooseStr = Annotated[Optional[str], BeforeValidator(_to_str)]
RemoteDateTime = Annotated[Optional[datetime], BeforeValidator(_to_datetime)]


class RemoteModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    _raw: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]):
        """Validate a decoded JSON object and keep the original alongside."""
        record = cls.model_validate(payload)
        record._raw = payload
        return record

    @property
    def raw(self) -> Dict[str, Any]:
        return self._raw


class CardAccount(RemoteModel):
    card_type: LooseStr = Field(None, alias="cardType")
    last4: LooseStr = None
    token: LooseStr = None


class PaymentRecord(RemoteModel):
    """A payment as returned by ``/checkout/v3/payment``."""
    id: int
    amount: Decimal = Field(..., ge=0)
    created: RemoteDateTime = None
    status: LooseStr = None
    invoice_ids: List[int] = Field(default_factory=list, alias="invoiceIds")
    invoice: LooseStr = Field(None, description="Invoice number as carried by the payment")
    client_reference: LooseStr = Field(None, alias="clientReference")
    customer_name: LooseStr = Field(None, alias="customerName")
    customer_code: LooseStr = Field(None, alias="customerCode")
    auth_code: LooseStr = Field(None, alias="authCode")
    auth_message: LooseStr = Field(None, alias="authMessage")
    response_code: LooseStr = Field(None, alias="responseCode")
    reference: LooseStr = None
    card_account: Optional[CardAccount] = Field(None, alias="cardAccount")
    currency: LooseStr = None
    tax: Optional[Decimal] = Field(None, ge=0)
    surcharge_amount: Optional[Decimal] = Field(None, ge=0, alias="surchargeAmount")
    surcharge_label: LooseStr = Field(None, alias="surchargeLabel")
    refunded_amount: Optional[Decimal] = Field(None, ge=0, alias="refundedAmount")
    settled_amount: Optional[Decimal] = Field(None, ge=0, alias="settledAmount")
    tender_type: LooseStr = Field(None, alias="tenderType")
    type: LooseStr = None
    source: LooseStr = None
    batch: LooseStr = None
    merchant_id: LooseStr = Field(None, alias="merchantId")

    @field_validator("invoice_ids", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def primary_invoice_id(self) -> Optional[int]:
        """First embedded invoice id. Later ids are fetched but never linked."""
        return self.invoice_ids[0] if self.invoice_ids else None

    @property
    def invoice_number(self) -> Optional[int]:
        if self.invoice and self.invoice.strip().isdigit():
            return int(self.invoice.strip())
        return None


class Purchase(RemoteModel):
    """Invoice line item."""
    product_name: LooseStr = Field(None, alias="productName")
    price: Optional[Decimal] = None
    quantity: Optional[Decimal] = None


class InvoiceCustomer(RemoteModel):
    id: Optional[int] = None
    name: LooseStr = None


class InvoiceDetail(RemoteModel):
    """An invoice as returned by ``/checkout/v3/invoice``."""
    id: int
    invoice_number: Optional[int] = Field(None, alias="invoiceNumber")
    customer_name: LooseStr = Field(None, alias="customerName")
    customer_number: LooseStr = Field(None, alias="customerNumber")
    customer: Optional[InvoiceCustomer] = None
    status: LooseStr = None
    total_amount: Optional[Decimal] = Field(None, alias="totalAmount")
    sub_total_amount: Optional[Decimal] = Field(None, alias="subTotalAmount")
    balance: Optional[Decimal] = Field(None, ge=0)
    paid_amount: Optional[Decimal] = Field(None, ge=0, alias="paidAmount")
    tax_amount: Optional[Decimal] = Field(None, alias="taxAmount")
    discount_amount: Optional[Decimal] = Field(None, alias="discountAmount")
    invoice_date: RemoteDateTime = Field(None, alias="invoiceDate")
    due_date: RemoteDateTime = Field(None, alias="dueDate")
    created: RemoteDateTime = None
    receipt_number: LooseStr = Field(None, alias="receiptNumber")
    quantity: Optional[int] = None
    return_quantity: Optional[int] = Field(None, alias="returnQuantity")
    return_status: LooseStr = Field(None, alias="returnStatus")
    merchant_id: LooseStr = Field(None, alias="merchantId")
    source_type: LooseStr = Field(None, alias="sourceType")
    type: LooseStr = None
    terms: LooseStr = None
    memo: LooseStr = None
    is_tax_exempt: Optional[bool] = Field(None, alias="isTaxExempt")
    currency: LooseStr = None
    purchases: List[Purchase] = Field(default_factory=list)

    @field_validator("purchases", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class RejectedRecord(BaseModel):
    """A list-page record that failed schema validation."""
    record_id: Optional[str] = None
    reason: str
    payload: Any = None


class PaymentPage(BaseModel):
    records: List[PaymentRecord] = Field(default_factory=list)
    rejected: List[RejectedRecord] = Field(default_factory=list)
    record_count: Optional[int] = None
    limit: int
    offset: int = 0
    received: int = Field(0, description="Records on the page before validation")


class InvoicePage(BaseModel):
    records: List[InvoiceDetail] = Field(default_factory=list)
    rejected: List[RejectedRecord] = Field(default_factory=list)
    record_count: Optional[int] = None
    limit: int
    offset: int = 0
    received: int = Field(0, description="Records on the page before validation")


class WebhookEvent(RemoteModel):
    """Push notification body. Money fields in it are never trusted."""
    event_type: LooseStr = Field(None, alias="eventType")
    id: int
    merchant_id: LooseStr = Field(None, alias="merchantId")


class MerchantCredential(BaseModel):
    """Resolved API credentials for one merchant."""
    merchant_id: str
    consumer_key: str = Field(..., repr=False)
    consumer_secret: str = Field(..., repr=False)
    environment: str = "production"
    webhook_secret: Optional[str] = Field(None, repr=False)
