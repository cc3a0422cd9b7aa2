"""SQLAlchemy models for the local copy of MX Merchant data."""

import uuid
import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


MONEY = Numeric(12, 2, asdecimal=True)


class SyncType(str, enum.Enum):
    """Kinds of synchronization run recorded in the audit log."""
    FULL = "full"
    INCREMENTAL = "incremental"
    WEBHOOK = "webhook"


class SyncStatus(str, enum.Enum):
    """Sync run states. Everything except STARTED is terminal."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.STARTED


class DataSentStatus(str, enum.Enum):
    """Values of the locally-owned invoice workflow field."""
    PENDING = "pending"
    YES = "yes"
    NO = "no"


class JSONPayloadMixin:
    """Stores the remote payload as JSON text in ``raw_data_json``."""

    raw_data_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def raw_data(self) -> Optional[Dict[str, Any]]:
        """Get the stored payload as dictionary."""
        if self.raw_data_json:
            return json.loads(self.raw_data_json)
        return None

    @raw_data.setter
    def raw_data(self, value: Optional[Dict[str, Any]]) -> None:
        """Set the stored payload from dictionary."""
        self.raw_data_json = dump_payload(value)


def dump_payload(value: Optional[Dict[str, Any]]) -> Optional[str]:
    """Serialize a payload deterministically so equal payloads compare equal."""
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


class Invoice(JSONPayloadMixin, Base):
    """Invoice mirrored from the processor plus local workflow fields."""
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    mx_invoice_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    merchant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    invoice_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    invoice_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    api_created: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    subtotal_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    tax_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    discount_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    total_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    balance: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    paid_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    receipt_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    return_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    return_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    source_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    invoice_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    terms: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    memo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_tax_exempt: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Workflow fields, owned by people using the app, never by a sync
    data_sent_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DataSentStatus.PENDING.value
    )
    data_sent_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    data_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    data_sent_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ordered_by_provider_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions: Mapped[List["Transaction"]] = relationship("Transaction", back_populates="invoice")

    __table_args__ = (
        Index("ix_invoices_invoice_number", "invoice_number"),
        Index("ix_invoices_merchant_id", "merchant_id"),
        Index("ix_invoices_data_sent_status", "data_sent_status"),
        CheckConstraint("balance >= 0", name="ck_invoices_balance_non_negative"),
        CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_amount_non_negative"),
    )

    @property
    def purchases(self) -> List[Dict[str, Any]]:
        """Line items embedded in the stored invoice detail payload."""
        payload = self.raw_data or {}
        items = payload.get("purchases")
        return items if isinstance(items, list) else []

    def to_dict(self) -> Dict[str, Any]:
        """Convert invoice to dictionary representation."""
        return {
            "id": self.id,
            "mx_invoice_id": self.mx_invoice_id,
            "invoice_number": self.invoice_number,
            "merchant_id": self.merchant_id,
            "customer_name": self.customer_name,
            "status": self.status,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
            "balance": str(self.balance) if self.balance is not None else None,
            "paid_amount": str(self.paid_amount) if self.paid_amount is not None else None,
            "currency": self.currency,
            "invoice_date": self.invoice_date.isoformat() if self.invoice_date else None,
            "data_sent_status": self.data_sent_status,
            "data_sent_by": self.data_sent_by,
            "data_sent_at": self.data_sent_at.isoformat() if self.data_sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Transaction(JSONPayloadMixin, Base):
    """Payment event mirrored from the processor."""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    mx_payment_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    merchant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transaction_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    card_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    card_last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    auth_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    auth_message: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    response_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    client_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    tax_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    surcharge_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    surcharge_label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refunded_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    settled_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    tender_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transaction_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    batch: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Invoice reference as carried by the payment itself
    mx_invoice_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mx_invoice_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    # Derived locally
    invoice_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("invoices.id"), nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    invoice: Mapped[Optional["Invoice"]] = relationship("Invoice", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_merchant_id", "merchant_id"),
        Index("ix_transactions_mx_invoice_id", "mx_invoice_id"),
        Index("ix_transactions_transaction_date", "transaction_date"),
        Index("ix_transactions_invoice_id", "invoice_id"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint("refunded_amount >= 0", name="ck_transactions_refunded_amount_non_negative"),
        CheckConstraint("settled_amount >= 0", name="ck_transactions_settled_amount_non_negative"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert transaction to dictionary representation."""
        return {
            "id": self.id,
            "mx_payment_id": self.mx_payment_id,
            "merchant_id": self.merchant_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "status": self.status,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "customer_name": self.customer_name,
            "card_type": self.card_type,
            "card_last4": self.card_last4,
            "mx_invoice_id": self.mx_invoice_id,
            "mx_invoice_number": self.mx_invoice_number,
            "invoice_id": self.invoice_id,
            "product_name": self.product_name,
            "product_category": self.product_category,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ProductCategory(Base):
    """Per-merchant mapping from product name to reporting category."""
    __tablename__ = "product_categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("merchant_id", "product_name", name="uq_product_categories_merchant_product"),
    )


class SyncLog(Base):
    """One row per synchronization attempt."""
    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncStatus.STARTED.value)

    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    api_calls_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_processed_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_logs_started_at", "started_at"),
        Index("ix_sync_logs_status", "status"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert sync log to dictionary representation."""
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "sync_type": self.sync_type,
            "status": self.status,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "api_calls_made": self.api_calls_made,
            "last_processed_id": self.last_processed_id,
            "error_message": self.error_message,
            "cancel_requested": self.cancel_requested,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class MerchantConfig(Base):
    """API credentials for one merchant."""
    __tablename__ = "merchant_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    consumer_key: Mapped[str] = mapped_column(String(255), nullable=False)
    consumer_secret: Mapped[str] = mapped_column(String(255), nullable=False)
    webhook_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    environment: Mapped[str] = mapped_column(String(20), nullable=False, default="production")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
