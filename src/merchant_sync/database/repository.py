"""Repository layer for the merchant sync tables."""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable, Set, Tuple

from sqlalchemy import select, and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from .merge import merge_invoice, merge_transaction
from .models import (
    Invoice,
    Transaction,
    ProductCategory,
    SyncLog,
    MerchantConfig,
    SyncStatus,
    DataSentStatus,
)

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Repository for Transaction rows."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_payment_id(self, mx_payment_id: int) -> Optional[Transaction]:
        result = await self.session.execute(
            select(Transaction).where(Transaction.mx_payment_id == mx_payment_id)
        )
        return result.scalar_one_or_none()

    async def existing_payment_ids(self, mx_payment_ids: Iterable[int]) -> Set[int]:
        """Return the subset of ``mx_payment_ids`` already stored."""
        ids = list(set(mx_payment_ids))
        if not ids:
            return set()
        result = await self.session.execute(
            select(Transaction.mx_payment_id).where(Transaction.mx_payment_id.in_(ids))
        )
        return set(result.scalars().all())

    async def insert_many(self, rows: List[Dict[str, Any]]) -> List[Transaction]:
        """Insert new transactions.

        Args:
            rows: Column mappings produced by the payload mapper.

        Returns:
            The created Transaction instances.

        Raises:
            IntegrityError: On flush if any mx_payment_id already exists.
        """
        created = []
        for fields in rows:
            fields = dict(fields)
            raw = fields.pop("raw_data", None)
            transaction = Transaction(**fields)
            transaction.raw_data = raw
            created.append(transaction)
        self.session.add_all(created)
        await self.session.flush()
        logger.info(f"Inserted {len(created)} transactions")
        return created

    async def upsert(self, fields: Dict[str, Any]) -> Tuple[Transaction, bool]:
        """Insert a transaction or merge it into the stored row.

        Returns:
            Tuple of (Transaction, created).
        """
        existing = await self.get_by_payment_id(fields["mx_payment_id"])
        if existing is None:
            (transaction,) = await self.insert_many([fields])
            return transaction, True

        if merge_transaction(existing, fields):
            existing.updated_at = datetime.utcnow()
            await self.session.flush()
            logger.debug(f"Updated transaction {existing.mx_payment_id}")
        return existing, False

    async def link_to_invoices(
        self,
        merchant_id: Optional[str] = None,
        mx_payment_ids: Optional[Iterable[int]] = None,
    ) -> int:
        """Fill ``invoice_id`` on unlinked transactions.

        Matches on the remote invoice id first, then on the invoice number
        within the same merchant. Already-linked rows are never touched.

        Returns:
            Number of transactions linked.
        """
        conditions = [
            Transaction.invoice_id.is_(None),
            or_(
                Transaction.mx_invoice_id.is_not(None),
                Transaction.mx_invoice_number.is_not(None),
            ),
        ]
        if merchant_id is not None:
            conditions.append(Transaction.merchant_id == merchant_id)
        if mx_payment_ids is not None:
            ids = list(mx_payment_ids)
            if not ids:
                return 0
            conditions.append(Transaction.mx_payment_id.in_(ids))

        result = await self.session.execute(select(Transaction).where(and_(*conditions)))
        candidates = list(result.scalars().all())
        if not candidates:
            return 0

        invoice_ids = {t.mx_invoice_id for t in candidates if t.mx_invoice_id is not None}
        invoice_numbers = {t.mx_invoice_number for t in candidates if t.mx_invoice_number is not None}

        by_id: Dict[int, Invoice] = {}
        if invoice_ids:
            rows = await self.session.execute(
                select(Invoice).where(Invoice.mx_invoice_id.in_(invoice_ids))
            )
            by_id = {inv.mx_invoice_id: inv for inv in rows.scalars().all()}

        by_number: Dict[Tuple[Optional[str], int], Invoice] = {}
        if invoice_numbers:
            rows = await self.session.execute(
                select(Invoice).where(Invoice.invoice_number.in_(invoice_numbers))
            )
            for inv in rows.scalars().all():
                by_number.setdefault((inv.merchant_id, inv.invoice_number), inv)

        linked = 0
        for transaction in candidates:
            invoice = by_id.get(transaction.mx_invoice_id)
            if invoice is None and transaction.mx_invoice_number is not None:
                invoice = by_number.get((transaction.merchant_id, transaction.mx_invoice_number))
            if invoice is None:
                continue
            transaction.invoice_id = invoice.id
            transaction.updated_at = datetime.utcnow()
            linked += 1

        if linked:
            await self.session.flush()
            logger.info(f"Linked {linked} transactions to invoices")
        return linked

    async def list_uncategorized(
        self,
        merchant_id: Optional[str] = None,
        limit: int = 100,
        mx_payment_ids: Optional[Iterable[int]] = None,
        after_id: Optional[str] = None,
    ) -> List[Tuple[Transaction, Invoice]]:
        """Linked transactions whose product name has not been filled yet.

        Rows come back in primary key order. Pass the last id seen as
        ``after_id`` to read the next page.
        """
        query = (
            select(Transaction, Invoice)
            .join(Invoice, Transaction.invoice_id == Invoice.id)
            .where(Transaction.product_name.is_(None))
            .order_by(Transaction.id)
            .limit(limit)
        )
        if after_id is not None:
            query = query.where(Transaction.id > after_id)
        if mx_payment_ids is not None:
            query = query.where(Transaction.mx_payment_id.in_(list(mx_payment_ids)))
        if merchant_id is not None:
            query = query.where(Transaction.merchant_id == merchant_id)
        result = await self.session.execute(query)
        return [(row[0], row[1]) for row in result.all()]


class InvoiceRepository:
    """Repository for Invoice rows."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_mx_id(self, mx_invoice_id: int) -> Optional[Invoice]:
        result = await self.session.execute(
            select(Invoice).where(Invoice.mx_invoice_id == mx_invoice_id)
        )
        return result.scalar_one_or_none()

    async def existing_invoice_ids(self, mx_invoice_ids: Iterable[int]) -> Set[int]:
        """Return the subset of ``mx_invoice_ids`` already stored."""
        ids = list(set(mx_invoice_ids))
        if not ids:
            return set()
        result = await self.session.execute(
            select(Invoice.mx_invoice_id).where(Invoice.mx_invoice_id.in_(ids))
        )
        return set(result.scalars().all())

    async def upsert(self, fields: Dict[str, Any]) -> Tuple[Invoice, bool]:
        """Insert an invoice or merge remote fields into the stored row.

        On insert the workflow status starts as pending. On update the
        workflow fields are left exactly as stored.

        Args:
            fields: Column mapping produced by the payload mapper.

        Returns:
            Tuple of (Invoice, created).
        """
        existing = await self.get_by_mx_id(fields["mx_invoice_id"])
        if existing is not None:
            if merge_invoice(existing, fields):
                existing.updated_at = datetime.utcnow()
                await self.session.flush()
                logger.debug(f"Updated invoice {existing.mx_invoice_id}")
            return existing, False

        fields = dict(fields)
        raw = fields.pop("raw_data", None)
        fields.setdefault("data_sent_status", DataSentStatus.PENDING.value)
        invoice = Invoice(**fields)
        invoice.raw_data = raw
        self.session.add(invoice)
        await self.session.flush()
        logger.info(f"Created invoice {invoice.mx_invoice_id} ({invoice.invoice_number})")
        return invoice, True

    async def set_workflow_status(
        self,
        invoice: Invoice,
        status: str,
        sent_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Invoice:
        """Record that invoice data was (or was not) sent onward.

        Args:
            invoice: Invoice to update.
            status: One of the DataSentStatus values.
            sent_by: Who marked it.
            notes: Free-text notes.

        Returns:
            Updated Invoice instance.

        Raises:
            ValueError: If status is not a known workflow value.
        """
        status = DataSentStatus(status).value
        invoice.data_sent_status = status
        invoice.data_sent_by = sent_by
        invoice.data_sent_notes = notes
        invoice.data_sent_at = datetime.utcnow() if status == DataSentStatus.YES.value else None
        invoice.updated_at = datetime.utcnow()
        await self.session.flush()
        logger.info(f"Invoice {invoice.mx_invoice_id} marked data_sent_status={status}")
        return invoice


class ProductCategoryRepository:
    """Repository for ProductCategory rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_active(self, merchant_id: str, product_name: str) -> Optional[ProductCategory]:
        result = await self.session.execute(
            select(ProductCategory).where(
                and_(
                    ProductCategory.merchant_id == merchant_id,
                    ProductCategory.product_name == product_name,
                    ProductCategory.is_active.is_(True),
                )
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        merchant_id: str,
        product_name: str,
        category: str,
        is_active: bool = True,
    ) -> ProductCategory:
        mapping = ProductCategory(
            merchant_id=merchant_id,
            product_name=product_name,
            category=category,
            is_active=is_active,
        )
        self.session.add(mapping)
        await self.session.flush()
        return mapping


class SyncLogRepository:
    """Repository for SyncLog rows."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(self, sync_type: str, merchant_id: Optional[str] = None) -> SyncLog:
        log = SyncLog(
            sync_type=sync_type,
            merchant_id=merchant_id,
            status=SyncStatus.STARTED.value,
            started_at=datetime.utcnow(),
        )
        self.session.add(log)
        await self.session.flush()
        logger.info(f"Started {sync_type} sync run {log.id} for merchant {merchant_id}")
        return log

    async def get_by_id(self, run_id: str) -> Optional[SyncLog]:
        result = await self.session.execute(select(SyncLog).where(SyncLog.id == run_id))
        return result.scalar_one_or_none()

    async def list_recent(
        self,
        limit: int = 20,
        merchant_id: Optional[str] = None,
    ) -> List[SyncLog]:
        """List sync runs, newest first.

        Args:
            limit: Maximum number of results.
            merchant_id: Optional merchant filter.

        Returns:
            List of SyncLog instances.
        """
        query = select(SyncLog).order_by(SyncLog.started_at.desc()).limit(limit)
        if merchant_id is not None:
            query = query.where(SyncLog.merchant_id == merchant_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def flag_cancel(self, run_id: str) -> bool:
        """Set ``cancel_requested`` on a run that is still going.

        Returns:
            True if a running row was flagged.
        """
        result = await self.session.execute(
            update(SyncLog)
            .where(and_(SyncLog.id == run_id, SyncLog.status == SyncStatus.STARTED.value))
            .values(cancel_requested=True)
        )
        await self.session.flush()
        return result.rowcount > 0


class MerchantConfigRepository:
    """Repository for MerchantConfig rows."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_merchant_id(self, merchant_id: str) -> Optional[MerchantConfig]:
        result = await self.session.execute(
            select(MerchantConfig).where(MerchantConfig.merchant_id == merchant_id)
        )
        return result.scalar_one_or_none()

    async def list_active(self) -> List[MerchantConfig]:
        result = await self.session.execute(
            select(MerchantConfig)
            .where(MerchantConfig.is_active.is_(True))
            .order_by(MerchantConfig.merchant_id)
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        merchant_id: str,
        consumer_key: str,
        consumer_secret: str,
        webhook_secret: Optional[str] = None,
        environment: str = "production",
        is_active: bool = True,
    ) -> MerchantConfig:
        """Create or replace the credentials for a merchant.

        Callers holding a CredentialResolver must invalidate it for this
        merchant afterwards.

        Args:
            merchant_id: Merchant identifier.
            consumer_key: API consumer key.
            consumer_secret: API consumer secret.
            webhook_secret: Shared secret for webhook signatures.
            environment: "production" or "sandbox".
            is_active: Whether syncs may run for this merchant.

        Returns:
            The stored MerchantConfig.
        """
        if environment not in ("production", "sandbox"):
            raise ValueError(f"Unknown environment: {environment}")

        config = await self.get_by_merchant_id(merchant_id)
        if config is None:
            config = MerchantConfig(merchant_id=merchant_id)
            self.session.add(config)

        config.consumer_key = consumer_key
        config.consumer_secret = consumer_secret
        config.webhook_secret = webhook_secret
        config.environment = environment
        config.is_active = is_active
        config.updated_at = datetime.utcnow()

        await self.session.flush()
        logger.info(f"Stored credentials for merchant {merchant_id} ({environment})")
        return config
