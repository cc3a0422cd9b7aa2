"""Reconciliation engine: pulls MX Merchant data and converges the local copy."""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..client.models import MerchantCredential, PaymentRecord
from ..client.mx_client import MXMerchantClient
from ..config import SyncSettings, get_settings
from ..database.models import SyncStatus, SyncType
from ..database.repository import MerchantConfigRepository
from ..errors import (
    AuthError,
    PersistenceError,
    RemoteAPIError,
    TransientNetworkError,
    ValidationError,
)
from .audit import SyncAuditRecorder
from .credentials import CredentialResolver
from .mapping import invoice_fields, transaction_fields
from .models import SyncResult
from .writer import SyncWriter

logger = logging.getLogger(__name__)

NO_TRANSACTIONS_NOTE = "No transactions found"
MAX_BATCH_SIZE = 100
MAX_SYNC_COUNT = 1000

ClientFactory = Callable[[MerchantCredential], MXMerchantClient]


class RunCancelled(Exception):
    """Raised inside a run when its audit record has been flagged for cancel."""
    pass


class ReconciliationEngine:
    """
    Pulls transactions and invoices for one merchant and writes the new ones.

    Record and batch failures are collected on the result; only credential
    problems and unexpected errors abort a run.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        credentials: CredentialResolver,
        writer: SyncWriter,
        audit: SyncAuditRecorder,
        settings: Optional[SyncSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the engine.

        Args:
            session_factory: Factory for short-lived database sessions.
            credentials: Resolver for merchant API credentials.
            writer: Shared idempotent write primitives.
            audit: Recorder for sync_logs rows.
            settings: Tunables. Defaults to get_settings().
            client_factory: Builds an API client for a credential.
            sleep: Awaitable used for the delay between batches.
        """
        self.session_factory = session_factory
        self.credentials = credentials
        self.writer = writer
        self.audit = audit
        self.settings = settings or get_settings()
        self.client_factory = client_factory or (
            lambda credential: MXMerchantClient.from_settings(credential, self.settings)
        )
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        return min(self.settings.batch_size, MAX_BATCH_SIZE)

    async def sync_transactions(
        self,
        merchant_id: str,
        count: int = 100,
        date_filter: Optional[str] = None,
    ) -> SyncResult:
        """Pull the latest ``count`` transactions and everything they reference.

        Args:
            merchant_id: Merchant to sync.
            count: Number of most recent transactions to fetch (1-1000).
            date_filter: Optional ``created`` filter passed to the API.

        Returns:
            SyncResult with counts and the collected errors.
        """
        if not 1 <= count <= MAX_SYNC_COUNT:
            raise ValueError(f"count must be between 1 and {MAX_SYNC_COUNT}, got {count}")

        result = SyncResult(merchant_id=merchant_id, sync_type=SyncType.INCREMENTAL)
        result.run_id = await self.audit.start(SyncType.INCREMENTAL, merchant_id)
        logger.info(f"Starting transaction sync {result.run_id} for merchant {merchant_id} (count={count})")

        async def body(client: MXMerchantClient) -> None:
            await self._sync_transactions(client, result, count, date_filter)

        return await self._run(result, body)

    async def sync_invoices(self, merchant_id: str, page_size: Optional[int] = None) -> SyncResult:
        """Pull every invoice page by page, then link and categorise.

        Progress is written to the audit record after each page.

        Args:
            merchant_id: Merchant to sync.
            page_size: Invoices per request. Defaults to the configured page size.

        Returns:
            SyncResult with invoice counts.
        """
        page_size = page_size or self.settings.page_size
        if not 1 <= page_size <= 100:
            raise ValueError(f"page_size must be between 1 and 100, got {page_size}")

        result = SyncResult(merchant_id=merchant_id, sync_type=SyncType.FULL)
        result.run_id = await self.audit.start(SyncType.FULL, merchant_id)
        logger.info(f"Starting full invoice sync {result.run_id} for merchant {merchant_id}")

        async def body(client: MXMerchantClient) -> None:
            await self._sync_invoices(client, result, page_size)

        return await self._run(result, body)

    async def sync_active_merchants(self, count: int = 100) -> List[SyncResult]:
        """Run a transaction sync for every active merchant config, one after another."""
        async with self.session_factory() as session:
            configs = await MerchantConfigRepository(session).list_active()
            merchant_ids = [config.merchant_id for config in configs]

        logger.info(f"Scheduled sync for {len(merchant_ids)} active merchants")
        results = []
        for merchant_id in merchant_ids:
            results.append(await self.sync_transactions(merchant_id, count=count))
        return results

    async def _run(self, result: SyncResult, body: Callable[[MXMerchantClient], Awaitable[None]]) -> SyncResult:
        client: Optional[MXMerchantClient] = None
        cancelled = False
        try:
            credential = await self.credentials.resolve(result.merchant_id)
            client = self.client_factory(credential)
            await body(client)
        except RunCancelled:
            cancelled = True
            result.notes.append("Cancelled on request")
            logger.info(f"Sync run {result.run_id} cancelled")
        except AuthError as e:
            result.add_error(f"Authentication failed: {e}")
            logger.error(f"Sync run {result.run_id} aborted: {e}")
        except RemoteAPIError as e:
            if e.status_code in (401, 403):
                self.credentials.invalidate(result.merchant_id)
                result.add_error(f"Authentication failed: {e}")
            else:
                result.add_error(str(e))
            logger.error(f"Sync run {result.run_id} aborted: {e}")
        except Exception as e:
            logger.exception(f"Sync run {result.run_id} failed: {e}")
            result.add_error(f"{type(e).__name__}: {e}")
        finally:
            if client is not None:
                result.api_calls = client.api_calls
                await client.aclose()

        return await self._finish(result, cancelled)

    async def _finish(self, result: SyncResult, cancelled: bool) -> SyncResult:
        if cancelled:
            result.status = SyncStatus.CANCELLED
        elif result.errors:
            result.status = SyncStatus.FAILED
        else:
            result.status = SyncStatus.COMPLETED
        result.success = result.status is SyncStatus.COMPLETED
        result.completed_at = datetime.utcnow()

        await self.audit.finish(
            result.run_id,
            result.status,
            error_text="; ".join(result.errors) or None,
            records_processed=result.records_processed,
            records_failed=result.records_failed,
            api_calls_made=result.api_calls,
        )
        logger.info(
            f"Sync run {result.run_id} {result.status.value}: "
            f"{result.transactions_new} new / {result.transactions_existing} existing transactions, "
            f"{result.invoices_new} new invoices, {result.links_created} links, "
            f"{len(result.errors)} errors"
        )
        return result

    async def _check_cancel(self, result: SyncResult) -> None:
        if await self.audit.is_cancel_requested(result.run_id):
            raise RunCancelled()

    async def _progress(self, result: SyncResult, client: MXMerchantClient, last_id=None) -> None:
        await self.audit.update(
            result.run_id,
            records_processed=result.records_processed,
            records_failed=result.records_failed,
            api_calls_made=client.api_calls,
            last_processed_id=last_id,
        )

    async def _fetch_transactions(
        self,
        client: MXMerchantClient,
        result: SyncResult,
        count: int,
        date_filter: Optional[str],
    ) -> List[PaymentRecord]:
        records: Dict[int, PaymentRecord] = {}
        async for page in client.iter_transaction_pages(count, self.settings.page_size, date_filter):
            for rejected in page.rejected:
                result.transactions_failed += 1
                result.add_error(f"Transaction {rejected.record_id or '?'} rejected: {rejected.reason}")
            for record in page.records:
                # Offsets shift when payments arrive mid-pull; keep the first copy
                records.setdefault(record.id, record)
            await self._check_cancel(result)
        return list(records.values())

    async def _sync_transactions(
        self,
        client: MXMerchantClient,
        result: SyncResult,
        count: int,
        date_filter: Optional[str],
    ) -> None:
        records = await self._fetch_transactions(client, result, count, date_filter)
        if not records:
            if not result.transactions_failed:
                result.notes.append(NO_TRANSACTIONS_NOTE)
            logger.info(f"No transactions found for merchant {result.merchant_id}")
            return

        existing = await self.writer.existing_payment_ids(r.id for r in records)
        new_records = [r for r in records if r.id not in existing]
        result.transactions_existing = len(existing)
        logger.info(f"{len(new_records)} new of {len(records)} fetched transactions")

        for index in range(0, len(new_records), self.batch_size):
            await self._check_cancel(result)
            if index:
                await self._sleep(self.settings.batch_delay)
            batch = new_records[index:index + self.batch_size]
            rows = [transaction_fields(record, result.merchant_id) for record in batch]
            try:
                created = await self.writer.insert_transactions(rows)
            except PersistenceError as e:
                result.transactions_failed += len(batch)
                result.add_error(f"Transaction batch {index // self.batch_size + 1} failed: {e}")
                logger.error(f"Transaction batch at offset {index} failed: {e}")
            else:
                result.transactions_new += created
                result.transactions_existing += len(batch) - created
            result.transactions_processed = result.transactions_new + result.transactions_existing
            await self._progress(result, client, batch[-1].id)

        result.transactions_processed = result.transactions_new + result.transactions_existing

        invoice_ids = []
        for record in records:
            for invoice_id in record.invoice_ids:
                if invoice_id not in invoice_ids:
                    invoice_ids.append(invoice_id)
        await self._sync_embedded_invoices(client, result, invoice_ids)

        await self._link_and_categorise(result)

    async def _sync_embedded_invoices(self, client: MXMerchantClient, result: SyncResult, invoice_ids: List[int]) -> None:
        if not invoice_ids:
            return
        stored = await self.writer.existing_invoice_ids(invoice_ids)
        missing = [i for i in invoice_ids if i not in stored]
        logger.info(f"{len(missing)} of {len(invoice_ids)} referenced invoices need fetching")

        for position, invoice_id in enumerate(missing):
            if position % self.batch_size == 0:
                await self._check_cancel(result)
            try:
                detail = await client.get_invoice_detail(invoice_id)
                created = await self.writer.upsert_invoice(invoice_fields(detail, result.merchant_id))
            except (RemoteAPIError, TransientNetworkError, ValidationError, PersistenceError) as e:
                result.invoices_failed += 1
                result.add_error(f"Invoice {invoice_id}: {e}")
                logger.warning(f"Failed to sync invoice {invoice_id}: {e}")
                continue
            result.invoices_processed += 1
            result.invoices_new += int(created)

        await self._progress(result, client, missing[-1] if missing else None)

    async def _sync_invoices(self, client: MXMerchantClient, result: SyncResult, page_size: int) -> None:
        page_number = 0
        async for page in client.iter_invoice_pages(page_size):
            page_number += 1
            for rejected in page.rejected:
                result.invoices_failed += 1
                result.add_error(f"Invoice {rejected.record_id or '?'} rejected: {rejected.reason}")

            rows = [invoice_fields(record, result.merchant_id) for record in page.records]
            try:
                created, updated = await self.writer.upsert_invoices(rows)
            except PersistenceError as e:
                result.invoices_failed += len(rows)
                result.add_error(f"Invoice page {page_number} failed: {e}")
                logger.error(f"Invoice page {page_number} failed: {e}")
            else:
                result.invoices_new += created
                result.invoices_processed += created + updated

            last_id = page.records[-1].id if page.records else None
            await self._progress(result, client, last_id)
            logger.info(f"Invoice page {page_number}: {len(rows)} records, {result.invoices_processed} processed so far")

            await self._check_cancel(result)
            if page.received == page_size:
                await self._sleep(self.settings.batch_delay)

        await self._link_and_categorise(result)

    async def _link_and_categorise(self, result: SyncResult) -> None:
        try:
            result.links_created = await self.writer.link(merchant_id=result.merchant_id)
        except PersistenceError as e:
            result.add_error(f"Linking failed: {e}")
            logger.error(f"Linking failed for merchant {result.merchant_id}: {e}")

        try:
            result.products_processed = await self.writer.fill_categories(
                merchant_id=result.merchant_id, page_size=MAX_BATCH_SIZE
            )
        except PersistenceError as e:
            result.add_error(f"Category fill failed: {e}")
            logger.error(f"Category fill failed for merchant {result.merchant_id}: {e}")
