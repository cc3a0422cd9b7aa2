"""Write primitives shared by the reconciliation engine and the webhook ingestor.

Every public method runs in its own short database transaction, so work
that has been written stays written when a later step fails.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database.merge import merge_transaction
from ..database.repository import InvoiceRepository, TransactionRepository
from ..errors import PersistenceError
from .categories import CategoryResolver

logger = logging.getLogger(__name__)


class SyncWriter:
    """Idempotent writes keyed on the remote ids."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        categories: CategoryResolver,
    ):
        self.session_factory = session_factory
        self.categories = categories

    async def existing_payment_ids(self, mx_payment_ids: Iterable[int]) -> Set[int]:
        try:
            async with self.session_factory() as session:
                return await TransactionRepository(session).existing_payment_ids(mx_payment_ids)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read stored transaction ids: {e}") from e

    async def get_transaction(self, mx_payment_id: int):
        async with self.session_factory() as session:
            return await TransactionRepository(session).get_by_payment_id(mx_payment_id)

    async def existing_invoice_ids(self, mx_invoice_ids: Iterable[int]) -> Set[int]:
        try:
            async with self.session_factory() as session:
                return await InvoiceRepository(session).existing_invoice_ids(mx_invoice_ids)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read stored invoice ids: {e}") from e

    async def insert_transactions(self, rows: List[Dict[str, Any]]) -> int:
        """
        Insert a batch of transactions believed to be new.

        If another writer stored one of them in the meantime, the batch is
        retried once row by row through the merge upsert.

        Args:
            rows: Column mappings from ``transaction_fields``.

        Returns:
            Number of rows this call created.

        Raises:
            PersistenceError: If the batch could not be written.
        """
        if not rows:
            return 0
        try:
            async with self.session_factory() as session, session.begin():
                await TransactionRepository(session).insert_many(rows)
            return len(rows)
        except IntegrityError as e:
            logger.warning(f"Unique conflict inserting {len(rows)} transactions, retrying through merge: {e.orig}")
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert {len(rows)} transactions: {e}") from e

        try:
            created = 0
            async with self.session_factory() as session, session.begin():
                repo = TransactionRepository(session)
                for fields in rows:
                    _, was_created = await repo.upsert(fields)
                    created += int(was_created)
            return created
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert {len(rows)} transactions: {e}") from e

    async def upsert_transaction(self, fields: Dict[str, Any]) -> bool:
        """
        Insert or merge one transaction.

        Returns:
            True if the row was created.
        """
        return await self._upsert_with_retry(TransactionRepository, fields, f"transaction {fields['mx_payment_id']}")

    async def upsert_invoice(self, fields: Dict[str, Any]) -> bool:
        """
        Insert or merge one invoice. Workflow fields are only set on insert.

        Returns:
            True if the row was created.
        """
        return await self._upsert_with_retry(InvoiceRepository, fields, f"invoice {fields['mx_invoice_id']}")

    async def upsert_invoices(self, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
        """
        Insert or merge a batch of invoices in one transaction.

        Returns:
            Tuple of (created, updated-or-unchanged).
        """
        if not rows:
            return 0, 0
        for attempt in (1, 2):
            try:
                created = 0
                async with self.session_factory() as session, session.begin():
                    repo = InvoiceRepository(session)
                    for fields in rows:
                        _, was_created = await repo.upsert(fields)
                        created += int(was_created)
                return created, len(rows) - created
            except IntegrityError as e:
                if attempt == 2:
                    raise PersistenceError(f"Failed to upsert {len(rows)} invoices: {e}") from e
                logger.warning(f"Unique conflict upserting {len(rows)} invoices, retrying: {e.orig}")
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to upsert {len(rows)} invoices: {e}") from e
        raise RuntimeError("unreachable")  # pragma: no cover

    async def link(
        self,
        merchant_id: Optional[str] = None,
        mx_payment_ids: Optional[Iterable[int]] = None,
    ) -> int:
        """Link unlinked transactions to stored invoices. Returns rows linked."""
        try:
            async with self.session_factory() as session, session.begin():
                return await TransactionRepository(session).link_to_invoices(
                    merchant_id=merchant_id, mx_payment_ids=mx_payment_ids
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to link transactions to invoices: {e}") from e

    async def fill_categories(
        self,
        merchant_id: Optional[str] = None,
        mx_payment_ids: Optional[Iterable[int]] = None,
        page_size: int = 100,
    ) -> int:
        """
        Fill product name and category on linked transactions that lack them.

        The product comes from the first line item of the linked invoice.
        Invoices without line items are skipped. Every pending row is
        visited, one page at a time.

        Returns:
            Number of transactions given a product.
        """
        if mx_payment_ids is not None:
            mx_payment_ids = list(mx_payment_ids)
        filled = 0
        after_id = None
        while True:
            try:
                async with self.session_factory() as session:
                    pending = await TransactionRepository(session).list_uncategorized(
                        merchant_id=merchant_id,
                        limit=page_size,
                        mx_payment_ids=mx_payment_ids,
                        after_id=after_id,
                    )
                    work = [
                        (transaction.mx_payment_id, transaction.merchant_id, _first_product_name(invoice.purchases))
                        for transaction, invoice in pending
                    ]
                    if pending:
                        after_id = pending[-1][0].id
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to read transactions awaiting a category: {e}") from e

            filled += await self._store_categories(work, merchant_id)
            if len(pending) < page_size:
                break

        logger.info(f"Filled product category on {filled} transactions")
        return filled

    async def _store_categories(self, work: List[Tuple[int, Optional[str], Optional[str]]], merchant_id: Optional[str]) -> int:
        resolved: Dict[int, Tuple[str, str]] = {}
        for mx_payment_id, tx_merchant_id, product_name in work:
            if product_name is None:
                continue
            category = await self.categories.resolve(tx_merchant_id or merchant_id, product_name)
            resolved[mx_payment_id] = (product_name, category)

        if not resolved:
            return 0

        filled = 0
        try:
            async with self.session_factory() as session, session.begin():
                repo = TransactionRepository(session)
                for mx_payment_id, (product_name, category) in resolved.items():
                    transaction = await repo.get_by_payment_id(mx_payment_id)
                    if transaction is None:
                        continue
                    if merge_transaction(transaction, {"product_name": product_name, "product_category": category}):
                        filled += 1
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store product categories: {e}") from e
        return filled

    async def _upsert_with_retry(self, repository_cls, fields: Dict[str, Any], label: str) -> bool:
        for attempt in (1, 2):
            try:
                async with self.session_factory() as session, session.begin():
                    _, created = await repository_cls(session).upsert(fields)
                return created
            except IntegrityError as e:
                if attempt == 2:
                    raise PersistenceError(f"Failed to upsert {label}: {e}") from e
                logger.warning(f"Unique conflict on {label}, retrying through merge")
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to upsert {label}: {e}") from e
        raise RuntimeError("unreachable")  # pragma: no cover


def _first_product_name(purchases: List[Dict[str, Any]]) -> Optional[str]:
    if not purchases or not isinstance(purchases[0], dict):
        return None
    name = purchases[0].get("productName")
    if not isinstance(name, str) or not name.strip():
        return None
    return name.strip()
