"""Tests for the reconciliation engine against a fake MX Merchant API."""

from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import select

from merchant_sync.config import SyncSettings
from merchant_sync.database import (
    Invoice,
    InvoiceRepository,
    ProductCategoryRepository,
    SyncStatus,
    SyncType,
    Transaction,
    TransactionRepository,
)
from merchant_sync.errors import PersistenceError
from merchant_sync.sync.engine import NO_TRANSACTIONS_NOTE
from merchant_sync.sync.service import SyncService

from conftest import MERCHANT_ID, make_invoice, make_payment


async def rows(session_factory, model):
    async with session_factory() as session:
        result = await session.execute(select(model))
        return list(result.scalars().all())


async def transactions_by_id(session_factory):
    return {t.mx_payment_id: t for t in await rows(session_factory, Transaction)}


async def add_category(session_factory, product_name, category, merchant_id=MERCHANT_ID):
    async with session_factory() as session, session.begin():
        await ProductCategoryRepository(session).create(merchant_id, product_name, category)


async def configured_service(session_factory, client_factory, **settings):
    settings.setdefault("batch_delay_ms", 0)
    service = SyncService(session_factory, settings=SyncSettings(**settings), client_factory=client_factory)
    await service.save_merchant_config(MERCHANT_ID, "ck_test", "cs_test", webhook_secret="wh", environment="sandbox")
    return service


@pytest.fixture
def scenario_a(fake_api):
    """Three payments: two share invoice 9001, one has no invoice."""
    fake_api.payments = [
        make_payment(5001, invoice_ids=[9001], invoice_number="1001"),
        make_payment(5002, amount="25.00", invoice_ids=[9001]),
        make_payment(5003, amount="12.00"),
    ]
    fake_api.add_invoice(make_invoice(9001, 1001, products=["Widget Pro"]))
    return fake_api


class TestTransactionSync:
    """Tests for sync_transactions."""

    async def test_first_sync_links_shared_invoice(self, sync_service, scenario_a, session_factory):
        result = await sync_service.engine.sync_transactions(MERCHANT_ID, count=100)

        assert result.success is True
        assert result.status is SyncStatus.COMPLETED
        assert result.errors == []
        assert result.transactions_new == 3
        assert result.transactions_processed == 3
        assert result.invoices_new == 1
        assert result.links_created == 2
        assert result.products_processed == 2
        assert result.api_calls == 2

        stored = await transactions_by_id(session_factory)
        invoices = await rows(session_factory, Invoice)
        assert len(stored) == 3
        assert len(invoices) == 1
        assert stored[5001].invoice_id == invoices[0].id
        assert stored[5002].invoice_id == invoices[0].id
        assert stored[5003].invoice_id is None
        assert stored[5003].mx_invoice_id is None

    async def test_stored_fields(self, sync_service, scenario_a, session_factory):
        await sync_service.engine.sync_transactions(MERCHANT_ID)

        transaction = (await transactions_by_id(session_factory))[5001]
        assert transaction.amount == Decimal("25.00")
        assert transaction.merchant_id == MERCHANT_ID
        assert transaction.transaction_date == datetime(2024, 3, 1, 10, 0)
        assert transaction.card_type == "Visa"
        assert transaction.card_last4 == "4242"
        assert transaction.mx_invoice_number == 1001
        assert transaction.product_name == "Widget Pro"
        assert transaction.product_category == "Uncategorized"
        assert "number" not in transaction.raw_data["cardAccount"]

        invoice = (await rows(session_factory, Invoice))[0]
        assert invoice.data_sent_status == "pending"
        assert invoice.invoice_date == datetime(2024, 3, 1)
        assert invoice.total_amount == Decimal("50.00")

    async def test_rerun_reports_existing(self, sync_service, scenario_a, session_factory):
        await sync_service.engine.sync_transactions(MERCHANT_ID)
        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.success is True
        assert result.errors == []
        assert result.transactions_processed == 3
        assert result.transactions_existing == 3
        assert result.transactions_new == 0
        assert result.invoices_new == 0
        assert result.links_created == 0
        assert result.api_calls == 1
        assert len(await rows(session_factory, Transaction)) == 3
        assert len(await rows(session_factory, Invoice)) == 1

    async def test_invoice_without_line_items(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(5001, invoice_ids=[9001])]
        fake_api.add_invoice(make_invoice(9001, 1001, products=[]))

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.errors == []
        assert result.success is True
        assert result.products_processed == 0
        transaction = (await transactions_by_id(session_factory))[5001]
        assert transaction.invoice_id is not None
        assert transaction.product_name is None
        assert transaction.product_category is None

    async def test_category_mapping_applied(self, sync_service, scenario_a, session_factory):
        await add_category(session_factory, "Widget Pro", "Hardware")

        await sync_service.engine.sync_transactions(MERCHANT_ID)

        stored = await transactions_by_id(session_factory)
        assert stored[5001].product_category == "Hardware"
        assert stored[5002].product_category == "Hardware"
        assert stored[5003].product_category is None

    async def test_no_transactions(self, sync_service, fake_api, session_factory):
        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.success is True
        assert NO_TRANSACTIONS_NOTE in result.notes
        assert result.transactions_processed == 0
        log = await sync_service.audit.get(result.run_id)
        assert log.status == "completed"

    async def test_count_bounds(self, sync_service):
        with pytest.raises(ValueError):
            await sync_service.engine.sync_transactions(MERCHANT_ID, count=0)
        with pytest.raises(ValueError):
            await sync_service.engine.sync_transactions(MERCHANT_ID, count=1001)

    async def test_fetches_only_latest_count(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(i) for i in range(1, 251)]

        result = await sync_service.engine.sync_transactions(MERCHANT_ID, count=150)

        assert result.transactions_new == 150
        assert set(await transactions_by_id(session_factory)) == set(range(1, 151))
        limits = [r.url.params["limit"] for r in fake_api.requests]
        assert limits == ["100", "50"]

    async def test_duplicate_ids_in_pull_stored_once(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(5001), make_payment(5001), make_payment(5002)]

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.transactions_new == 2
        assert len(await rows(session_factory, Transaction)) == 2

    async def test_merchant_id_is_the_tenant(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(5001, merchantId=999)]

        await sync_service.engine.sync_transactions(MERCHANT_ID)

        transaction = (await transactions_by_id(session_factory))[5001]
        assert transaction.merchant_id == MERCHANT_ID
        assert transaction.raw_data["merchantId"] == 999

    async def test_rejected_record_counted_as_failed(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(5001), {"id": 5002, "amount": "-3.00"}]

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.success is False
        assert result.status is SyncStatus.FAILED
        assert result.transactions_new == 1
        assert result.transactions_failed == 1
        assert "5002" in result.errors[0]
        assert set(await transactions_by_id(session_factory)) == {5001}

    async def test_missing_embedded_invoice_is_record_error(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(5001, invoice_ids=[9999])]

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.transactions_new == 1
        assert result.invoices_failed == 1
        assert result.errors[0].startswith("Invoice 9999")
        assert result.status is SyncStatus.FAILED
        assert (await transactions_by_id(session_factory))[5001].invoice_id is None

    async def test_failed_batch_does_not_stop_run(self, session_factory, client_factory, fake_api, monkeypatch):
        service = await configured_service(session_factory, client_factory, batch_size=2)
        fake_api.payments = [make_payment(i) for i in (1, 2, 3)]

        original = service.writer.insert_transactions
        calls = []

        async def flaky_insert(batch):
            calls.append([row["mx_payment_id"] for row in batch])
            if len(calls) == 1:
                raise PersistenceError("disk full")
            return await original(batch)

        monkeypatch.setattr(service.writer, "insert_transactions", flaky_insert)

        result = await service.engine.sync_transactions(MERCHANT_ID)

        assert calls == [[1, 2], [3]]
        assert result.transactions_failed == 2
        assert result.transactions_new == 1
        assert result.success is False
        assert "disk full" in result.errors[0]
        assert set(await transactions_by_id(session_factory)) == {3}

    async def test_insert_race_falls_back_to_merge(self, sync_service, scenario_a, session_factory, monkeypatch):
        original = sync_service.writer.existing_payment_ids

        async def stored_meanwhile(mx_payment_ids):
            stored = await original(mx_payment_ids)
            async with session_factory() as session, session.begin():
                invoice, _ = await InvoiceRepository(session).upsert({
                    "mx_invoice_id": 9001,
                    "merchant_id": MERCHANT_ID,
                    "invoice_number": 1001,
                    "status": "Paid",
                    "raw_data": make_invoice(9001, 1001),
                })
                await TransactionRepository(session).insert_many([{
                    "mx_payment_id": 5001,
                    "merchant_id": MERCHANT_ID,
                    "amount": Decimal("25.00"),
                    "mx_invoice_id": 9001,
                    "invoice_id": invoice.id,
                    "product_name": "Widget Pro",
                    "product_category": "Hardware",
                }])
            monkeypatch.setattr(sync_service.writer, "existing_payment_ids", original)
            return stored

        monkeypatch.setattr(sync_service.writer, "existing_payment_ids", stored_meanwhile)

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.success is True
        assert result.transactions_new == 2
        assert result.transactions_existing == 1
        stored = await transactions_by_id(session_factory)
        assert len(await rows(session_factory, Transaction)) == 3
        assert stored[5001].invoice_id is not None
        assert stored[5001].product_category == "Hardware"
        assert stored[5002].invoice_id == stored[5001].invoice_id

    async def test_progress_recorded_in_audit(self, sync_service, scenario_a):
        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        log = await sync_service.audit.get(result.run_id)
        assert log.sync_type == SyncType.INCREMENTAL.value
        assert log.status == "completed"
        assert log.records_processed == 4
        assert log.records_failed == 0
        assert log.api_calls_made == 2
        assert log.completed_at is not None


class TestRunFailures:
    """Tests for fatal run outcomes."""

    async def test_unknown_merchant(self, sync_service, fake_api):
        result = await sync_service.engine.sync_transactions("unknown-merchant")

        assert result.success is False
        assert result.status is SyncStatus.FAILED
        assert result.errors[0].startswith("Authentication failed")
        assert fake_api.requests == []

        log = await sync_service.audit.get(result.run_id)
        assert log.status == "failed"
        assert "Authentication failed" in log.error_message

    async def test_rejected_credentials_invalidate_cache(self, sync_service, fake_api):
        await sync_service.credentials.resolve(MERCHANT_ID)
        assert MERCHANT_ID in sync_service.credentials.cache

        fake_api.queued = [httpx.Response(401, text="Unauthorized")]
        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.success is False
        assert result.errors[0].startswith("Authentication failed")
        assert MERCHANT_ID not in sync_service.credentials.cache

    async def test_server_errors_exhaust_retries(self, sync_service, fake_api):
        fake_api.queued = [httpx.Response(503), httpx.Response(503), httpx.Response(503)]

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.success is False
        assert result.api_calls == 3
        assert "503" in result.errors[0]

    async def test_cancel_request_stops_run(self, sync_service, scenario_a, session_factory, monkeypatch):
        original = sync_service.writer.existing_payment_ids

        async def cancel_then_lookup(ids):
            (running,) = await sync_service.audit.recent(limit=1)
            assert await sync_service.audit.request_cancel(running.id)
            return await original(ids)

        monkeypatch.setattr(sync_service.writer, "existing_payment_ids", cancel_then_lookup)

        result = await sync_service.engine.sync_transactions(MERCHANT_ID)

        assert result.status is SyncStatus.CANCELLED
        assert result.success is False
        assert await rows(session_factory, Transaction) == []
        log = await sync_service.audit.get(result.run_id)
        assert log.status == "cancelled"
        assert log.cancel_requested is True


class TestInvoiceSync:
    """Tests for sync_invoices."""

    async def test_pulls_every_page(self, sync_service, fake_api, session_factory):
        for number in range(1, 4):
            fake_api.add_invoice(make_invoice(9000 + number, 1000 + number))

        result = await sync_service.engine.sync_invoices(MERCHANT_ID, page_size=2)

        assert result.success is True
        assert result.sync_type is SyncType.FULL
        assert result.invoices_new == 3
        assert result.invoices_processed == 3
        assert result.api_calls == 2
        assert len(await rows(session_factory, Invoice)) == 3

        log = await sync_service.audit.get(result.run_id)
        assert log.sync_type == "full"
        assert log.records_processed == 3
        assert log.last_processed_id == "9003"

    async def test_rerun_updates_without_touching_workflow(self, sync_service, fake_api, session_factory):
        fake_api.add_invoice(make_invoice(9001, 1001, status="Unpaid"))
        await sync_service.engine.sync_invoices(MERCHANT_ID)

        async with session_factory() as session, session.begin():
            repo = InvoiceRepository(session)
            invoice = await repo.get_by_mx_id(9001)
            await repo.set_workflow_status(invoice, "yes", sent_by="ops@example.com")

        fake_api.add_invoice(make_invoice(9001, 1001, status="Paid"))
        result = await sync_service.engine.sync_invoices(MERCHANT_ID)

        assert result.invoices_new == 0
        assert result.invoices_processed == 1
        (invoice,) = await rows(session_factory, Invoice)
        assert invoice.status == "Paid"
        assert invoice.data_sent_status == "yes"
        assert invoice.data_sent_by == "ops@example.com"

    async def test_links_transactions_by_invoice_number(self, sync_service, fake_api, session_factory):
        fake_api.payments = [make_payment(5001, invoice_number="1001")]
        await sync_service.engine.sync_transactions(MERCHANT_ID)
        assert (await transactions_by_id(session_factory))[5001].invoice_id is None

        fake_api.add_invoice(make_invoice(9001, 1001, products=["Widget Pro"]))
        result = await sync_service.engine.sync_invoices(MERCHANT_ID)

        assert result.links_created == 1
        assert result.products_processed == 1
        transaction = (await transactions_by_id(session_factory))[5001]
        assert transaction.invoice_id is not None
        assert transaction.product_name == "Widget Pro"

    async def test_late_link_categorised_behind_empty_invoices(self, sync_service, fake_api, session_factory):
        fake_api.payments = [
            make_payment(6000 + i, invoice_ids=[9001], created="2024-03-02T10:00:00Z") for i in range(100)
        ]
        fake_api.payments.append(make_payment(4000, invoice_ids=[9002], created="2024-01-01T10:00:00Z"))
        fake_api.add_invoice(make_invoice(9001, 1001, products=[]))

        first = await sync_service.engine.sync_transactions(MERCHANT_ID, count=101)
        assert first.transactions_new == 101
        assert first.invoices_failed == 1
        assert (await transactions_by_id(session_factory))[4000].invoice_id is None

        fake_api.add_invoice(make_invoice(9002, 1002, products=["Gadget"]))
        result = await sync_service.engine.sync_invoices(MERCHANT_ID)

        assert result.links_created == 1
        assert result.products_processed == 1
        stored = await transactions_by_id(session_factory)
        assert stored[4000].product_name == "Gadget"
        assert stored[6000].product_name is None

    async def test_negative_invoice_amounts_rejected(self, sync_service, fake_api, session_factory):
        fake_api.add_invoice(make_invoice(9001, 1001, balance="-40.00", paidAmount="-1.00"))
        fake_api.add_invoice(make_invoice(9002, 1002))

        result = await sync_service.engine.sync_invoices(MERCHANT_ID)

        assert result.invoices_failed == 1
        assert result.invoices_new == 1
        assert result.success is False
        assert [i.mx_invoice_id for i in await rows(session_factory, Invoice)] == [9002]

    async def test_page_size_bounds(self, sync_service):
        with pytest.raises(ValueError):
            await sync_service.engine.sync_invoices(MERCHANT_ID, page_size=101)


class TestScheduledSync:
    async def test_syncs_each_active_merchant(self, sync_service, scenario_a):
        await sync_service.save_merchant_config("2000456", "ck", "cs", is_active=False)

        results = await sync_service.engine.sync_active_merchants(count=10)

        assert [r.merchant_id for r in results] == [MERCHANT_ID]
        assert results[0].success is True
