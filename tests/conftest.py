"""Shared test fixtures and configuration."""

import os
import json
import pytest
from typing import Any, Dict, List, Optional

import httpx

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("CRON_SECRET", "test_cron_secret_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MX_SYNC_BATCH_DELAY_MS", "0")

from merchant_sync.cache import TTLCache
from merchant_sync.client.mx_client import MXMerchantClient
from merchant_sync.config import SyncSettings
from merchant_sync.database import create_async_engine, create_tables, get_async_session_factory
from merchant_sync.sync.service import SyncService
from merchant_sync.sync.webhook import compute_signature

MERCHANT_ID = "1000123"
WEBHOOK_SECRET = "whsec_test_secret"


def make_payment(
    payment_id: int,
    amount: str = "25.00",
    invoice_ids: Optional[List[int]] = None,
    invoice_number: Optional[str] = None,
    **extra,
) -> Dict[str, Any]:
    """Payment payload in the shape the checkout API returns."""
    payload = {
        "id": payment_id,
        "amount": amount,
        "created": "2024-03-01T10:00:00Z",
        "status": "Approved",
        "customerName": "Jane Doe",
        "authCode": "A1B2C3",
        "cardAccount": {"cardType": "Visa", "last4": "4242", "number": "4111111111114242"},
        "merchantId": int(MERCHANT_ID),
    }
    if invoice_ids is not None:
        payload["invoiceIds"] = invoice_ids
    if invoice_number is not None:
        payload["invoice"] = invoice_number
    payload.update(extra)
    return payload


def make_invoice(
    invoice_id: int,
    invoice_number: int,
    products: Optional[List[str]] = None,
    **extra,
) -> Dict[str, Any]:
    """Invoice detail payload with one purchase per product name."""
    payload = {
        "id": invoice_id,
        "invoiceNumber": invoice_number,
        "customerName": "Jane Doe",
        "status": "Paid",
        "totalAmount": "50.00",
        "balance": "0.00",
        "invoiceDate": "2024-03-01",
        "merchantId": int(MERCHANT_ID),
        "purchases": [
            {"productName": name, "price": "25.00", "quantity": 1}
            for name in (products if products is not None else ["Widget Pro"])
        ],
    }
    payload.update(extra)
    return payload


class FakeMXApi:
    """In-memory stand-in for the MX Merchant checkout endpoints.

    Payments and invoices are served newest first, as the real API does.
    Responses queued on ``queued`` are returned before any real handling.
    """

    def __init__(self):
        self.payments: List[Dict[str, Any]] = []
        self.invoices: Dict[int, Dict[str, Any]] = {}
        self.queued: List[httpx.Response] = []
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            return self.queued.pop(0)

        path = request.url.path
        limit = int(request.url.params.get("limit", 100))
        offset = int(request.url.params.get("offset", 0))

        if path == "/checkout/v3/payment":
            page = self.payments[offset:offset + limit]
            return httpx.Response(200, json={"recordCount": len(self.payments), "records": page})
        if path.startswith("/checkout/v3/payment/"):
            payment_id = int(path.rsplit("/", 1)[1])
            for payment in self.payments:
                if payment["id"] == payment_id:
                    return httpx.Response(200, json=payment)
            return httpx.Response(404, json={"message": "Payment not found"})
        if path == "/checkout/v3/invoice":
            invoices = list(self.invoices.values())
            return httpx.Response(200, json={"recordCount": len(invoices), "records": invoices[offset:offset + limit]})
        if path.startswith("/checkout/v3/invoice/"):
            invoice_id = int(path.rsplit("/", 1)[1])
            if invoice_id in self.invoices:
                return httpx.Response(200, json=self.invoices[invoice_id])
            return httpx.Response(404, json={"message": "Invoice not found"})
        return httpx.Response(404)

    def add_invoice(self, payload: Dict[str, Any]) -> None:
        self.invoices[payload["id"]] = payload

    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_api():
    return FakeMXApi()


@pytest.fixture
def client_factory(fake_api):
    """Builds API clients that talk to ``fake_api`` and never really sleep."""
    def factory(credential):
        return MXMerchantClient(
            credential,
            transport=httpx.MockTransport(fake_api.handler),
            max_retries=2,
            sleep=no_sleep,
        )
    return factory


@pytest.fixture
def sync_settings():
    return SyncSettings(batch_delay_ms=0, page_size=100, batch_size=100)


@pytest.fixture
async def sync_service(session_factory, client_factory, sync_settings):
    """SyncService over the test database with one configured merchant."""
    service = SyncService(
        session_factory,
        settings=sync_settings,
        client_factory=client_factory,
        credential_cache=TTLCache(300),
        category_cache=TTLCache(300),
    )
    await service.save_merchant_config(
        merchant_id=MERCHANT_ID,
        consumer_key="ck_test",
        consumer_secret="cs_test",
        webhook_secret=WEBHOOK_SECRET,
        environment="sandbox",
    )
    return service


@pytest.fixture
def signed_event():
    """Return a (body, signature) pair for a payment webhook."""
    def build(payment_id: int, merchant_id: str = MERCHANT_ID, secret: str = WEBHOOK_SECRET):
        body = json.dumps({
            "eventType": "PaymentSuccess",
            "id": payment_id,
            "merchantId": merchant_id,
            "amount": "999999.00",
        }).encode()
        return body, compute_signature(secret, body)
    return build


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
