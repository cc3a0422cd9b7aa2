"""Async client for the MX Merchant checkout API."""

import asyncio
import base64
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import SyncSettings, base_url_for
from ..errors import RemoteAPIError, TransientNetworkError, ValidationError
from .models import (
    InvoiceDetail,
    InvoicePage,
    MerchantCredential,
    PaymentPage,
    PaymentRecord,
    RejectedRecord,
    RemoteModel,
)
from .retry import send_with_retry

logger = logging.getLogger(__name__)

PAYMENT_PATH = "/checkout/v3/payment"
INVOICE_PATH = "/checkout/v3/invoice"

M = TypeVar("M", bound=RemoteModel)


def basic_auth_header(consumer_key: str, consumer_secret: str) -> str:
    token = base64.b64encode(f"{consumer_key}:{consumer_secret}".encode()).decode()
    return f"Basic {token}"


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class MXMerchantClient:
    """
    Typed wrapper over the MX Merchant REST endpoints used by the sync engine.

    Every HTTP attempt, retries included, increments ``api_calls``.

    Example:
        async with MXMerchantClient(credential) as client:
            page = await client.list_transactions(limit=50)
    """

    def __init__(
        self,
        credential: MerchantCredential,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.merchant_id = credential.merchant_id
        self.base_url = base_url_for(credential.environment, base_url)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.api_calls = 0
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": basic_auth_header(credential.consumer_key, credential.consumer_secret),
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(
        cls,
        credential: MerchantCredential,
        settings: SyncSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "MXMerchantClient":
        return cls(
            credential,
            base_url=settings.api_base_url,
            timeout=settings.http_timeout,
            max_retries=settings.max_retries,
            transport=transport,
        )

    async def __aenter__(self) -> "MXMerchantClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Issue a GET with retries and decode the JSON body.

        Raises:
            RemoteAPIError: On any non-2xx final response.
            TransientNetworkError: When the transport keeps failing.
            ValidationError: When the body is not JSON.
        """
        async def send() -> httpx.Response:
            self.api_calls += 1
            return await self._http.get(path, params=params)

        response = await send_with_retry(
            send,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )
        if not response.is_success:
            logger.error(f"MX Merchant API {response.status_code} for GET {path}")
            raise RemoteAPIError(response.status_code, response.text, str(response.request.url))
        try:
            return response.json()
        except ValueError as e:
            raise ValidationError(f"Non-JSON response from {path}: {e}") from e

    @staticmethod
    def _split_page(body: Any, model: Type[M]) -> Tuple[List[M], List[RejectedRecord], Optional[int], int]:
        if isinstance(body, list):
            items, record_count = body, None
        elif isinstance(body, dict):
            items = body.get("records") or []
            record_count = body.get("recordCount")
        else:
            raise ValidationError(f"Unexpected page body type: {type(body).__name__}")

        records: List[M] = []
        rejected: List[RejectedRecord] = []
        for item in items:
            if not isinstance(item, dict):
                rejected.append(RejectedRecord(reason="record is not an object", payload=item))
                continue
            try:
                records.append(model.from_payload(item))
            except PydanticValidationError as e:
                record_id = item.get("id")
                rejected.append(
                    RejectedRecord(
                        record_id=str(record_id) if record_id is not None else None,
                        reason=_describe(e),
                        payload=item,
                    )
                )
        if rejected:
            logger.warning(f"{len(rejected)} {model.__name__} records failed validation")
        return records, rejected, record_count, len(items)

    async def list_transactions(
        self,
        limit: int,
        offset: int = 0,
        date_filter: Optional[str] = None,
    ) -> PaymentPage:
        """
        Fetch one page of payments, newest first.

        Args:
            limit: Page size requested from the API.
            offset: Records to skip.
            date_filter: Passed through as the ``created`` query parameter.

        Returns:
            PaymentPage with validated records and rejected payloads.
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if date_filter:
            params["created"] = date_filter
        body = await self._get(PAYMENT_PATH, params)
        records, rejected, record_count, received = self._split_page(body, PaymentRecord)
        return PaymentPage(
            records=records,
            rejected=rejected,
            record_count=record_count,
            limit=limit,
            offset=offset,
            received=received,
        )

    async def list_invoices(self, limit: int, offset: int = 0) -> InvoicePage:
        """Fetch one page of invoices, newest first."""
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        body = await self._get(INVOICE_PATH, {"limit": limit, "offset": offset})
        records, rejected, record_count, received = self._split_page(body, InvoiceDetail)
        return InvoicePage(
            records=records,
            rejected=rejected,
            record_count=record_count,
            limit=limit,
            offset=offset,
            received=received,
        )

    async def get_transaction_detail(self, payment_id: int) -> PaymentRecord:
        body = await self._get(f"{PAYMENT_PATH}/{payment_id}")
        if not isinstance(body, dict):
            raise ValidationError("Payment detail is not an object", record_id=str(payment_id))
        try:
            return PaymentRecord.from_payload(body)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid payment {payment_id}: {_describe(e)}", record_id=str(payment_id)) from e

    async def get_invoice_detail(self, invoice_id: int) -> InvoiceDetail:
        body = await self._get(f"{INVOICE_PATH}/{invoice_id}")
        if not isinstance(body, dict):
            raise ValidationError("Invoice detail is not an object", record_id=str(invoice_id))
        try:
            return InvoiceDetail.from_payload(body)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid invoice {invoice_id}: {_describe(e)}", record_id=str(invoice_id)) from e

    async def iter_transaction_pages(
        self,
        max_records: int,
        page_size: int = 100,
        date_filter: Optional[str] = None,
    ) -> AsyncIterator[PaymentPage]:
        """
        Yield payment pages until ``max_records`` have been requested or a
        page comes back short.
        """
        offset = 0
        remaining = max_records
        while remaining > 0:
            limit = min(page_size, remaining)
            page = await self.list_transactions(limit=limit, offset=offset, date_filter=date_filter)
            yield page
            if page.received < limit:
                return
            offset += page.received
            remaining -= page.received

    async def iter_invoice_pages(self, page_size: int = 100) -> AsyncIterator[InvoicePage]:
        """Yield every invoice page until a short page signals the end."""
        offset = 0
        while True:
            page = await self.list_invoices(limit=page_size, offset=offset)
            yield page
            if page.received < page_size:
                return
            offset += page.received

    async def test_connection(self) -> bool:
        """Check the credentials with the smallest possible request."""
        try:
            await self.list_transactions(limit=1)
        except (RemoteAPIError, TransientNetworkError, ValidationError) as e:
            logger.warning(f"Connection test failed for merchant {self.merchant_id}: {e}")
            return False
        return True
