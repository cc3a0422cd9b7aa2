"""Ingestion of MX Merchant payment webhooks."""

import hashlib
import hmac
import json
import logging
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..client.models import WebhookEvent
from ..client.mx_client import MXMerchantClient
from ..config import SyncSettings, get_settings
from ..database.models import SyncStatus, SyncType
from ..errors import AuthError, ValidationError, WebhookSignatureError
from .audit import SyncAuditRecorder
from .credentials import CredentialResolver
from .engine import ClientFactory
from .mapping import invoice_fields, transaction_fields
from .models import WebhookOutcome
from .writer import SyncWriter

logger = logging.getLogger(__name__)
rejection_logger = logging.getLogger("merchant_sync.webhook.rejections")

SIGNATURE_HEADER = "X-MX-Signature"
SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256).hexdigest()


def verify_signature(secret: Optional[str], body: bytes, signature_header: Optional[str]) -> bool:
    """
    Check a signature header against the body.

    Accepts the bare hex digest or one prefixed with ``sha256=``.
    """
    if not secret or not signature_header:
        return False
    provided = signature_header.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    return hmac.compare_digest(compute_signature(secret, body), provided.lower())


def parse_event(raw_payload: Union[bytes, str]) -> WebhookEvent:
    """
    Decode a webhook body.

    Raises:
        ValidationError: If the body is not a JSON object with a numeric id.
    """
    try:
        data = json.loads(raw_payload)
    except ValueError as e:
        raise ValidationError(f"Webhook body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Webhook body must be a JSON object")
    try:
        return WebhookEvent.from_payload(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed webhook event: {e.error_count()} invalid fields") from e


class WebhookIngestor:
    """
    Verifies a pushed payment event and applies it to local storage.

    The pushed body is only used to identify the payment; every stored
    field is read back from the API. Processing failures are not retried
    here: the next scheduled sync picks the payment up.
    """

    def __init__(
        self,
        credentials: CredentialResolver,
        writer: SyncWriter,
        audit: SyncAuditRecorder,
        settings: Optional[SyncSettings] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.credentials = credentials
        self.writer = writer
        self.audit = audit
        self.settings = settings or get_settings()
        self.client_factory = client_factory or (
            lambda credential: MXMerchantClient.from_settings(credential, self.settings)
        )

    def _reject(self, reason: str, event: Optional[WebhookEvent] = None) -> WebhookSignatureError:
        rejection_logger.warning(
            f"Rejected webhook: {reason} "
            f"(merchant={event.merchant_id if event else None}, payment={event.id if event else None})"
        )
        return WebhookSignatureError(reason)

    async def handle_event(
        self,
        raw_payload: Union[bytes, str],
        signature_header: Optional[str],
    ) -> WebhookOutcome:
        """
        Verify and ingest one webhook delivery.

        Args:
            raw_payload: Request body exactly as received.
            signature_header: Value of the X-MX-Signature header.

        Returns:
            WebhookOutcome describing what was written. ``success`` is False
            when processing failed after verification.

        Raises:
            ValidationError: If the body cannot be parsed.
            WebhookSignatureError: If the signature is missing or wrong, or the
                merchant has no webhook secret. Nothing is written in that case.
        """
        body = raw_payload.encode("utf-8") if isinstance(raw_payload, str) else raw_payload
        event = parse_event(body)

        if not event.merchant_id:
            raise self._reject("event carries no merchantId", event)
        try:
            credential = await self.credentials.resolve(event.merchant_id)
        except AuthError:
            raise self._reject("unknown or inactive merchant", event) from None
        if not credential.webhook_secret:
            raise self._reject("merchant has no webhook secret configured", event)
        if not verify_signature(credential.webhook_secret, body, signature_header):
            raise self._reject("signature mismatch" if signature_header else "missing signature", event)

        merchant_id = credential.merchant_id
        outcome = WebhookOutcome(
            success=False,
            event_type=event.event_type,
            merchant_id=merchant_id,
            mx_payment_id=event.id,
        )
        outcome.run_id = await self.audit.start(SyncType.WEBHOOK, merchant_id)
        logger.info(f"Processing {event.event_type} webhook for payment {event.id} (merchant {merchant_id})")

        client = self.client_factory(credential)
        try:
            payment = await client.get_transaction_detail(event.id)
            outcome.mx_invoice_id = payment.primary_invoice_id

            if payment.primary_invoice_id is not None:
                stored = await self.writer.existing_invoice_ids([payment.primary_invoice_id])
                if not stored:
                    invoice = await client.get_invoice_detail(payment.primary_invoice_id)
                    outcome.invoice_created = await self.writer.upsert_invoice(
                        invoice_fields(invoice, merchant_id)
                    )

            outcome.transaction_created = await self.writer.upsert_transaction(
                transaction_fields(payment, merchant_id)
            )
            await self.writer.link(merchant_id=merchant_id, mx_payment_ids=[payment.id])
            await self.writer.fill_categories(merchant_id=merchant_id, mx_payment_ids=[payment.id])

            stored_transaction = await self.writer.get_transaction(payment.id)
            if stored_transaction is not None:
                outcome.linked = stored_transaction.invoice_id is not None
                outcome.product_name = stored_transaction.product_name
                outcome.product_category = stored_transaction.product_category
            outcome.success = True
        except Exception as e:
            logger.exception(f"Webhook for payment {event.id} failed: {e}")
            outcome.error = f"{type(e).__name__}: {e}"
        finally:
            api_calls = client.api_calls
            await client.aclose()

        if outcome.success:
            await self.audit.finish(
                outcome.run_id,
                SyncStatus.COMPLETED,
                records_processed=1,
                api_calls_made=api_calls,
                last_processed_id=event.id,
            )
        else:
            await self.audit.finish(
                outcome.run_id,
                SyncStatus.FAILED,
                error_text=outcome.error,
                records_failed=1,
                api_calls_made=api_calls,
                last_processed_id=event.id,
            )
        return outcome
