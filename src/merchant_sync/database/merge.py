"""
Field-level merge applied whenever a remote record lands on an existing row.

Every write path (batch sync, full invoice pull, webhook) goes through
``merge_remote_fields`` so that concurrent writers carrying the same remote
data converge on the same row, and so that a later sync never undoes what a
person or an earlier link step wrote locally.
"""

from typing import Any, Dict, Iterable

from .models import dump_payload

# Written by people using the app. A sync only sets them on first insert.
INVOICE_WORKFLOW_FIELDS = frozenset({
    "data_sent_status",
    "data_sent_by",
    "data_sent_at",
    "data_sent_notes",
    "ordered_by_provider_at",
})

# Derived locally by the link and category steps. Only ever filled, never replaced.
TRANSACTION_FILL_ONLY_FIELDS = frozenset({
    "invoice_id",
    "product_name",
    "product_category",
})

# Invoice references carried by the payment: a payload that omits them must
# not clear a value an earlier payload supplied.
TRANSACTION_STICKY_FIELDS = frozenset({
    "mx_invoice_id",
    "mx_invoice_number",
})

IDENTITY_FIELDS = frozenset({"id", "created_at"})


def merge_remote_fields(
    instance: Any,
    incoming: Dict[str, Any],
    protected: Iterable[str] = (),
    fill_only: Iterable[str] = (),
    sticky: Iterable[str] = (),
) -> bool:
    """Apply ``incoming`` column values onto ``instance``.

    Args:
        instance: Mapped row already present in the session.
        incoming: Column name to value mapping built from the remote payload.
            ``raw_data`` is accepted and compared on its serialized form.
        protected: Fields never written here.
        fill_only: Fields written only while the stored value is None.
        sticky: Fields written only when the incoming value is not None.

    Returns:
        True if any attribute changed.
    """
    protected = frozenset(protected)
    fill_only = frozenset(fill_only)
    sticky = frozenset(sticky)
    changed = False

    for field, value in incoming.items():
        if field in protected or field in IDENTITY_FIELDS:
            continue

        if field == "raw_data":
            serialized = dump_payload(value)
            if serialized is not None and serialized != instance.raw_data_json:
                instance.raw_data_json = serialized
                changed = True
            continue

        current = getattr(instance, field)
        if field in fill_only:
            if current is None and value is not None:
                setattr(instance, field, value)
                changed = True
            continue
        if field in sticky and value is None:
            continue
        if current != value:
            setattr(instance, field, value)
            changed = True

    return changed


def merge_invoice(instance: Any, incoming: Dict[str, Any]) -> bool:
    """Merge remote invoice fields, leaving workflow fields untouched."""
    return merge_remote_fields(instance, incoming, protected=INVOICE_WORKFLOW_FIELDS)


def merge_transaction(instance: Any, incoming: Dict[str, Any]) -> bool:
    """Merge remote transaction fields, keeping local links and categories."""
    return merge_remote_fields(
        instance,
        incoming,
        fill_only=TRANSACTION_FILL_ONLY_FIELDS,
        sticky=TRANSACTION_STICKY_FIELDS,
    )
