"""
Invoice Persister

Upserts Stripe invoice snapshots into the local invoice ledger, keyed by
Stripe invoice id, so replayed webhooks overwrite instead of duplicating.

Amounts are stored as integer minor units exactly as received. Converting
to major units is a display concern and never happens here.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loyalty_backend.src.billing.domain.invoice import InvoiceRecord
from loyalty_backend.src.billing.domain.period import from_timestamp
from loyalty_backend.src.billing.shared.exceptions import OrphanedInvoiceError
from loyalty_backend.src.billing.store import invoice_store as default_invoice_store
from loyalty_backend.src.billing.store import subscription_store as default_subscription_store

logger = logging.getLogger(__name__)

DEFAULT_RESTAURANT_NAME = "Restaurant"


def object_id(value: Any) -> Optional[str]:
    """Id of a Stripe reference that may or may not be expanded."""
    if isinstance(value, dict):
        return value.get('id')
    return value


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Subscription an invoice belongs to, across API versions."""
    subscription = object_id(invoice.get('subscription'))
    if subscription:
        return subscription
    details = ((invoice.get('parent') or {}).get('subscription_details') or {})
    return object_id(details.get('subscription'))


def _coalesce(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _invoice_amounts(invoice: Dict[str, Any]) -> Dict[str, int]:
    total = _coalesce(invoice.get('total'), invoice.get('amount_paid'), invoice.get('amount_due'), 0)
    discount = (invoice.get('discount') or {}).get('amount')
    if discount is None:
        discount = sum(item.get('amount') or 0 for item in invoice.get('total_discount_amounts') or [])

    return {
        'total': int(total),
        'subtotal': int(_coalesce(invoice.get('subtotal'), total)),
        'tax': int(_coalesce(invoice.get('tax'), 0)),
        'discount': int(discount),
        'amount_paid': int(invoice.get('amount_paid') or 0),
        'amount_due': int(invoice.get('amount_due') or 0),
    }


def service_period(invoice: Dict[str, Any]):
    """(start, end) of the first line item, else of the invoice itself."""
    lines = (invoice.get('lines') or {}).get('data') or []
    line_period = (lines[0].get('period') or {}) if lines else {}

    if line_period.get('start') is not None and line_period.get('end') is not None:
        return from_timestamp(line_period['start']), from_timestamp(line_period['end'])
    return from_timestamp(invoice.get('period_start')), from_timestamp(invoice.get('period_end'))


def build_invoice_record(
    invoice: Dict[str, Any],
    user_id: str,
    restaurant_name: str,
    now: datetime
) -> InvoiceRecord:
    """
    Map a Stripe invoice payload onto a ledger row.
    
    The first line item's service period wins over the invoice-level
    period, which for subscription invoices is the previous cycle.
    """
    invoice_id = invoice['id']
    period_start, period_end = service_period(invoice)
    status_transitions = invoice.get('status_transitions') or {}

    return InvoiceRecord(
        stripe_invoice_id=invoice_id,
        user_id=user_id,
        stripe_customer_id=object_id(invoice.get('customer')),
        stripe_subscription_id=invoice_subscription_id(invoice),
        invoice_number=invoice.get('number') or f"INV-{invoice_id[3:11]}",
        status=invoice.get('status'),
        currency=invoice.get('currency') or 'usd',
        period_start=period_start,
        period_end=period_end,
        invoice_date=from_timestamp(invoice.get('created')),
        paid_at=from_timestamp(status_transitions.get('paid_at')),
        due_date=from_timestamp(invoice.get('due_date')),
        invoice_pdf=invoice.get('invoice_pdf'),
        hosted_invoice_url=invoice.get('hosted_invoice_url'),
        payment_method='card' if invoice.get('payment_intent') else 'unknown',
        description=invoice.get('description'),
        restaurant_name=restaurant_name,
        metadata=dict(invoice.get('metadata') or {}),
        raw=invoice,
        updated_at=now,
        **_invoice_amounts(invoice),
    )


def merge_invoice(existing: Optional[InvoiceRecord], incoming: InvoiceRecord) -> InvoiceRecord:
    """
    Combine the stored row with a new snapshot.
    
    Once an invoice is paid or void its row is frozen; only the raw
    snapshot and updated_at follow the latest payload.
    """
    if existing is not None and existing.is_terminal:
        return replace(existing, raw=incoming.raw, updated_at=incoming.updated_at)
    return incoming


class InvoicePersister:
    """
    Writes invoice snapshots to the ledger.
    
    Usage:
        record = await invoice_persister.persist(stripe_invoice)
    """

    def __init__(self, subscription_store=None, invoice_store=None):
        self.subscription_store = subscription_store or default_subscription_store
        self.invoice_store = invoice_store or default_invoice_store

    async def persist(self, invoice: Dict[str, Any]) -> InvoiceRecord:
        """
        Upsert one invoice snapshot.
        
        Raises:
            OrphanedInvoiceError: If no subscription row references the
                invoice's customer
        """
        invoice_id = invoice['id']
        customer_id = object_id(invoice.get('customer'))

        owner = await self.subscription_store.find_by_customer(customer_id)
        if owner is None:
            logger.error(
                f"[INVOICE] CRITICAL: invoice {invoice_id} references customer {customer_id} "
                f"with no subscription row"
            )
            raise OrphanedInvoiceError(invoice_id=invoice_id, customer_id=customer_id)

        restaurant_name = (
            await self.invoice_store.get_restaurant_name(owner.user_id) or DEFAULT_RESTAURANT_NAME
        )
        incoming = build_invoice_record(invoice, owner.user_id, restaurant_name, datetime.now(timezone.utc))
        existing = await self.invoice_store.get(invoice_id)
        record = merge_invoice(existing, incoming)

        await self.invoice_store.upsert(record)
        logger.info(f"[INVOICE] Persisted {invoice_id} for {owner.user_id} (status={record.status})")
        return record


invoice_persister = InvoicePersister()
