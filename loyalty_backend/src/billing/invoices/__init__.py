"""
Invoices Module

Local ledger of Stripe invoices.
"""

from .persister import (
    InvoicePersister,
    invoice_persister,
    build_invoice_record,
    merge_invoice,
    invoice_subscription_id,
    object_id,
    service_period,
)

__all__ = [
    'InvoicePersister',
    'invoice_persister',
    'build_invoice_record',
    'merge_invoice',
    'invoice_subscription_id',
    'object_id',
    'service_period',
]
