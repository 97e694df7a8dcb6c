"""
Billing Store Module

Database access for the subscriptions and invoices tables.
"""

from .subscriptions import SubscriptionStore, subscription_store
from .invoices import InvoiceStore, invoice_store, invoice_from_row

__all__ = [
    'SubscriptionStore',
    'subscription_store',
    'InvoiceStore',
    'invoice_store',
    'invoice_from_row',
]
