"""
Stripe Webhook Handlers

Contains handlers for different Stripe webhook event types:
- CheckoutWebhookHandler: Checkout session and one-time payment events
- SubscriptionWebhookHandler: Subscription lifecycle events
- InvoiceWebhookHandler: Invoice and payment events
"""

from .base import WebhookResult
from .checkout import CheckoutWebhookHandler
from .subscription import SubscriptionWebhookHandler
from .invoice import InvoiceWebhookHandler

__all__ = [
    'WebhookResult',
    'CheckoutWebhookHandler',
    'SubscriptionWebhookHandler',
    'InvoiceWebhookHandler',
]
