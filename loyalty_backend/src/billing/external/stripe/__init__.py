"""
Stripe Integration Module

Provides the Stripe integration for billing:
- Async API wrapper with the operations the handlers need
- Idempotency key generation
- Webhook processing and event handlers

Usage:
    from loyalty_backend.src.billing.external.stripe import (
        StripeAPIWrapper,
        webhook_service,
        stripe_idempotency_manager,
    )
    
    customer = await StripeAPIWrapper.create_customer(
        email="owner@example.com",
        user_id=user_id,
        idempotency_key=stripe_idempotency_manager.generate_customer_key(user_id),
    )
"""

from .client import (
    StripeAPIWrapper,
    SUBSCRIPTION_EXPAND,
    to_dict,
    extract_client_secret,
    first_item_id,
)

from .idempotency import (
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)

from .webhooks import (
    WebhookService,
    webhook_service,
)

from .handlers import (
    WebhookResult,
    CheckoutWebhookHandler,
    SubscriptionWebhookHandler,
    InvoiceWebhookHandler,
)

__all__ = [
    # API Client
    'StripeAPIWrapper',
    'SUBSCRIPTION_EXPAND',
    'to_dict',
    'extract_client_secret',
    'first_item_id',
    # Idempotency
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
    # Webhook Service
    'WebhookService',
    'webhook_service',
    # Handlers
    'WebhookResult',
    'CheckoutWebhookHandler',
    'SubscriptionWebhookHandler',
    'InvoiceWebhookHandler',
]
