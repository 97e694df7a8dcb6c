"""
External Integrations Module

Integration with external payment providers:
- Stripe (the only provider)

Usage:
    from loyalty_backend.src.billing.external.stripe import (
        StripeAPIWrapper,
        webhook_service,
    )
"""

from .stripe import (
    StripeAPIWrapper,
    stripe_idempotency_manager,
    WebhookService,
    webhook_service,
)

__all__ = [
    'StripeAPIWrapper',
    'stripe_idempotency_manager',
    'WebhookService',
    'webhook_service',
]
