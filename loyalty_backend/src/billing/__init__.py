"""
Billing Module

Stripe subscription billing for the restaurant loyalty dashboard.
Keeps one local subscription row per user in step with Stripe.

Submodules:
- shared: Plan catalog, exceptions
- domain: Periods, plan changes, records, reconciliation (no I/O)
- store: Database access for subscriptions and invoices
- invoices: Invoice ledger persister
- external: Stripe gateway and webhook processing
- subscriptions: User-initiated transitions (checkout, change, cancel, reactivate)
- endpoints: API routes

Usage:
    from loyalty_backend.src.billing import subscription_service, webhook_service
"""

# Shared configuration
from .shared import (
    PlanType,
    PLAN_HIERARCHY,
    TRIAL_PERIOD_DAYS,
    BillingError,
)

# Domain
from .domain import (
    SubscriptionRecord,
    SubscriptionStatus,
    reconcile,
)

# Invoices
from .invoices import (
    InvoicePersister,
    invoice_persister,
)

# External integrations (Stripe)
from .external import (
    StripeAPIWrapper,
    webhook_service,
    WebhookService,
)

# Subscriptions module
from .subscriptions import (
    SubscriptionService,
    subscription_service,
)

__all__ = [
    'PlanType',
    'PLAN_HIERARCHY',
    'TRIAL_PERIOD_DAYS',
    'BillingError',
    'SubscriptionRecord',
    'SubscriptionStatus',
    'reconcile',
    'InvoicePersister',
    'invoice_persister',
    'StripeAPIWrapper',
    'webhook_service',
    'WebhookService',
    'SubscriptionService',
    'subscription_service',
]
