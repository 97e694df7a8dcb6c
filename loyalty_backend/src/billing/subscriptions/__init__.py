"""
Subscriptions Module

User-initiated subscription management.

Components:
- SubscriptionService: Main orchestrator
- Handlers: Customer, Checkout, Lifecycle, Preview
- TrialService: Card fingerprint guard for trials

Usage:
    from loyalty_backend.src.billing.subscriptions import subscription_service
    
    result = await subscription_service.cancel_subscription(user_id, subscription_id)
"""

from .service import (
    SubscriptionService,
    subscription_service,
)

from .handlers import (
    CustomerHandler,
    CheckoutHandler,
    LifecycleHandler,
    PreviewHandler,
    create_or_change_subscription,
    change_plan,
    cancel_subscription,
    reactivate_subscription,
    preview_plan_change,
)

from .trial_service import (
    TrialService,
    trial_service,
)

__all__ = [
    # Main service
    'SubscriptionService',
    'subscription_service',
    # Handlers
    'CustomerHandler',
    'CheckoutHandler',
    'LifecycleHandler',
    'PreviewHandler',
    # Convenience functions
    'create_or_change_subscription',
    'change_plan',
    'cancel_subscription',
    'reactivate_subscription',
    'preview_plan_change',
    # Trial
    'TrialService',
    'trial_service',
]
