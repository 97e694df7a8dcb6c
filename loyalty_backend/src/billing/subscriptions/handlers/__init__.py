"""
Subscription Handlers

Handler modules for user-initiated subscription transitions.
"""

from .customer import CustomerHandler

from .checkout import (
    CheckoutHandler,
    checkout_handler,
    create_or_change_subscription,
    change_plan,
)

from .lifecycle import (
    LifecycleHandler,
    lifecycle_handler,
    cancel_subscription,
    reactivate_subscription,
)

from .preview import (
    PreviewHandler,
    preview_handler,
    preview_plan_change,
)

__all__ = [
    # Customer
    'CustomerHandler',
    # Checkout
    'CheckoutHandler',
    'checkout_handler',
    'create_or_change_subscription',
    'change_plan',
    # Lifecycle
    'LifecycleHandler',
    'lifecycle_handler',
    'cancel_subscription',
    'reactivate_subscription',
    # Preview
    'PreviewHandler',
    'preview_handler',
    'preview_plan_change',
]
