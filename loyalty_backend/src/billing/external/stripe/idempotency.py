"""
Stripe Idempotency Key Generation

Generates deterministic idempotency keys for Stripe create calls so a
client retrying a whole request (after a timeout, say) inside the same
time window gets the original customer or subscription back instead of
a duplicate.
"""

import hashlib
from datetime import datetime, timezone
from typing import Optional

from loyalty_backend.core.conf import settings


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.
    
    Keys are designed to:
    - Be unique per operation + user + parameters
    - Stay stable inside a time bucket so retries collapse onto one call
    
    Usage:
        key = stripe_idempotency_manager.generate_customer_key(user_id)
        customer = await stripe.Customer.create_async(idempotency_key=key, ...)
    """

    def __init__(self, window_minutes: Optional[int] = None):
        self.window_minutes = window_minutes or settings.STRIPE_IDEMPOTENCY_WINDOW_MINUTES

    def generate_key(
        self,
        operation: str,
        user_id: str,
        *args,
        now: Optional[datetime] = None,
        **kwargs
    ) -> str:
        """
        Generate an idempotency key.
        
        Args:
            operation: Operation type (e.g., 'customer', 'subscription')
            user_id: Supabase user id
            *args: Additional positional arguments to include in key
            now: Clock override for the time bucket
            **kwargs: Additional keyword arguments to include in key
            
        Returns:
            40-character hex idempotency key
        """
        now = now or datetime.now(timezone.utc)
        timestamp_bucket = int(now.timestamp() // (self.window_minutes * 60))

        components = [
            operation,
            user_id,
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted(kwargs.items())],
            str(timestamp_bucket),
        ]

        return hashlib.sha256("_".join(components).encode()).hexdigest()[:40]

    def generate_customer_key(self, user_id: str) -> str:
        return self.generate_key('customer', user_id)

    def generate_subscription_key(
        self,
        user_id: str,
        price_id: str,
        plan_type: str,
        payment_method_id: Optional[str] = None,
        trial_end: Optional[int] = None
    ) -> str:
        """Key for subscription creation (checkout or reactivation)."""
        return self.generate_key(
            'subscription',
            user_id,
            price_id,
            plan_type=plan_type,
            payment_method=payment_method_id or 'none',
            trial_end=trial_end or 'none'
        )


stripe_idempotency_manager = StripeIdempotencyManager()
