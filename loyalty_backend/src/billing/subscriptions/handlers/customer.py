"""
Customer Handler

Manages the Stripe customer behind a user's subscription row.
Features:
- Reuse the customer already linked to the row
- Find a customer created for the user by an earlier, failed checkout
- Replace a customer that was deleted in Stripe
- Attach the payment method and make it the default

Customer creation carries an idempotency key, so a retried request
never produces a second customer.
"""

import logging
from typing import Optional

from loyalty_backend.src.billing.domain.subscription import SubscriptionRecord
from loyalty_backend.src.billing.external.stripe import StripeAPIWrapper, stripe_idempotency_manager

logger = logging.getLogger(__name__)


class CustomerHandler:
    """
    Handles Stripe customer management.
    
    Each user maps to one Stripe customer, stored on the subscription row.
    """

    def __init__(self, gateway=None):
        self.gateway = gateway or StripeAPIWrapper

    async def get_or_create_stripe_customer(
        self,
        user_id: str,
        email: Optional[str],
        local: Optional[SubscriptionRecord]
    ) -> str:
        """
        Get the linked Stripe customer or create a new one.
        
        A row without a customer id first searches Stripe for a customer
        tagged with the user id, so a checkout that failed after creating
        the customer does not leave a second one behind on retry.
        
        Args:
            user_id: Supabase user id
            email: Email for a new customer
            local: The user's subscription row, if any
            
        Returns:
            Stripe customer ID (cus_xxx)
        """
        if local and local.stripe_customer_id:
            customer = await self.gateway.retrieve_customer(local.stripe_customer_id)
            if customer:
                return customer['id']
            logger.warning(
                f"[CUSTOMER] Customer {local.stripe_customer_id} for {user_id} no longer exists, creating a new one"
            )
        else:
            existing = await self.gateway.find_customer_by_user(user_id)
            if existing:
                logger.info(f"[CUSTOMER] Reusing unlinked Stripe customer {existing['id']} for {user_id}")
                return existing['id']

        customer = await self.gateway.create_customer(
            email=email,
            user_id=user_id,
            idempotency_key=stripe_idempotency_manager.generate_customer_key(user_id)
        )
        logger.info(f"[CUSTOMER] Created Stripe customer {customer['id']} for {user_id}")
        return customer['id']

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        """Attach the card (already attached is fine) and make it the invoice default."""
        await self.gateway.attach_payment_method(payment_method_id, customer_id)
        await self.gateway.set_default_payment_method(customer_id, payment_method_id)
