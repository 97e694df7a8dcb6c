"""
Subscription Service

Main orchestrator for user-initiated subscription operations.
Provides a unified interface for:
- Checkout and plan changes
- Plan change previews
- Subscription lifecycle (cancel, reactivate)
- Reading the current subscription row
"""

import logging
from typing import Any, Dict, Optional

from loyalty_backend.src.billing.external.stripe import StripeAPIWrapper
from loyalty_backend.src.billing.store import subscription_store
from .handlers import CheckoutHandler, CustomerHandler, LifecycleHandler, PreviewHandler
from .trial_service import TrialService

logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Unified subscription management service.
    
    Acts as the main entry point for the billing endpoints and delegates
    to specialized handlers. All handlers share one store and one gateway,
    so tests can swap both in a single place.
    
    Usage:
        from loyalty_backend.src.billing.subscriptions import subscription_service
        
        result = await subscription_service.create_or_change_subscription(
            user_id=user_id,
            email=email,
            plan_type="monthly",
            price_id="price_xxx",
            payment_method_id="pm_xxx",
        )
    """

    def __init__(self, store=None, gateway=None):
        self.store = store or subscription_store
        self.gateway = gateway or StripeAPIWrapper

        customer_handler = CustomerHandler(gateway=self.gateway)
        self.checkout = CheckoutHandler(
            store=self.store,
            gateway=self.gateway,
            customer_handler=customer_handler,
            trial_service=TrialService(store=self.store, gateway=self.gateway),
        )
        self.lifecycle = LifecycleHandler(
            store=self.store,
            gateway=self.gateway,
            customer_handler=customer_handler,
        )
        self.preview = PreviewHandler(store=self.store, gateway=self.gateway)

    # =========================================================================
    # Checkout & Plan Changes
    # =========================================================================

    async def create_or_change_subscription(
        self,
        user_id: str,
        email: Optional[str],
        plan_type: str,
        price_id: str,
        payment_method_id: str,
        is_trial: bool = False,
        auto_renew: bool = True
    ) -> Dict[str, Any]:
        """
        Start a subscription, or switch a live one to another plan.
        
        Returns:
            Dict with client_secret, subscription_id, requires_payment
        """
        return await self.checkout.create_or_change_subscription(
            user_id=user_id,
            email=email,
            plan_type=plan_type,
            price_id=price_id,
            payment_method_id=payment_method_id,
            is_trial=is_trial,
            auto_renew=auto_renew,
        )

    async def change_plan(self, user_id: str, new_plan_type: str, new_price_id: str) -> Dict[str, Any]:
        return await self.checkout.change_plan(
            user_id=user_id,
            new_plan_type=new_plan_type,
            new_price_id=new_price_id,
        )

    async def preview_plan_change(self, user_id: str, new_plan_type: str, new_price_id: str) -> Dict[str, Any]:
        return await self.preview.preview_plan_change(user_id, new_plan_type, new_price_id)

    # =========================================================================
    # Subscription Lifecycle
    # =========================================================================

    async def cancel_subscription(self, user_id: str, subscription_id: str) -> Dict[str, Any]:
        """
        Cancel at period end. Access continues until current_period_end.
        """
        return await self.lifecycle.cancel_subscription(user_id, subscription_id)

    async def reactivate_subscription(
        self,
        user_id: str,
        subscription_id: str,
        payment_method_id: str,
        price_id: str
    ) -> Dict[str, Any]:
        return await self.lifecycle.reactivate_subscription(
            user_id, subscription_id, payment_method_id, price_id
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_subscription(self, user_id: str) -> Optional[Dict[str, Any]]:
        """The user's subscription row as a dict, or None."""
        record = await self.store.get_by_user(user_id)
        return record.to_dict() if record else None


subscription_service = SubscriptionService()
