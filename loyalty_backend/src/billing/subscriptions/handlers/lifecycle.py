"""
Lifecycle Handler

Manages the end of a subscription and its way back:
- Cancellation (stop renewing, access kept until period end)
- Reactivation (resume a live subscription, or recreate a canceled one)

Based on the same pattern as checkout: Stripe first, the local row only
after Stripe accepted the change.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loyalty_backend.src.billing.domain.period import period_from_remote, to_timestamp
from loyalty_backend.src.billing.domain.plan_change import NEW_SUBSCRIPTION_POLICY
from loyalty_backend.src.billing.domain.reconciliation import SubscriptionUpdate, UpdateSource, reconcile
from loyalty_backend.src.billing.domain.subscription import SubscriptionRecord, SubscriptionStatus
from loyalty_backend.src.billing.external.stripe import (
    StripeAPIWrapper,
    extract_client_secret,
    stripe_idempotency_manager,
)
from loyalty_backend.src.billing.shared.exceptions import (
    CannotReactivateError,
    SubscriptionExpiredError,
    SubscriptionNotFoundError,
)
from loyalty_backend.src.billing.store import subscription_store
from .customer import CustomerHandler

logger = logging.getLogger(__name__)

RESUMABLE_REMOTE_STATUSES = ('active', 'trialing')
DEAD_REMOTE_STATUSES = ('canceled', 'incomplete_expired')


class LifecycleHandler:
    """
    Handles subscription lifecycle management.
    
    Supports:
    - Cancel subscription at period end
    - Reactivate a subscription before its paid period runs out
    """

    def __init__(self, store=None, gateway=None, customer_handler=None):
        self.store = store or subscription_store
        self.gateway = gateway or StripeAPIWrapper
        self.customer_handler = customer_handler or CustomerHandler(gateway=self.gateway)

    async def cancel_subscription(self, user_id: str, subscription_id: str) -> Dict[str, Any]:
        """
        Stop the subscription from renewing.
        
        The user keeps access until current_period_end. Whoever reads the
        row enforces that, not this handler.
        
        Args:
            user_id: Supabase user id
            subscription_id: Local subscription row id
            
        Returns:
            Dict with success, message, access_until
            
        Raises:
            SubscriptionNotFoundError: Row missing or owned by someone else
        """
        logger.info(f"[CANCEL] Processing cancellation of {subscription_id} for {user_id}")

        local = await self._get_owned_subscription(user_id, subscription_id)
        if not local.stripe_subscription_id:
            raise SubscriptionNotFoundError(
                "Subscription has no billing record to cancel",
                subscription_id=subscription_id
            )

        remote = await self.gateway.cancel_at_period_end(local.stripe_subscription_id)

        update = SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.USER,
            status=SubscriptionStatus.CANCELED,
            stripe_subscription_id=remote['id'],
            period=period_from_remote(remote, local.plan_type),
            cancel_at_period_end=True,
        )
        record = await self._save(local, update)

        access_until = record.current_period_end.isoformat() if record.current_period_end else None
        logger.info(f"[CANCEL] {user_id} canceled, access until {access_until}")

        return {
            'success': True,
            'message': "Your subscription has been canceled. You keep access until the end of the current billing period.",
            'access_until': access_until,
        }

    async def reactivate_subscription(
        self,
        user_id: str,
        subscription_id: str,
        payment_method_id: str,
        price_id: str
    ) -> Dict[str, Any]:
        """
        Undo a cancellation.
        
        - Period already over: SubscriptionExpiredError, no Stripe call
        - Remote still active/trialing: clear cancel_at_period_end, swap card
        - Remote canceled, expired or gone from Stripe: new subscription
          trialing until the old period end, so paid time is not charged twice
        - Anything else: CannotReactivateError
        
        Returns:
            Dict with success, action, subscription_id, current_period_end
        """
        now = datetime.now(timezone.utc)
        logger.info(f"[REACTIVATE] Processing reactivation of {subscription_id} for {user_id}")

        local = await self._get_owned_subscription(user_id, subscription_id)

        if local.is_expired(now):
            raise SubscriptionExpiredError(
                "Subscription period has ended. Please start a new subscription.",
                period_end=local.current_period_end.isoformat() if local.current_period_end else None
            )

        if not local.stripe_subscription_id or not local.stripe_customer_id:
            raise CannotReactivateError(
                "Subscription has no billing record. Please start a new subscription."
            )

        remote = await self.gateway.retrieve_subscription(local.stripe_subscription_id)
        remote_status = remote.get('status') if remote else 'missing'

        if remote_status in RESUMABLE_REMOTE_STATUSES:
            await self.customer_handler.attach_payment_method(local.stripe_customer_id, payment_method_id)
            subscription = await self.gateway.resume_subscription(remote['id'], payment_method_id)
            action = 'resumed'

        elif remote is None or remote_status in DEAD_REMOTE_STATUSES:
            await self.customer_handler.attach_payment_method(local.stripe_customer_id, payment_method_id)
            trial_end = to_timestamp(local.current_period_end)
            subscription = await self.gateway.create_subscription(
                customer_id=local.stripe_customer_id,
                price_id=price_id,
                policy=NEW_SUBSCRIPTION_POLICY,
                metadata={
                    'user_id': user_id,
                    'plan_type': local.plan_type.value,
                    'reactivated_from': local.stripe_subscription_id,
                },
                default_payment_method=payment_method_id,
                trial_end=trial_end,
                idempotency_key=stripe_idempotency_manager.generate_subscription_key(
                    user_id, price_id, local.plan_type.value, payment_method_id, trial_end
                ),
            )
            action = 'recreated'
            logger.info(
                f"[REACTIVATE] Replaced {remote_status} {local.stripe_subscription_id} with {subscription['id']}, "
                f"trial until {local.current_period_end.isoformat()}"
            )

        else:
            raise CannotReactivateError(
                f"Subscription cannot be reactivated (status: {remote_status}). Please start a new subscription.",
                remote_status=remote_status
            )

        update = SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.USER,
            status=SubscriptionStatus.ACTIVE,
            stripe_subscription_id=subscription['id'],
            period=period_from_remote(subscription, local.plan_type),
            cancel_at_period_end=False,
        )
        record = await self._save(local, update)

        return {
            'success': True,
            'action': action,
            'subscription_id': record.stripe_subscription_id,
            'client_secret': extract_client_secret(subscription),
            'current_period_end': record.current_period_end.isoformat() if record.current_period_end else None,
        }

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    async def _get_owned_subscription(self, user_id: str, subscription_id: str) -> SubscriptionRecord:
        local = await self.store.get_for_user(subscription_id, user_id)
        if not local:
            raise SubscriptionNotFoundError(subscription_id=subscription_id)
        return local

    async def _save(self, local: SubscriptionRecord, update: SubscriptionUpdate) -> SubscriptionRecord:
        record = reconcile(local, update, datetime.now(timezone.utc))
        if record is local:
            return local
        return await self.store.save(record)


lifecycle_handler = LifecycleHandler()


async def cancel_subscription(user_id: str, subscription_id: str) -> Dict[str, Any]:
    return await lifecycle_handler.cancel_subscription(user_id, subscription_id)


async def reactivate_subscription(
    user_id: str,
    subscription_id: str,
    payment_method_id: str,
    price_id: str
) -> Dict[str, Any]:
    return await lifecycle_handler.reactivate_subscription(
        user_id, subscription_id, payment_method_id, price_id
    )
