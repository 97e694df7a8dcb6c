"""
Subscription Webhook Handler

Handles subscription lifecycle webhook events:
- customer.subscription.updated
- customer.subscription.deleted
"""

import logging
from typing import Any, Dict

from loyalty_backend.src.billing.domain.period import period_from_remote
from loyalty_backend.src.billing.domain.reconciliation import SubscriptionUpdate, UpdateSource
from loyalty_backend.src.billing.domain.subscription import SubscriptionStatus, map_remote_status
from loyalty_backend.src.billing.invoices.persister import object_id
from .base import BaseWebhookHandler, WebhookResult, metadata_plan_type, metadata_user_id
from .checkout import period_plan

logger = logging.getLogger(__name__)


class SubscriptionWebhookHandler(BaseWebhookHandler):
    """
    Handler for Stripe subscription webhook events.
    
    Status always comes from the live subscription, so an update delivered
    after a later one cannot roll the row back.
    """

    async def handle_subscription_updated(self, payload: Dict[str, Any]) -> WebhookResult:
        return await self._sync(payload, deleted=False)

    async def handle_subscription_deleted(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        The period is still recomputed from the last known values, for the
        record only. A canceled row grants nothing past current_period_end.
        """
        return await self._sync(payload, deleted=True)

    async def _sync(self, payload: Dict[str, Any], deleted: bool) -> WebhookResult:
        action = 'subscription_deleted' if deleted else 'subscription_updated'
        subscription = await self.fresh_subscription(payload['id'], fallback=payload)

        user_id = metadata_user_id(subscription)
        if not user_id:
            logger.info(f"[SUBSCRIPTION] {subscription['id']} has no user_id metadata, skipping")
            return WebhookResult(success=True, action=f'{action}_no_user_metadata')

        local = await self.store.get_by_user(user_id)
        reported_plan = metadata_plan_type(subscription)
        period = period_from_remote(subscription, period_plan(local, subscription['id'], reported_plan))

        if deleted:
            status = SubscriptionStatus.CANCELED
        else:
            status = map_remote_status(subscription.get('status'), local.status if local else None)

        logger.info(
            f"[SUBSCRIPTION] {action}: sub={subscription['id']}, remote_status={subscription.get('status')}, "
            f"local_status={status.value}, user={user_id}"
        )

        record = await self.write_back(local, SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.WEBHOOK,
            status=status,
            plan_type=reported_plan,
            stripe_customer_id=object_id(subscription.get('customer')),
            stripe_subscription_id=subscription['id'],
            period=period,
            cancel_at_period_end=subscription.get('cancel_at_period_end'),
        ))
        return WebhookResult.with_period(action, record, period)
