"""
Checkout Webhook Handler

Handles payment confirmation events:
- checkout.session.completed
- payment_intent.succeeded (one-time purchases with no subscription)

Both upsert the row as active. A session backed by a subscription takes
its period from that subscription, a one-time purchase gets a calculated
period starting when the payment was created.
"""

import logging
from typing import Any, Dict, Optional

from loyalty_backend.src.billing.domain.period import (
    from_timestamp,
    period_for_direct_payment,
    period_from_remote,
)
from loyalty_backend.src.billing.domain.reconciliation import SubscriptionUpdate, UpdateSource
from loyalty_backend.src.billing.domain.subscription import SubscriptionRecord, SubscriptionStatus
from loyalty_backend.src.billing.invoices.persister import object_id
from loyalty_backend.src.billing.shared.config import PlanType
from loyalty_backend.src.billing.shared.exceptions import InvalidPlanTypeError
from .base import BaseWebhookHandler, WebhookResult, metadata_plan_type, metadata_user_id

logger = logging.getLogger(__name__)


def period_plan(local: Optional[SubscriptionRecord], subscription_id: Optional[str], reported: PlanType) -> PlanType:
    """
    Plan to validate a period against.
    
    For the subscription the row already tracks, the local plan is the
    truth (metadata may still name the pre-downgrade plan). Anything else
    starts a new lifecycle with the reported plan.
    """
    if local and subscription_id and local.stripe_subscription_id == subscription_id:
        return local.plan_type
    return reported


class CheckoutWebhookHandler(BaseWebhookHandler):
    """
    Handler for checkout and one-time payment webhook events.
    """

    async def handle_checkout_completed(self, session: Dict[str, Any]) -> WebhookResult:
        """
        Handle checkout.session.completed.
        
        Args:
            session: Checkout session object from the event
        """
        user_id = metadata_user_id(session)
        if not user_id:
            logger.info(f"[WEBHOOK] Checkout session {session.get('id')} has no user_id metadata, skipping")
            return WebhookResult(success=True, action='checkout_completed_no_metadata')

        try:
            plan_type = metadata_plan_type(session)
        except InvalidPlanTypeError as e:
            logger.info(f"[WEBHOOK] Checkout session {session.get('id')} is not a plan purchase ({e.plan_type}), skipping")
            return WebhookResult(success=True, action='checkout_completed_ignored', user_id=user_id)

        subscription_id = object_id(session.get('subscription'))
        local = await self.store.get_by_user(user_id)

        subscription = None
        if subscription_id:
            subscription = await self.fresh_subscription(subscription_id)

        if subscription:
            period = period_from_remote(subscription, period_plan(local, subscription_id, plan_type))
            cancel_at_period_end = subscription.get('cancel_at_period_end')
        else:
            period = period_for_direct_payment(plan_type, now=from_timestamp(session.get('created')))
            cancel_at_period_end = None
            subscription_id = None

        logger.info(
            f"[WEBHOOK] Checkout completed for {user_id}: plan={plan_type.value}, "
            f"subscription={subscription_id}, period_source={period.source.value}"
        )

        record = await self.write_back(local, SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.WEBHOOK,
            status=SubscriptionStatus.ACTIVE,
            plan_type=plan_type,
            stripe_customer_id=object_id(session.get('customer')),
            stripe_subscription_id=subscription_id,
            period=period,
            cancel_at_period_end=cancel_at_period_end,
        ))
        return WebhookResult.with_period('checkout_completed', record, period)

    async def handle_payment_succeeded(self, payment_intent: Dict[str, Any]) -> WebhookResult:
        """
        Handle payment_intent.succeeded for a one-time plan purchase.
        
        Payment intents without user_id and plan_type metadata belong to
        something else (subscription invoices, for one) and are ignored, as
        are purchases whose plan_type is not a subscription plan.
        """
        user_id = metadata_user_id(payment_intent)
        try:
            plan_type = metadata_plan_type(payment_intent, default=None)
        except InvalidPlanTypeError as e:
            logger.info(
                f"[WEBHOOK] Payment intent {payment_intent.get('id')} is not a plan purchase "
                f"({e.plan_type}), skipping"
            )
            return WebhookResult(success=True, action='payment_succeeded_ignored', user_id=user_id)

        if not user_id or plan_type is None:
            logger.info(
                f"[WEBHOOK] Payment intent {payment_intent.get('id')} has no user_id/plan_type "
                f"metadata, skipping"
            )
            return WebhookResult(success=True, action='payment_succeeded_no_metadata')

        period = period_for_direct_payment(plan_type, now=from_timestamp(payment_intent.get('created')))
        local = await self.store.get_by_user(user_id)

        logger.info(
            f"[WEBHOOK] One-time {plan_type.value} payment {payment_intent.get('id')} for {user_id}, "
            f"access until {period.end.isoformat()}"
        )

        record = await self.write_back(local, SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.WEBHOOK,
            status=SubscriptionStatus.ACTIVE,
            plan_type=plan_type,
            stripe_customer_id=object_id(payment_intent.get('customer')),
            period=period,
        ))
        return WebhookResult.with_period('payment_succeeded', record, period)
