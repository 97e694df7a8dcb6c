"""
Shared plumbing for the webhook event handlers.

Every handler ends the same way: describe what Stripe reported as a
SubscriptionUpdate, reconcile it against the local row and save only if
something changed. Replays therefore reach a fixed point after the
first delivery.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loyalty_backend.src.billing.domain.period import BillingPeriod
from loyalty_backend.src.billing.domain.reconciliation import SubscriptionUpdate, is_stale_active, reconcile
from loyalty_backend.src.billing.domain.subscription import SubscriptionRecord
from loyalty_backend.src.billing.shared.config import DEFAULT_WEBHOOK_PLAN, PlanType, parse_plan_type
from loyalty_backend.src.billing.store import subscription_store
from ..client import StripeAPIWrapper

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    """Outcome of one webhook event, rendered into the webhook response."""
    success: bool
    action: str
    user_id: Optional[str] = None
    plan_type: Optional[str] = None
    billing_period_accurate: Optional[bool] = None
    actual_duration_days: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def with_period(
        cls,
        action: str,
        record: SubscriptionRecord,
        period: Optional[BillingPeriod]
    ) -> 'WebhookResult':
        return cls(
            success=True,
            action=action,
            user_id=record.user_id,
            plan_type=record.plan_type.value,
            billing_period_accurate=period.is_accurate if period else None,
            actual_duration_days=period.duration_days if period else None,
        )


def metadata_user_id(obj: Dict[str, Any]) -> Optional[str]:
    return (obj.get('metadata') or {}).get('user_id') or None


def metadata_plan_type(obj: Dict[str, Any], default: Optional[PlanType] = DEFAULT_WEBHOOK_PLAN) -> Optional[PlanType]:
    """plan_type from Stripe metadata. Raises InvalidPlanTypeError for an unknown value."""
    value = (obj.get('metadata') or {}).get('plan_type')
    if not value:
        return default
    return parse_plan_type(value)


class BaseWebhookHandler:

    def __init__(self, store=None, gateway=None):
        self.store = store or subscription_store
        self.gateway = gateway or StripeAPIWrapper

    async def fresh_subscription(self, subscription_id: str, fallback: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Re-read the subscription from Stripe.
        
        Event payloads can be older than the current state, so the live
        object wins. The payload is only used once Stripe no longer has it.
        """
        subscription = await self.gateway.retrieve_subscription(subscription_id)
        if subscription is None:
            logger.warning(f"[WEBHOOK] Subscription {subscription_id} not found in Stripe, using event payload")
            return fallback
        return subscription

    async def write_back(
        self,
        local: Optional[SubscriptionRecord],
        update: SubscriptionUpdate
    ) -> SubscriptionRecord:
        now = datetime.now(timezone.utc)
        record = reconcile(local, update, now)

        if is_stale_active(record, now):
            logger.warning(
                f"[WEBHOOK] {record.user_id} is {record.status.value} but the period ended "
                f"{record.current_period_end.isoformat()}"
            )

        if record is local:
            logger.info(f"[WEBHOOK] No change for {update.user_id}")
            return local

        return await self.store.save(record)
