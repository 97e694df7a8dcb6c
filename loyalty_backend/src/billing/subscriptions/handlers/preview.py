"""
Preview Handler

Dry-run pricing for a plan change. Shows the user the exact amount the
change would charge before anything is committed in Stripe.
"""

import logging
from typing import Any, Dict, Optional

from loyalty_backend.core.conf import settings
from loyalty_backend.src.billing.domain.period import from_timestamp
from loyalty_backend.src.billing.domain.plan_change import (
    ChangeType,
    classify_plan_change,
    resolve_update_policy,
)
from loyalty_backend.src.billing.external.stripe import StripeAPIWrapper, first_item_id
from loyalty_backend.src.billing.shared.config import PlanType, get_plan_display_name, parse_plan_type
from loyalty_backend.src.billing.shared.exceptions import RemoteProviderError, SubscriptionNotFoundError
from loyalty_backend.src.billing.store import subscription_store

logger = logging.getLogger(__name__)

PREVIEW_MESSAGES = {
    ChangeType.TRIAL_CONVERSION: "Your trial ends today and you will be charged for the {plan} Plan now.",
    ChangeType.INTERVAL_CHANGE: "Your billing cycle restarts today. Unused time on your current plan is credited.",
    ChangeType.UPGRADE: "You will be charged the prorated difference for the {plan} Plan now.",
    ChangeType.LATERAL: "Your plan price will be updated.",
}


def _format_date(value) -> Optional[str]:
    if value is None:
        return None
    return f"{value.strftime('%B')} {value.day}, {value.year}"


class PreviewHandler:

    def __init__(self, store=None, gateway=None):
        self.store = store or subscription_store
        self.gateway = gateway or StripeAPIWrapper

    async def preview_plan_change(
        self,
        user_id: str,
        new_plan_type: str,
        new_price_id: str
    ) -> Dict[str, Any]:
        """
        Price a plan change without side effects.
        
        Args:
            user_id: Supabase user id
            new_plan_type: Target plan
            new_price_id: Stripe price for the target plan
            
        Returns:
            Dict with amount (minor units), currency, message,
            next_billing_date, change_type and will_charge_now
            
        Raises:
            SubscriptionNotFoundError: Row points at a subscription Stripe no longer has
            RemoteProviderError: Stripe could not compute the preview
        """
        target_plan = parse_plan_type(new_plan_type)
        local = await self.store.get_by_user(user_id)

        if not local or not local.stripe_customer_id or not local.stripe_subscription_id:
            return self._new_subscription_preview(target_plan)

        remote = await self.gateway.retrieve_subscription(local.stripe_subscription_id)
        if remote is None:
            raise SubscriptionNotFoundError(
                "No subscription found in Stripe. Please subscribe first.",
                subscription_id=local.id
            )
        if remote.get('status') in ('canceled', 'incomplete_expired'):
            return self._new_subscription_preview(target_plan)

        change = classify_plan_change(local.plan_type, target_plan)
        policy = resolve_update_policy(change, on_trial=local.plan_type == PlanType.TRIAL)
        current_period_end = local.current_period_end.isoformat() if local.current_period_end else None

        base = {
            'is_new_subscription': False,
            'change_type': policy.change_type.value,
            'current_plan': local.plan_type.value,
            'new_plan': target_plan.value,
            'current_period_end': current_period_end,
        }

        if policy.defers_plan_change:
            return {
                **base,
                'amount': 0,
                'currency': settings.BILLING_DEFAULT_CURRENCY,
                'will_charge_now': False,
                'next_billing_date': current_period_end,
                'message': (
                    f"Your plan will change to {get_plan_display_name(target_plan)} Plan on "
                    f"{_format_date(local.current_period_end)}. You keep your current plan until then."
                ),
            }

        item_id = first_item_id(remote)
        try:
            if not item_id:
                raise RemoteProviderError(f"Subscription {remote.get('id')} has no items")
            preview = await self.gateway.preview_invoice(
                customer_id=local.stripe_customer_id,
                subscription_id=remote['id'],
                item_id=item_id,
                price_id=new_price_id,
                policy=policy,
            )
        except RemoteProviderError as e:
            logger.error(f"[PREVIEW] Could not preview {change.current_plan.value} -> {target_plan.value} for {user_id}: {e}")
            raise RemoteProviderError(
                "Could not calculate preview",
                stripe_code=e.stripe_code,
                stripe_error=e.stripe_error
            )

        next_billing = from_timestamp(preview.get('period_end'))
        logger.info(
            f"[PREVIEW] {user_id} {policy.change_type.value} would charge "
            f"{preview.get('amount_due')} {preview.get('currency')}"
        )

        return {
            **base,
            'amount': int(preview.get('amount_due') or 0),
            'currency': preview.get('currency') or settings.BILLING_DEFAULT_CURRENCY,
            'will_charge_now': policy.charges_now,
            'next_billing_date': next_billing.isoformat() if next_billing else None,
            'message': PREVIEW_MESSAGES[policy.change_type].format(plan=get_plan_display_name(target_plan)),
        }

    @staticmethod
    def _new_subscription_preview(target_plan: PlanType) -> Dict[str, Any]:
        return {
            'is_new_subscription': True,
            'change_type': ChangeType.NEW_SUBSCRIPTION.value,
            'new_plan': target_plan.value,
            'amount': 0,
            'currency': settings.BILLING_DEFAULT_CURRENCY,
            'will_charge_now': False,
            'next_billing_date': None,
            'message': "No active subscription. Subscribe to start the plan.",
        }


preview_handler = PreviewHandler()


async def preview_plan_change(user_id: str, new_plan_type: str, new_price_id: str) -> Dict[str, Any]:
    return await preview_handler.preview_plan_change(user_id, new_plan_type, new_price_id)
