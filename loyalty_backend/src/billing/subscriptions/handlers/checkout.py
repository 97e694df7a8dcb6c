"""
Checkout Handler

Creates a subscription on first checkout and switches plans on a live one.

Flow:
    1. Trial requests are refused for a card already used for a trial
    2. The Stripe customer is resolved or created, the card attached
    3. No live remote subscription: create one (30-day trial or charge now)
    4. Live remote subscription: apply the plan-change policy
    5. Write the reconciled row

Nothing is written locally unless the Stripe mutation succeeded.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from loyalty_backend.src.billing.domain.period import period_from_remote, to_timestamp
from loyalty_backend.src.billing.domain.plan_change import (
    ChangeType,
    NEW_SUBSCRIPTION_POLICY,
    UpdatePolicy,
    classify_plan_change,
    resolve_update_policy,
)
from loyalty_backend.src.billing.domain.reconciliation import SubscriptionUpdate, UpdateSource, reconcile
from loyalty_backend.src.billing.domain.subscription import (
    PendingPlanChange,
    SubscriptionRecord,
    mirror_remote_status,
)
from loyalty_backend.src.billing.external.stripe import (
    StripeAPIWrapper,
    extract_client_secret,
    first_item_id,
    stripe_idempotency_manager,
)
from loyalty_backend.src.billing.shared.config import PlanType, TRIAL_PERIOD_DAYS, parse_plan_type
from loyalty_backend.src.billing.shared.exceptions import (
    PaymentProcessingFailedError,
    RemoteProviderError,
    SubscriptionNotFoundError,
)
from loyalty_backend.src.billing.store import subscription_store
from loyalty_backend.src.billing.subscriptions.trial_service import TrialService
from .customer import CustomerHandler

logger = logging.getLogger(__name__)

# Remote statuses that can no longer be updated
DEAD_REMOTE_STATUSES = ('canceled', 'incomplete_expired')

CHANGE_MESSAGES = {
    ChangeType.TRIAL_CONVERSION: "Your trial ends now. Please confirm payment to start your plan.",
    ChangeType.INTERVAL_CHANGE: "Your billing cycle restarts today. Please confirm payment to complete your plan change.",
    ChangeType.UPGRADE: "Please confirm payment to complete your upgrade.",
    ChangeType.DOWNGRADE: "Plan change will take effect at the end of your current billing period.",
    ChangeType.LATERAL: "Your plan has been updated.",
}


class CheckoutHandler:
    """
    Handles subscription checkout and plan changes.
    
    Usage:
        result = await checkout_handler.create_or_change_subscription(
            user_id=user_id,
            email=email,
            plan_type="monthly",
            price_id="price_xxx",
            payment_method_id="pm_xxx",
        )
    """

    def __init__(self, store=None, gateway=None, customer_handler=None, trial_service=None):
        self.store = store or subscription_store
        self.gateway = gateway or StripeAPIWrapper
        self.customer_handler = customer_handler or CustomerHandler(gateway=self.gateway)
        self.trial_service = trial_service or TrialService(store=self.store, gateway=self.gateway)

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
        Start a subscription or switch the live one to a new plan.
        
        Args:
            user_id: Supabase user id
            email: Email for a new Stripe customer
            plan_type: Requested plan (ignored when is_trial)
            price_id: Stripe price for the plan
            payment_method_id: Card collected by the dashboard
            is_trial: Start a 30-day trial instead of charging
            auto_renew: False stops renewal after the current period
            
        Returns:
            Dict with client_secret, subscription_id, requires_payment,
            change_type, plan_type, status and message
            
        Raises:
            DuplicateTrialCardError: Card already used for another trial
            PaymentProcessingFailedError: Stripe rejected a call
        """
        target_plan = PlanType.TRIAL if is_trial else parse_plan_type(plan_type)
        logger.info(f"[CHECKOUT] {user_id} requested {target_plan.value} (trial={is_trial})")

        local = await self.store.get_by_user(user_id)

        try:
            fingerprint = await self.trial_service.get_card_fingerprint(payment_method_id)
            if is_trial:
                await self.trial_service.ensure_trial_eligible(user_id, fingerprint)

            customer_id = await self.customer_handler.get_or_create_stripe_customer(user_id, email, local)
            await self.customer_handler.attach_payment_method(customer_id, payment_method_id)

            live = await self._live_remote_subscription(local)
            if live is None:
                subscription = await self._create_remote_subscription(
                    user_id=user_id,
                    customer_id=customer_id,
                    plan_type=target_plan,
                    price_id=price_id,
                    payment_method_id=payment_method_id,
                    trial_period_days=TRIAL_PERIOD_DAYS if is_trial else None,
                    cancel_at_period_end=not is_trial and not auto_renew,
                )
                policy = NEW_SUBSCRIPTION_POLICY
                requires_payment = not is_trial
            else:
                subscription, policy = await self._switch_remote_subscription(
                    local, live, target_plan, price_id, cancel_at_period_end=not auto_renew
                )
                requires_payment = policy.charges_now
        except RemoteProviderError as e:
            raise PaymentProcessingFailedError.from_remote(e)

        record = await self._write_back(
            local=local,
            user_id=user_id,
            subscription=subscription,
            policy=policy,
            target_plan=target_plan,
            price_id=price_id,
            customer_id=customer_id,
            fingerprint=fingerprint,
        )

        if policy.change_type == ChangeType.NEW_SUBSCRIPTION:
            message = (
                f"Your {TRIAL_PERIOD_DAYS}-day trial has started." if is_trial
                else "Please confirm payment to activate your subscription."
            )
        else:
            message = CHANGE_MESSAGES[policy.change_type]

        return self._build_response(subscription, record, policy, requires_payment, message)

    async def change_plan(
        self,
        user_id: str,
        new_plan_type: str,
        new_price_id: str
    ) -> Dict[str, Any]:
        """
        Switch an existing subscriber to another plan.
        
        A fully canceled remote subscription is replaced by a new one. If
        the paid period has not ended yet, the new subscription trials
        until then so that time is not charged twice.
        
        Raises:
            SubscriptionNotFoundError: No subscription to change
            PaymentProcessingFailedError: Stripe rejected a call
        """
        target_plan = parse_plan_type(new_plan_type)
        local = await self.store.get_by_user(user_id)

        if not local or not local.stripe_customer_id or not local.stripe_subscription_id:
            raise SubscriptionNotFoundError("No subscription found. Please subscribe first.")

        now = datetime.now(timezone.utc)

        try:
            remote = await self.gateway.retrieve_subscription(local.stripe_subscription_id)
            if remote is None:
                raise SubscriptionNotFoundError(
                    "No subscription found in Stripe. Please subscribe first.",
                    subscription_id=local.id
                )

            if remote.get('status') in DEAD_REMOTE_STATUSES:
                trial_end = None
                if not local.is_expired(now):
                    trial_end = to_timestamp(local.current_period_end)
                logger.info(
                    f"[CHANGE_PLAN] Remote subscription for {user_id} is {remote.get('status')}, "
                    f"creating a new one (trial_end={trial_end})"
                )
                subscription = await self._create_remote_subscription(
                    user_id=user_id,
                    customer_id=local.stripe_customer_id,
                    plan_type=target_plan,
                    price_id=new_price_id,
                    trial_end=trial_end,
                )
                policy = NEW_SUBSCRIPTION_POLICY
                requires_payment = trial_end is None
                message = (
                    "Your new plan starts when your current paid period ends." if trial_end
                    else "Please confirm payment to start your new plan."
                )
            else:
                subscription, policy = await self._switch_remote_subscription(
                    local, remote, target_plan, new_price_id
                )
                requires_payment = policy.charges_now
                message = CHANGE_MESSAGES[policy.change_type]
        except RemoteProviderError as e:
            raise PaymentProcessingFailedError.from_remote(e)

        record = await self._write_back(
            local=local,
            user_id=user_id,
            subscription=subscription,
            policy=policy,
            target_plan=target_plan,
            price_id=new_price_id,
            customer_id=local.stripe_customer_id,
        )
        return self._build_response(subscription, record, policy, requires_payment, message)

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    async def _live_remote_subscription(self, local: Optional[SubscriptionRecord]) -> Optional[Dict[str, Any]]:
        """The row's remote subscription if it can still be updated."""
        if not local or not local.stripe_subscription_id:
            return None

        remote = await self.gateway.retrieve_subscription(local.stripe_subscription_id)
        if remote is None or remote.get('status') in DEAD_REMOTE_STATUSES:
            return None
        return remote

    async def _create_remote_subscription(
        self,
        user_id: str,
        customer_id: str,
        plan_type: PlanType,
        price_id: str,
        payment_method_id: Optional[str] = None,
        trial_period_days: Optional[int] = None,
        trial_end: Optional[int] = None,
        cancel_at_period_end: bool = False
    ) -> Dict[str, Any]:
        logger.info(f"[CHECKOUT] Creating {plan_type.value} subscription for {user_id}")
        return await self.gateway.create_subscription(
            customer_id=customer_id,
            price_id=price_id,
            policy=NEW_SUBSCRIPTION_POLICY,
            metadata={
                'user_id': user_id,
                'plan_type': plan_type.value,
                'is_trial': str(plan_type == PlanType.TRIAL).lower(),
            },
            default_payment_method=payment_method_id,
            trial_period_days=trial_period_days,
            trial_end=trial_end,
            cancel_at_period_end=cancel_at_period_end,
            idempotency_key=stripe_idempotency_manager.generate_subscription_key(
                user_id, price_id, plan_type.value, payment_method_id, trial_end
            ),
        )

    async def _switch_remote_subscription(
        self,
        local: SubscriptionRecord,
        remote: Dict[str, Any],
        target_plan: PlanType,
        price_id: str,
        cancel_at_period_end: Optional[bool] = None
    ) -> Tuple[Dict[str, Any], UpdatePolicy]:
        change = classify_plan_change(local.plan_type, target_plan)
        policy = resolve_update_policy(change, on_trial=local.plan_type == PlanType.TRIAL)

        item_id = first_item_id(remote)
        if not item_id:
            raise RemoteProviderError(f"Subscription {remote.get('id')} has no items to update")

        # Metadata keeps the plan that is actually paid for until a deferred change applies
        paid_plan = local.plan_type if policy.defers_plan_change else target_plan
        metadata = {
            'user_id': local.user_id,
            'plan_type': paid_plan.value,
            'is_trial': str(paid_plan == PlanType.TRIAL).lower(),
            'pending_plan_type': target_plan.value if policy.defers_plan_change else '',
        }

        logger.info(
            f"[CHECKOUT] {policy.change_type.value} {local.plan_type.value} -> {target_plan.value} "
            f"for {local.user_id}: proration={policy.proration.value}, anchor={policy.anchor.value}, "
            f"end_trial_now={policy.end_trial_now}"
        )
        subscription = await self.gateway.update_subscription(
            subscription_id=remote['id'],
            item_id=item_id,
            price_id=price_id,
            policy=policy,
            metadata=metadata,
            cancel_at_period_end=cancel_at_period_end,
        )
        return subscription, policy

    async def _write_back(
        self,
        local: Optional[SubscriptionRecord],
        user_id: str,
        subscription: Dict[str, Any],
        policy: UpdatePolicy,
        target_plan: PlanType,
        price_id: str,
        customer_id: str,
        fingerprint: Optional[str] = None
    ) -> SubscriptionRecord:
        """Reconcile the row with the subscription Stripe just returned and save it."""
        now = datetime.now(timezone.utc)
        deferred = policy.defers_plan_change
        paid_plan = local.plan_type if deferred and local else target_plan

        update = SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.USER,
            status=mirror_remote_status(subscription.get('status'), local.status if local else None),
            plan_type=None if deferred else target_plan,
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription['id'],
            period=period_from_remote(subscription, paid_plan),
            cancel_at_period_end=subscription.get('cancel_at_period_end'),
            card_fingerprint=fingerprint,
            pending_plan_change=(
                PendingPlanChange(plan_type=target_plan, price_id=price_id, requested_at=now)
                if deferred else None
            ),
            clear_pending_plan_change=not deferred,
        )

        record = reconcile(local, update, now)
        if record is local:
            return local
        return await self.store.save(record)

    @staticmethod
    def _build_response(
        subscription: Dict[str, Any],
        record: SubscriptionRecord,
        policy: UpdatePolicy,
        requires_payment: bool,
        message: str
    ) -> Dict[str, Any]:
        return {
            'success': True,
            'client_secret': extract_client_secret(subscription),
            'subscription_id': subscription['id'],
            'requires_payment': requires_payment,
            'change_type': policy.change_type.value,
            'plan_type': record.plan_type.value,
            'pending_plan_change': (
                record.pending_plan_change.to_dict() if record.pending_plan_change else None
            ),
            'status': record.status.value,
            'message': message,
        }


checkout_handler = CheckoutHandler()


async def create_or_change_subscription(**kwargs) -> Dict[str, Any]:
    return await checkout_handler.create_or_change_subscription(**kwargs)


async def change_plan(**kwargs) -> Dict[str, Any]:
    return await checkout_handler.change_plan(**kwargs)
