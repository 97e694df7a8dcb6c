"""
Subscription Reconciliation

One pure function, reconcile(local, update, now), decides what the local
row becomes after a user transition or a webhook reports new remote state.
Both code paths go through it so they cannot drift apart.

Rules:
    - A stale update (an older period than the row already holds) leaves
      the row untouched.
    - A webhook never revives a canceled row for the same remote
      subscription. Only explicit reactivation does.
    - Webhook plan_type only seeds a row or resets it for a new remote
      subscription or a one-time purchase. User transitions own plan_type.
    - A deferred downgrade is applied once a webhook reports a period that
      started after the downgrade was requested.
    - Fields the update leaves as None keep their local value.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from loyalty_backend.src.billing.shared.config import PlanType
from loyalty_backend.src.billing.shared.exceptions import InvalidPlanTypeError
from .period import BillingPeriod
from .subscription import PendingPlanChange, SubscriptionRecord, SubscriptionStatus

logger = logging.getLogger(__name__)


class UpdateSource(str, Enum):
    USER = "user"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class SubscriptionUpdate:
    """
    New state reported for a user's subscription.
    
    None means "no information", never "clear the field". Use
    clear_pending_plan_change to drop a scheduled downgrade.
    """
    user_id: str
    source: UpdateSource
    status: Optional[SubscriptionStatus] = None
    plan_type: Optional[PlanType] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    period: Optional[BillingPeriod] = None
    cancel_at_period_end: Optional[bool] = None
    card_fingerprint: Optional[str] = None
    restaurant_id: Optional[str] = None
    pending_plan_change: Optional[PendingPlanChange] = None
    clear_pending_plan_change: bool = False


def _same_remote_subscription(local: SubscriptionRecord, update: SubscriptionUpdate) -> bool:
    return (
        update.stripe_subscription_id is not None
        and update.stripe_subscription_id == local.stripe_subscription_id
    )


def is_stale_update(local: Optional[SubscriptionRecord], update: SubscriptionUpdate) -> bool:
    """
    Whether the update describes state older than the row already holds.
    
    For the same remote subscription, periods are ordered by (start, end).
    An anchor reset legitimately moves the end backwards but always moves
    the start forwards. Webhooks about a different remote subscription are
    stale when that subscription's period started before the current one,
    and one-time payment webhooks are stale when they would shorten the
    paid window.
    """
    if local is None or update.period is None:
        return False
    if local.current_period_start is None or local.current_period_end is None:
        return False

    if _same_remote_subscription(local, update):
        # A later start wins even with an earlier end: that is an anchor reset
        # (interval change or trial conversion), not an out-of-order delivery.
        # The same start with an earlier end is stale.
        return (update.period.start, update.period.end) < (local.current_period_start, local.current_period_end)

    if update.source != UpdateSource.WEBHOOK:
        return False

    if update.stripe_subscription_id is None:
        return update.period.end < local.current_period_end

    return local.stripe_subscription_id is not None and update.period.start < local.current_period_start


def is_stale_active(record: SubscriptionRecord, now: datetime) -> bool:
    """An active row whose paid window already ended."""
    return (
        record.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)
        and record.current_period_end is not None
        and record.current_period_end <= now
    )


def _new_record(update: SubscriptionUpdate, now: datetime) -> SubscriptionRecord:
    if update.plan_type is None:
        raise InvalidPlanTypeError(None)

    return SubscriptionRecord(
        user_id=update.user_id,
        plan_type=update.plan_type,
        status=update.status or SubscriptionStatus.ACTIVE,
        restaurant_id=update.restaurant_id,
        stripe_customer_id=update.stripe_customer_id,
        stripe_subscription_id=update.stripe_subscription_id,
        current_period_start=update.period.start if update.period else None,
        current_period_end=update.period.end if update.period else None,
        cancel_at_period_end=bool(update.cancel_at_period_end),
        card_fingerprint=update.card_fingerprint,
        pending_plan_change=update.pending_plan_change,
        created_at=now,
        updated_at=now,
    )


def _resolve_status(local: SubscriptionRecord, update: SubscriptionUpdate) -> SubscriptionStatus:
    if update.status is None:
        return local.status

    if (
        update.source == UpdateSource.WEBHOOK
        and local.status == SubscriptionStatus.CANCELED
        and update.status != SubscriptionStatus.CANCELED
        and _same_remote_subscription(local, update)
    ):
        logger.info(
            f"[RECONCILE] Keeping {local.user_id} canceled, webhook reported "
            f"{update.status.value} for {update.stripe_subscription_id}"
        )
        return SubscriptionStatus.CANCELED

    return update.status


def _resolve_plan(local: SubscriptionRecord, update: SubscriptionUpdate):
    plan_type = local.plan_type
    pending = local.pending_plan_change

    if update.source == UpdateSource.USER:
        if update.plan_type is not None:
            plan_type = update.plan_type
        if update.pending_plan_change is not None:
            pending = update.pending_plan_change
        elif update.clear_pending_plan_change:
            pending = None
        return plan_type, pending

    new_lifecycle = (
        update.stripe_subscription_id is None
        or update.stripe_subscription_id != local.stripe_subscription_id
    )

    if new_lifecycle:
        if update.plan_type is not None:
            plan_type = update.plan_type
        return plan_type, None

    if pending and update.period and update.period.start > pending.requested_at:
        logger.info(
            f"[RECONCILE] New period started for {local.user_id}, applying "
            f"scheduled change {local.plan_type.value} -> {pending.plan_type.value}"
        )
        return pending.plan_type, None

    return plan_type, pending


def reconcile(
    local: Optional[SubscriptionRecord],
    update: SubscriptionUpdate,
    now: datetime
) -> SubscriptionRecord:
    """
    Compute the new local row from the current row and reported remote state.
    
    Args:
        local: Current row, or None if the user has none yet
        update: State reported by a user transition or a webhook
        now: Write time, used for updated_at
        
    Returns:
        The reconciled record. If nothing changed, `local` itself.
        
    Raises:
        InvalidPlanTypeError: If a new row would have no plan type
    """
    if local is None:
        return _new_record(update, now)

    if is_stale_update(local, update):
        logger.info(
            f"[RECONCILE] Ignoring stale period {update.period.start.isoformat()} - "
            f"{update.period.end.isoformat()} for {update.stripe_subscription_id}"
        )
        return local

    plan_type, pending = _resolve_plan(local, update)

    candidate = replace(
        local,
        plan_type=plan_type,
        pending_plan_change=pending,
        status=_resolve_status(local, update),
        stripe_customer_id=update.stripe_customer_id or local.stripe_customer_id,
        stripe_subscription_id=update.stripe_subscription_id or local.stripe_subscription_id,
        current_period_start=update.period.start if update.period else local.current_period_start,
        current_period_end=update.period.end if update.period else local.current_period_end,
        cancel_at_period_end=(
            local.cancel_at_period_end if update.cancel_at_period_end is None
            else update.cancel_at_period_end
        ),
        card_fingerprint=update.card_fingerprint or local.card_fingerprint,
        restaurant_id=update.restaurant_id or local.restaurant_id,
    )

    if candidate == local:
        return local

    return replace(candidate, updated_at=now)
