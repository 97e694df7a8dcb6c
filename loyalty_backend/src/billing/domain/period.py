"""
Billing Period Calculator

Pure functions that derive a subscription's billing window.

When a remote subscription exists its own period fields are authoritative:
the duration is only checked against the plan's tolerance band and flagged,
never corrected. One-time payments with no remote subscription get a
calendar-offset period starting now.

Usage:
    period = period_from_remote(stripe_subscription, PlanType.MONTHLY)
    if not period.is_accurate:
        logger.warning(...)
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from loyalty_backend.src.billing.shared.config import (
    PlanType,
    PLAN_DURATION_BANDS,
    DIRECT_PAYMENT_OFFSETS,
    parse_plan_type,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class PeriodSource(str, Enum):
    """Where a billing period came from."""
    STRIPE_SUBSCRIPTION = "stripe_subscription"
    CALCULATED = "calculated"


@dataclass(frozen=True)
class BillingPeriod:
    """
    A billing window.
    
    Attributes:
        start: Period start (UTC)
        end: Period end (UTC)
        source: Remote subscription or local calculation
        duration_days: Length in whole days, rounded up
        is_accurate: Whether the length falls in the plan's tolerance band
    """
    start: datetime
    end: datetime
    source: PeriodSource
    duration_days: int
    is_accurate: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'source': self.source.value,
            'duration_days': self.duration_days,
            'is_accurate': self.is_accurate,
        }


def from_timestamp(value: Optional[int]) -> Optional[datetime]:
    """Convert provider Unix seconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def to_timestamp(value: datetime) -> int:
    """Convert a datetime to provider Unix seconds."""
    return int(value.timestamp())


def duration_in_days(start: datetime, end: datetime) -> int:
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def validate_duration(plan_type: PlanType, duration_days: int) -> bool:
    """Check a period length against the plan's tolerance band."""
    low, high = PLAN_DURATION_BANDS[parse_plan_type(plan_type)]
    return low <= duration_days <= high


def _remote_period_bounds(remote_subscription: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    start = remote_subscription.get('current_period_start')
    end = remote_subscription.get('current_period_end')

    # Newer API versions only carry the period on the subscription item
    if start is None or end is None:
        items = (remote_subscription.get('items') or {}).get('data') or []
        if items:
            start = items[0].get('current_period_start')
            end = items[0].get('current_period_end')

    return start, end


def period_from_remote(remote_subscription: Dict[str, Any], plan_type: PlanType) -> BillingPeriod:
    """
    Derive the billing period from a remote subscription object.
    
    Out-of-band durations are flagged with is_accurate=False but the
    provider's start and end are returned unmodified.
    
    Args:
        remote_subscription: Stripe subscription as a dict
        plan_type: Plan the period should match
        
    Returns:
        BillingPeriod sourced from the subscription
    """
    plan_type = parse_plan_type(plan_type)
    start_ts, end_ts = _remote_period_bounds(remote_subscription)

    if start_ts is None or end_ts is None:
        logger.warning(
            f"[PERIOD] Subscription {remote_subscription.get('id')} has no period fields, "
            f"falling back to a calculated {plan_type.value} period"
        )
        fallback = period_for_direct_payment(plan_type)
        return BillingPeriod(
            start=fallback.start,
            end=fallback.end,
            source=PeriodSource.CALCULATED,
            duration_days=fallback.duration_days,
            is_accurate=False,
        )

    start = from_timestamp(start_ts)
    end = from_timestamp(end_ts)
    duration_days = duration_in_days(start, end)
    is_accurate = validate_duration(plan_type, duration_days)

    if not is_accurate:
        low, high = PLAN_DURATION_BANDS[plan_type]
        logger.warning(
            f"[PERIOD] {plan_type.value} period for {remote_subscription.get('id')} is "
            f"{duration_days} days, expected {low}-{high}"
        )

    return BillingPeriod(
        start=start,
        end=end,
        source=PeriodSource.STRIPE_SUBSCRIPTION,
        duration_days=duration_days,
        is_accurate=is_accurate,
    )


def period_for_direct_payment(plan_type: PlanType, now: Optional[datetime] = None) -> BillingPeriod:
    """
    Compute a period for a one-time payment with no remote subscription.
    
    Raises:
        InvalidPlanTypeError: For an unknown plan type
    """
    plan_type = parse_plan_type(plan_type)
    start = now or datetime.now(timezone.utc)
    end = start + DIRECT_PAYMENT_OFFSETS[plan_type]
    duration_days = duration_in_days(start, end)

    return BillingPeriod(
        start=start,
        end=end,
        source=PeriodSource.CALCULATED,
        duration_days=duration_days,
        is_accurate=validate_duration(plan_type, duration_days),
    )
