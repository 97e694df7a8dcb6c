"""
Subscription Domain Entity

The local subscription row: one per user, mirroring the remote Stripe
subscription and extending it with the plan type, the scheduled downgrade
and the trial card fingerprint.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from loyalty_backend.src.billing.shared.config import PlanType

logger = logging.getLogger(__name__)


class SubscriptionStatus(str, Enum):
    """Possible subscription statuses."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"

    @classmethod
    def _missing_(cls, value):
        # Older rows were written with the British spelling
        if value == "cancelled":
            return cls.CANCELED
        return None


# subscription.updated mapping from Stripe status to local status
REMOTE_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    'active': SubscriptionStatus.ACTIVE,
    'trialing': SubscriptionStatus.ACTIVE,
    'past_due': SubscriptionStatus.PAST_DUE,
    'canceled': SubscriptionStatus.CANCELED,
    'cancelled': SubscriptionStatus.CANCELED,
    'unpaid': SubscriptionStatus.UNPAID,
    'incomplete': SubscriptionStatus.INCOMPLETE,
    'incomplete_expired': SubscriptionStatus.INCOMPLETE_EXPIRED,
}


def _unknown_status(remote_status: Optional[str], previous: Optional[SubscriptionStatus]) -> SubscriptionStatus:
    fallback = previous or SubscriptionStatus.ACTIVE
    logger.warning(
        f"[STATUS] Unknown remote status '{remote_status}', keeping {fallback.value}"
    )
    return fallback


def map_remote_status(
    remote_status: Optional[str],
    previous: Optional[SubscriptionStatus] = None
) -> SubscriptionStatus:
    """
    Map a Stripe subscription status to the local status.
    
    Unknown statuses keep the previous local status. Only a row that
    has no previous status falls back to active.
    """
    status = REMOTE_STATUS_MAP.get(remote_status or '')
    if status is None:
        return _unknown_status(remote_status, previous)
    return status


def mirror_remote_status(
    remote_status: Optional[str],
    previous: Optional[SubscriptionStatus] = None
) -> SubscriptionStatus:
    """Store the Stripe status as-is when it is one we know."""
    try:
        return SubscriptionStatus(remote_status)
    except ValueError:
        return _unknown_status(remote_status, previous)


def status_from_invoice(
    invoice_status: Optional[str],
    remote_status: Optional[str],
    previous: Optional[SubscriptionStatus] = None
) -> SubscriptionStatus:
    """paid -> active, open -> past_due, anything else mirrors the subscription."""
    if invoice_status == 'paid':
        return SubscriptionStatus.ACTIVE
    if invoice_status == 'open':
        return SubscriptionStatus.PAST_DUE
    return mirror_remote_status(remote_status, previous)


@dataclass(frozen=True)
class PendingPlanChange:
    """A downgrade scheduled for the next period boundary."""
    plan_type: PlanType
    price_id: str
    requested_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plan_type': self.plan_type.value,
            'price_id': self.price_id,
            'requested_at': self.requested_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PendingPlanChange':
        return cls(
            plan_type=PlanType(data['plan_type']),
            price_id=data['price_id'],
            requested_at=parse_datetime(data['requested_at']),
        )


def parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


@dataclass(frozen=True)
class SubscriptionRecord:
    """
    The authoritative subscription row for a user.
    
    Attributes:
        user_id: Supabase user id (one row per user)
        plan_type: Plan used for feature gating
        status: Local status
        id: Row id, None until first saved
        restaurant_id: Owning restaurant, if known
        stripe_customer_id: Remote customer
        stripe_subscription_id: Remote subscription, None before first checkout
        current_period_start: Start of the paid window
        current_period_end: End of the paid window
        cancel_at_period_end: Whether the subscription stops renewing
        card_fingerprint: Card used for the trial, for abuse detection
        pending_plan_change: Deferred downgrade, if any
        created_at: When the row was created
        updated_at: Last write
    """
    user_id: str
    plan_type: PlanType
    status: SubscriptionStatus
    id: Optional[str] = None
    restaurant_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    card_fingerprint: Optional[str] = None
    pending_plan_change: Optional[PendingPlanChange] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.current_period_end is None or self.current_period_end <= now

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> 'SubscriptionRecord':
        """
        Create a record from a database row mapping.
        
        Args:
            row: Row mapping from the subscriptions table
            
        Returns:
            SubscriptionRecord instance
        """
        pending = row.get('pending_plan_change')
        if isinstance(pending, str):
            pending = json.loads(pending)

        return cls(
            id=str(row['id']) if row.get('id') is not None else None,
            user_id=str(row['user_id']),
            restaurant_id=str(row['restaurant_id']) if row.get('restaurant_id') else None,
            stripe_customer_id=row.get('stripe_customer_id'),
            stripe_subscription_id=row.get('stripe_subscription_id'),
            plan_type=PlanType(row['plan_type']),
            status=SubscriptionStatus(row['status']),
            current_period_start=parse_datetime(row.get('current_period_start')),
            current_period_end=parse_datetime(row.get('current_period_end')),
            cancel_at_period_end=bool(row.get('cancel_at_period_end')),
            card_fingerprint=row.get('card_fingerprint'),
            pending_plan_change=PendingPlanChange.from_dict(pending) if pending else None,
            created_at=parse_datetime(row.get('created_at')),
            updated_at=parse_datetime(row.get('updated_at')),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        data = asdict(self)
        data['plan_type'] = self.plan_type.value
        data['status'] = self.status.value
        data['pending_plan_change'] = self.pending_plan_change.to_dict() if self.pending_plan_change else None
        for key in ('current_period_start', 'current_period_end', 'created_at', 'updated_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
