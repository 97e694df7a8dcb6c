"""
Billing Configuration

Plan catalog for the loyalty subscription: the four plan types, their rank
in the upgrade hierarchy, the tolerated period length for each, and the
calendar offset used when a payment is not backed by a remote subscription.

Price IDs are not configured here. The dashboard sends the price reference
with each request and the plan type is always stored alongside it.
"""

from enum import Enum
from typing import Dict, Tuple

from dateutil.relativedelta import relativedelta

from loyalty_backend.core.conf import settings
from .exceptions import InvalidPlanTypeError


class PlanType(str, Enum):
    """Subscription plan types. Feature gating reads this, never the price."""
    TRIAL = "trial"
    MONTHLY = "monthly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"


# =============================================================================
# PLAN HIERARCHY
# =============================================================================

PLAN_HIERARCHY: Dict[PlanType, int] = {
    PlanType.TRIAL: 0,
    PlanType.MONTHLY: 1,
    PlanType.SEMIANNUAL: 2,
    PlanType.ANNUAL: 3,
}


# =============================================================================
# BILLING PERIODS
# =============================================================================

# Inclusive (min, max) period length in days considered accurate per plan
PLAN_DURATION_BANDS: Dict[PlanType, Tuple[int, int]] = {
    PlanType.TRIAL: (28, 32),
    PlanType.MONTHLY: (28, 31),
    PlanType.SEMIANNUAL: (180, 186),
    PlanType.ANNUAL: (360, 370),
}

TRIAL_PERIOD_DAYS = settings.BILLING_TRIAL_PERIOD_DAYS

# Calendar offsets for one-time payments with no remote subscription
DIRECT_PAYMENT_OFFSETS: Dict[PlanType, relativedelta] = {
    PlanType.TRIAL: relativedelta(days=TRIAL_PERIOD_DAYS),
    PlanType.MONTHLY: relativedelta(months=1),
    PlanType.SEMIANNUAL: relativedelta(months=6),
    PlanType.ANNUAL: relativedelta(years=1),
}

# Plan assumed for webhook payloads whose metadata carries no plan_type
DEFAULT_WEBHOOK_PLAN = PlanType.MONTHLY


def get_plan_display_name(plan_type: PlanType) -> str:
    return {
        PlanType.TRIAL: "Trial",
        PlanType.MONTHLY: "Monthly",
        PlanType.SEMIANNUAL: "6-Month",
        PlanType.ANNUAL: "Annual",
    }[plan_type]


def parse_plan_type(value) -> PlanType:
    """
    Coerce a plan identifier from a request or provider metadata.
    
    Raises:
        InvalidPlanTypeError: If the value is not one of the four plan types
    """
    if isinstance(value, PlanType):
        return value
    try:
        return PlanType(value)
    except ValueError:
        raise InvalidPlanTypeError(value)
