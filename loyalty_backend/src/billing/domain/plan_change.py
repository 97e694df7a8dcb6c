"""
Plan Hierarchy Resolver

Classifies a requested plan switch and turns the classification into the
proration and billing-cycle-anchor policy the Stripe gateway applies.

Decision table:
    trial -> paid          end trial now, create prorations, anchor now
    interval change        create prorations, anchor now
    upgrade                create prorations, anchor unchanged
    downgrade              no proration, anchor unchanged, deferred
    lateral                no proration, anchor unchanged

Usage:
    change = classify_plan_change(PlanType.ANNUAL, PlanType.MONTHLY)
    policy = resolve_update_policy(change, on_trial=False)
"""

from dataclasses import dataclass
from enum import Enum

from loyalty_backend.src.billing.shared.config import PlanType, PLAN_HIERARCHY


class ProrationBehavior(str, Enum):
    """Proration mode sent to the provider on every create/update."""
    CREATE_PRORATIONS = "create_prorations"
    NONE = "none"


class BillingCycleAnchor(str, Enum):
    """Billing-cycle anchor mode sent to the provider on every update."""
    NOW = "now"
    UNCHANGED = "unchanged"


class ChangeType(str, Enum):
    NEW_SUBSCRIPTION = "new_subscription"
    TRIAL_CONVERSION = "trial_conversion"
    INTERVAL_CHANGE = "interval_change"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    LATERAL = "lateral"


@dataclass(frozen=True)
class PlanChange:
    """Rank comparison between the current and the requested plan."""
    current_plan: PlanType
    target_plan: PlanType

    @property
    def is_upgrade(self) -> bool:
        return PLAN_HIERARCHY[self.target_plan] > PLAN_HIERARCHY[self.current_plan]

    @property
    def is_downgrade(self) -> bool:
        return PLAN_HIERARCHY[self.target_plan] < PLAN_HIERARCHY[self.current_plan]

    @property
    def is_lateral(self) -> bool:
        return not self.is_upgrade and not self.is_downgrade

    @property
    def has_interval_change(self) -> bool:
        if self.current_plan == self.target_plan:
            return False
        pair = {self.current_plan, self.target_plan}
        if PlanType.MONTHLY in pair:
            return True
        return pair == {PlanType.SEMIANNUAL, PlanType.ANNUAL}


@dataclass(frozen=True)
class UpdatePolicy:
    """How a live remote subscription is switched to the new price."""
    change_type: ChangeType
    proration: ProrationBehavior
    anchor: BillingCycleAnchor
    end_trial_now: bool = False

    @property
    def charges_now(self) -> bool:
        return self.change_type in (
            ChangeType.TRIAL_CONVERSION,
            ChangeType.INTERVAL_CHANGE,
            ChangeType.UPGRADE,
        )

    @property
    def defers_plan_change(self) -> bool:
        return self.change_type == ChangeType.DOWNGRADE


# Policy for brand-new subscriptions (create never takes 'unchanged')
NEW_SUBSCRIPTION_POLICY = UpdatePolicy(
    change_type=ChangeType.NEW_SUBSCRIPTION,
    proration=ProrationBehavior.NONE,
    anchor=BillingCycleAnchor.NOW,
)


def classify_plan_change(current_plan: PlanType, target_plan: PlanType) -> PlanChange:
    return PlanChange(current_plan=PlanType(current_plan), target_plan=PlanType(target_plan))


def resolve_update_policy(change: PlanChange, on_trial: bool) -> UpdatePolicy:
    """
    Pick the update policy for a plan change on a live subscription.
    
    Args:
        change: Classified plan change
        on_trial: Whether the local plan is a trial. A remote subscription
            that is only trialing to cover already-paid time does not count.
            
    Returns:
        UpdatePolicy to hand to the gateway
    """
    if on_trial and change.target_plan != PlanType.TRIAL:
        return UpdatePolicy(
            change_type=ChangeType.TRIAL_CONVERSION,
            proration=ProrationBehavior.CREATE_PRORATIONS,
            anchor=BillingCycleAnchor.NOW,
            end_trial_now=True,
        )

    if change.has_interval_change:
        return UpdatePolicy(
            change_type=ChangeType.INTERVAL_CHANGE,
            proration=ProrationBehavior.CREATE_PRORATIONS,
            anchor=BillingCycleAnchor.NOW,
        )

    if change.is_lateral:
        return UpdatePolicy(
            change_type=ChangeType.LATERAL,
            proration=ProrationBehavior.NONE,
            anchor=BillingCycleAnchor.UNCHANGED,
        )

    if change.is_upgrade:
        return UpdatePolicy(
            change_type=ChangeType.UPGRADE,
            proration=ProrationBehavior.CREATE_PRORATIONS,
            anchor=BillingCycleAnchor.UNCHANGED,
        )

    return UpdatePolicy(
        change_type=ChangeType.DOWNGRADE,
        proration=ProrationBehavior.NONE,
        anchor=BillingCycleAnchor.UNCHANGED,
    )
