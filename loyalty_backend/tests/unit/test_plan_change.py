"""Tests for plan change classification and the update policy table."""

import itertools

import pytest

from loyalty_backend.src.billing.domain.plan_change import (
    BillingCycleAnchor,
    ChangeType,
    ProrationBehavior,
    classify_plan_change,
    resolve_update_policy,
)
from loyalty_backend.src.billing.shared.config import PlanType

PLAN_PAIRS = [(a, b) for a, b in itertools.product(PlanType, repeat=2) if a != b]
SAME_INTERVAL_PAIRS = [
    (a, b) for a, b in itertools.product(PlanType, repeat=2)
    if not classify_plan_change(a, b).has_interval_change
]


class TestPlanChangeClassification:
    """Tests for upgrade/downgrade/interval detection."""

    @pytest.mark.parametrize('current,target', PLAN_PAIRS)
    def test_upgrade_and_downgrade_are_exclusive_and_exhaustive(self, current, target):
        change = classify_plan_change(current, target)

        assert not (change.is_upgrade and change.is_downgrade)
        assert [change.is_upgrade, change.is_downgrade, change.is_lateral].count(True) == 1

    @pytest.mark.parametrize('current,target', PLAN_PAIRS)
    def test_interval_change_definition(self, current, target):
        change = classify_plan_change(current, target)
        one_side_monthly = (current == PlanType.MONTHLY) != (target == PlanType.MONTHLY)
        semiannual_annual = {current, target} == {PlanType.SEMIANNUAL, PlanType.ANNUAL}

        assert change.has_interval_change == (one_side_monthly or semiannual_annual)

    def test_same_plan_is_lateral_without_interval_change(self):
        change = classify_plan_change(PlanType.MONTHLY, PlanType.MONTHLY)

        assert change.is_lateral
        assert not change.has_interval_change

    def test_annual_to_monthly_is_interval_change_not_downgrade_policy(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.ANNUAL, PlanType.MONTHLY), on_trial=False)

        assert policy.change_type == ChangeType.INTERVAL_CHANGE


class TestUpdatePolicy:
    """Tests for the proration/anchor decision table."""

    def test_trial_conversion_ends_trial_now(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.TRIAL, PlanType.MONTHLY), on_trial=True)

        assert policy.change_type == ChangeType.TRIAL_CONVERSION
        assert policy.end_trial_now is True
        assert policy.proration == ProrationBehavior.CREATE_PRORATIONS
        assert policy.charges_now is True

    def test_interval_change_resets_anchor(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.MONTHLY, PlanType.ANNUAL), on_trial=False)

        assert policy.change_type == ChangeType.INTERVAL_CHANGE
        assert policy.anchor == BillingCycleAnchor.NOW
        assert policy.proration == ProrationBehavior.CREATE_PRORATIONS
        assert policy.charges_now is True

    def test_upgrade_keeps_anchor(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.TRIAL, PlanType.SEMIANNUAL), on_trial=False)

        assert policy.change_type == ChangeType.UPGRADE
        assert policy.anchor == BillingCycleAnchor.UNCHANGED
        assert policy.proration == ProrationBehavior.CREATE_PRORATIONS

    def test_downgrade_is_deferred_without_proration(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.ANNUAL, PlanType.TRIAL), on_trial=False)

        assert policy.change_type == ChangeType.DOWNGRADE
        assert policy.defers_plan_change is True
        assert policy.charges_now is False
        assert policy.proration == ProrationBehavior.NONE
        assert policy.anchor == BillingCycleAnchor.UNCHANGED

    def test_lateral_does_not_charge(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.MONTHLY, PlanType.MONTHLY), on_trial=False)

        assert policy.change_type == ChangeType.LATERAL
        assert policy.charges_now is False
        assert policy.defers_plan_change is False

    @pytest.mark.parametrize('current,target', SAME_INTERVAL_PAIRS)
    def test_policy_follows_rank_when_interval_is_kept(self, current, target):
        change = classify_plan_change(current, target)

        policy = resolve_update_policy(change, on_trial=False)

        expected = {
            (True, False, False): ChangeType.LATERAL,
            (False, True, False): ChangeType.UPGRADE,
            (False, False, True): ChangeType.DOWNGRADE,
        }[(change.is_lateral, change.is_upgrade, change.is_downgrade)]
        assert policy.change_type == expected
