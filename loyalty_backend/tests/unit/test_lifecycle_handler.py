"""Tests for LifecycleHandler cancellation and reactivation."""

from datetime import timedelta

import pytest

from loyalty_backend.src.billing.domain.period import to_timestamp
from loyalty_backend.src.billing.domain.subscription import SubscriptionStatus
from loyalty_backend.src.billing.shared.config import PlanType
from loyalty_backend.src.billing.shared.exceptions import (
    CannotReactivateError,
    SubscriptionExpiredError,
    SubscriptionNotFoundError,
)
from loyalty_backend.src.billing.subscriptions.handlers.lifecycle import LifecycleHandler
from loyalty_backend.tests.factories import (
    OTHER_USER_ID,
    USER_ID,
    make_record,
    make_remote_subscription,
    utcnow,
)


@pytest.fixture
def handler(store, gateway):
    return LifecycleHandler(store=store, gateway=gateway)


class TestCancelSubscription:
    """Tests for cancel_subscription."""

    @pytest.mark.asyncio
    async def test_cancel_keeps_access_until_period_end(self, handler, store, gateway):
        start = utcnow() - timedelta(days=3)
        end = start + timedelta(days=30)
        local = store.add(make_record(start=start, end=end))
        gateway.cancel_at_period_end.return_value = make_remote_subscription(
            start=start, end=end, cancel_at_period_end=True
        )

        result = await handler.cancel_subscription(USER_ID, local.id)

        gateway.cancel_at_period_end.assert_awaited_once_with('sub_123')
        assert result['success'] is True
        assert result['access_until'] == end.isoformat()
        record = store.rows[USER_ID]
        assert record.status == SubscriptionStatus.CANCELED
        assert record.cancel_at_period_end is True
        assert record.current_period_end == end

    @pytest.mark.asyncio
    async def test_cancel_other_users_subscription_not_found(self, handler, store, gateway):
        other = store.add(make_record(user_id=OTHER_USER_ID))

        with pytest.raises(SubscriptionNotFoundError):
            await handler.cancel_subscription(USER_ID, other.id)

        gateway.cancel_at_period_end.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_without_remote_subscription(self, handler, store):
        local = store.add(make_record(subscription_id=None))

        with pytest.raises(SubscriptionNotFoundError):
            await handler.cancel_subscription(USER_ID, local.id)


class TestReactivateSubscription:
    """Tests for reactivate_subscription."""

    @pytest.mark.asyncio
    async def test_expired_subscription_makes_no_remote_call(self, handler, store, gateway):
        end = utcnow() - timedelta(days=1)
        local = store.add(make_record(status=SubscriptionStatus.CANCELED, start=end - timedelta(days=30), end=end))

        with pytest.raises(SubscriptionExpiredError):
            await handler.reactivate_subscription(USER_ID, local.id, 'pm_123', 'price_monthly')

        gateway.retrieve_subscription.assert_not_called()
        gateway.create_subscription.assert_not_called()
        assert store.saves == []

    @pytest.mark.asyncio
    async def test_scheduled_cancellation_is_resumed(self, handler, store, gateway):
        start = utcnow() - timedelta(days=3)
        end = start + timedelta(days=30)
        local = store.add(make_record(status=SubscriptionStatus.CANCELED, start=start, end=end, cancel_at_period_end=True))
        gateway.retrieve_subscription.return_value = make_remote_subscription(start=start, end=end, cancel_at_period_end=True)
        gateway.resume_subscription.return_value = make_remote_subscription(start=start, end=end)

        result = await handler.reactivate_subscription(USER_ID, local.id, 'pm_new', 'price_monthly')

        assert result['action'] == 'resumed'
        gateway.resume_subscription.assert_awaited_once_with('sub_123', 'pm_new')
        gateway.attach_payment_method.assert_awaited_once_with('pm_new', 'cus_123')
        gateway.create_subscription.assert_not_called()
        record = store.rows[USER_ID]
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_canceled_remote_is_recreated_until_old_period_end(self, handler, store, gateway):
        end = utcnow() + timedelta(days=200)
        local = store.add(make_record(
            plan_type=PlanType.ANNUAL,
            status=SubscriptionStatus.CANCELED,
            start=end - timedelta(days=365),
            end=end,
        ))
        gateway.retrieve_subscription.return_value = make_remote_subscription(status='canceled', plan_type='annual')
        gateway.create_subscription.return_value = make_remote_subscription(
            subscription_id='sub_recreated', status='trialing', plan_type='annual',
            start=utcnow(), end=end, client_secret=None,
        )

        result = await handler.reactivate_subscription(USER_ID, local.id, 'pm_123', 'price_annual')

        assert result['action'] == 'recreated'
        assert result['subscription_id'] == 'sub_recreated'
        kwargs = gateway.create_subscription.call_args.kwargs
        assert kwargs['trial_end'] == to_timestamp(end)
        assert kwargs['metadata']['plan_type'] == 'annual'
        assert kwargs['metadata']['reactivated_from'] == 'sub_123'
        record = store.rows[USER_ID]
        assert record.stripe_subscription_id == 'sub_recreated'
        assert record.plan_type == PlanType.ANNUAL
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.current_period_end == end

    @pytest.mark.asyncio
    async def test_missing_remote_is_recreated(self, handler, store, gateway):
        end = utcnow() + timedelta(days=12)
        local = store.add(make_record(
            status=SubscriptionStatus.CANCELED,
            start=end - timedelta(days=30),
            end=end,
        ))
        gateway.retrieve_subscription.return_value = None
        gateway.create_subscription.return_value = make_remote_subscription(
            subscription_id='sub_replacement', status='trialing', start=utcnow(), end=end, client_secret=None,
        )

        result = await handler.reactivate_subscription(USER_ID, local.id, 'pm_123', 'price_monthly')

        assert result['action'] == 'recreated'
        gateway.resume_subscription.assert_not_called()
        kwargs = gateway.create_subscription.call_args.kwargs
        assert kwargs['customer_id'] == local.stripe_customer_id
        assert kwargs['trial_end'] == to_timestamp(end)
        assert kwargs['metadata']['reactivated_from'] == 'sub_123'
        record = store.rows[USER_ID]
        assert record.stripe_subscription_id == 'sub_replacement'
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_incomplete_expired_remote_is_recreated(self, handler, store, gateway):
        local = store.add(make_record(status=SubscriptionStatus.CANCELED))
        gateway.retrieve_subscription.return_value = make_remote_subscription(status='incomplete_expired')
        gateway.create_subscription.return_value = make_remote_subscription(
            subscription_id='sub_replacement', status='trialing',
            start=local.current_period_start, end=local.current_period_end, client_secret=None,
        )

        result = await handler.reactivate_subscription(USER_ID, local.id, 'pm_123', 'price_monthly')

        assert result['action'] == 'recreated'
        assert store.rows[USER_ID].stripe_subscription_id == 'sub_replacement'

    @pytest.mark.asyncio
    async def test_unpaid_remote_cannot_reactivate(self, handler, store, gateway):
        local = store.add(make_record(status=SubscriptionStatus.CANCELED))
        gateway.retrieve_subscription.return_value = make_remote_subscription(status='unpaid')

        with pytest.raises(CannotReactivateError):
            await handler.reactivate_subscription(USER_ID, local.id, 'pm_123', 'price_monthly')

        assert store.saves == []
