"""
Tests for the Stripe API wrapper.

The SDK's async methods are patched so no request leaves the process.
"""

from unittest.mock import AsyncMock, patch

import pytest
import stripe

from loyalty_backend.src.billing.domain.plan_change import (
    NEW_SUBSCRIPTION_POLICY,
    classify_plan_change,
    resolve_update_policy,
)
from loyalty_backend.src.billing.external.stripe.client import (
    StripeAPIWrapper,
    extract_client_secret,
    first_item_id,
    to_dict,
)
from loyalty_backend.src.billing.shared.config import PlanType
from loyalty_backend.src.billing.shared.exceptions import RemoteProviderError


class TestUpdateSubscription:
    """Policy flags must always be sent explicitly."""

    @pytest.mark.asyncio
    async def test_trial_conversion_ends_trial_now(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.TRIAL, PlanType.MONTHLY), on_trial=True)

        with patch.object(stripe.Subscription, 'modify_async', new=AsyncMock(return_value={'id': 'sub_123'})) as modify:
            result = await StripeAPIWrapper.update_subscription(
                'sub_123', 'si_123', 'price_monthly', policy, {'user_id': 'u1', 'plan_type': 'monthly'}
            )

        assert result == {'id': 'sub_123'}
        kwargs = modify.call_args.kwargs
        assert modify.call_args.args == ('sub_123',)
        assert kwargs['trial_end'] == 'now'
        assert kwargs['proration_behavior'] == 'create_prorations'
        assert kwargs['billing_cycle_anchor'] == 'now'
        assert kwargs['items'] == [{'id': 'si_123', 'price': 'price_monthly'}]

    @pytest.mark.asyncio
    async def test_downgrade_sends_no_proration(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.ANNUAL, PlanType.TRIAL), on_trial=False)

        with patch.object(stripe.Subscription, 'modify_async', new=AsyncMock(return_value={'id': 'sub_123'})) as modify:
            await StripeAPIWrapper.update_subscription('sub_123', 'si_123', 'price_trial', policy, {})

        kwargs = modify.call_args.kwargs
        assert kwargs['proration_behavior'] == 'none'
        assert kwargs['billing_cycle_anchor'] == 'unchanged'
        assert 'trial_end' not in kwargs


class TestCreateSubscription:

    @pytest.mark.asyncio
    async def test_create_passes_policy_and_key(self):
        with patch.object(stripe.Subscription, 'create_async', new=AsyncMock(return_value={'id': 'sub_new'})) as create:
            await StripeAPIWrapper.create_subscription(
                customer_id='cus_123',
                price_id='price_monthly',
                policy=NEW_SUBSCRIPTION_POLICY,
                metadata={'user_id': 'u1', 'plan_type': 'monthly'},
                trial_end=1767225600,
                idempotency_key='key_1',
            )

        kwargs = create.call_args.kwargs
        assert kwargs['proration_behavior'] == 'none'
        assert kwargs['trial_end'] == 1767225600
        assert kwargs['idempotency_key'] == 'key_1'
        assert kwargs['metadata']['plan_type'] == 'monthly'

    @pytest.mark.asyncio
    async def test_create_rejects_unchanged_anchor(self):
        policy = resolve_update_policy(classify_plan_change(PlanType.MONTHLY, PlanType.MONTHLY), on_trial=False)

        with pytest.raises(ValueError):
            await StripeAPIWrapper.create_subscription('cus_123', 'price_monthly', policy, {})


class TestErrorHandling:
    """Tests for SDK error translation."""

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_remote_provider_error(self):
        error = stripe.CardError('Your card was declined.', 'card', 'card_declined')

        with patch.object(stripe.Subscription, 'modify_async', new=AsyncMock(side_effect=error)):
            with pytest.raises(RemoteProviderError) as exc_info:
                await StripeAPIWrapper.cancel_at_period_end('sub_123')

        assert exc_info.value.stripe_code == 'card_declined'
        assert exc_info.value.stripe_error == 'CardError'

    @pytest.mark.asyncio
    async def test_missing_subscription_returns_none(self):
        error = stripe.InvalidRequestError('No such subscription: sub_x', 'id', code='resource_missing')

        with patch.object(stripe.Subscription, 'retrieve_async', new=AsyncMock(side_effect=error)):
            assert await StripeAPIWrapper.retrieve_subscription('sub_x') is None

    @pytest.mark.asyncio
    async def test_already_attached_payment_method_is_tolerated(self):
        error = stripe.InvalidRequestError(
            'The payment method you provided has already been attached to a customer.', 'payment_method'
        )

        with patch.object(stripe.PaymentMethod, 'attach_async', new=AsyncMock(side_effect=error)), \
                patch.object(stripe.PaymentMethod, 'retrieve_async', new=AsyncMock(return_value={'id': 'pm_123'})):
            result = await StripeAPIWrapper.attach_payment_method('pm_123', 'cus_123')

        assert result == {'id': 'pm_123'}

    @pytest.mark.asyncio
    async def test_deleted_customer_returns_none(self):
        with patch.object(stripe.Customer, 'retrieve_async', new=AsyncMock(return_value={'id': 'cus_1', 'deleted': True})):
            assert await StripeAPIWrapper.retrieve_customer('cus_1') is None

    @pytest.mark.asyncio
    async def test_find_customer_by_user_returns_newest(self):
        found = {'data': [{'id': 'cus_old', 'created': 100}, {'id': 'cus_new', 'created': 200}]}
        with patch.object(stripe.Customer, 'search_async', new=AsyncMock(return_value=found)) as search:
            customer = await StripeAPIWrapper.find_customer_by_user('user_1')

        assert customer['id'] == 'cus_new'
        assert search.call_args.kwargs['query'] == "metadata['supabase_user_id']:'user_1'"

    @pytest.mark.asyncio
    async def test_find_customer_by_user_without_match(self):
        with patch.object(stripe.Customer, 'search_async', new=AsyncMock(return_value={'data': []})):
            assert await StripeAPIWrapper.find_customer_by_user('user_1') is None


class TestHelpers:

    def test_client_secret_from_payment_intent(self):
        subscription = {'latest_invoice': {'payment_intent': {'client_secret': 'pi_secret'}}}

        assert extract_client_secret(subscription) == 'pi_secret'

    def test_client_secret_from_setup_intent(self):
        subscription = {'latest_invoice': {'payment_intent': None}, 'pending_setup_intent': {'client_secret': 'seti_secret'}}

        assert extract_client_secret(subscription) == 'seti_secret'

    def test_first_item_id(self):
        assert first_item_id({'items': {'data': [{'id': 'si_1'}]}}) == 'si_1'
        assert first_item_id({}) is None

    def test_to_dict_recurses(self):
        assert to_dict({'a': [{'b': 1}], 'c': None}) == {'a': [{'b': 1}], 'c': None}
