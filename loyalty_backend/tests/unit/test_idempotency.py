"""Tests for Stripe idempotency key generation."""

from datetime import datetime, timedelta, timezone

from loyalty_backend.src.billing.external.stripe.idempotency import StripeIdempotencyManager

NOW = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)


class TestStripeIdempotencyManager:

    def test_same_inputs_same_window_same_key(self):
        manager = StripeIdempotencyManager(window_minutes=60)

        first = manager.generate_key('subscription', 'user_1', 'price_1', now=NOW)
        second = manager.generate_key('subscription', 'user_1', 'price_1', now=NOW + timedelta(minutes=5))

        assert first == second
        assert len(first) == 40

    def test_next_window_changes_key(self):
        manager = StripeIdempotencyManager(window_minutes=60)

        assert manager.generate_key('customer', 'user_1', now=NOW) != manager.generate_key(
            'customer', 'user_1', now=NOW + timedelta(hours=1)
        )

    def test_parameters_change_key(self):
        manager = StripeIdempotencyManager(window_minutes=60)

        assert manager.generate_key('subscription', 'user_1', 'price_1', now=NOW) != manager.generate_key(
            'subscription', 'user_1', 'price_2', now=NOW
        )

    def test_subscription_key_depends_on_trial_end(self):
        manager = StripeIdempotencyManager()

        assert manager.generate_subscription_key('user_1', 'price_1', 'monthly', 'pm_1') != (
            manager.generate_subscription_key('user_1', 'price_1', 'monthly', 'pm_1', trial_end=1767225600)
        )
