"""Integration tests for the Stripe webhook endpoint."""

import json
from unittest.mock import patch

import pytest
import pytest_asyncio
import stripe
from httpx import ASGITransport, AsyncClient

from loyalty_backend.core.conf import settings
from loyalty_backend.main import app
from loyalty_backend.src.billing.domain.subscription import SubscriptionStatus
from loyalty_backend.src.billing.endpoints.dependencies import get_webhook_service
from loyalty_backend.src.billing.external.stripe.webhooks import WebhookService
from loyalty_backend.src.billing.invoices.persister import InvoicePersister
from loyalty_backend.tests.factories import (
    USER_ID,
    make_event,
    make_invoice,
    make_record,
    make_remote_subscription,
)

URL = f"{settings.FASTAPI_API_V1_PATH}/billing/webhook"
SIGNATURE = {'stripe-signature': 't=1,v1=abc'}


@pytest.fixture
def webhook_service(store, invoice_store, gateway):
    persister = InvoicePersister(subscription_store=store, invoice_store=invoice_store)
    return WebhookService(store=store, gateway=gateway, persister=persister)


@pytest_asyncio.fixture
async def client(webhook_service):
    app.dependency_overrides[get_webhook_service] = lambda: webhook_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def post_event(client, event, headers=SIGNATURE):
    with patch.object(stripe.Webhook, 'construct_event', return_value=event):
        return await client.post(URL, content=json.dumps(event), headers=headers)


class TestWebhookSecurity:
    """Signature verification fails closed."""

    @pytest.mark.asyncio
    async def test_missing_signature_is_400(self, client):
        response = await client.post(URL, content=b'{}')

        assert response.status_code == 400
        assert response.json()['error'] == 'WEBHOOK_SIGNATURE_INVALID'

    @pytest.mark.asyncio
    async def test_bad_signature_is_400(self, client):
        error = stripe.SignatureVerificationError('No signatures found', 't=1,v1=abc')

        with patch.object(stripe.Webhook, 'construct_event', side_effect=error):
            response = await client.post(URL, content=b'{}', headers=SIGNATURE)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_secret_is_500(self, client):
        with patch.object(settings, 'STRIPE_WEBHOOK_SECRET', ''):
            response = await client.post(URL, content=b'{}', headers=SIGNATURE)

        assert response.status_code == 500
        assert response.json()['error'] == 'WEBHOOK_SECRET_MISSING'


class TestWebhookProcessing:
    """Tests for routed events."""

    @pytest.mark.asyncio
    async def test_payment_failed_replays_converge(self, client, store, invoice_store, gateway):
        local = store.add(make_record())
        gateway.retrieve_subscription.return_value = make_remote_subscription(
            status='past_due', start=local.current_period_start, end=local.current_period_end
        )
        invoice = make_invoice(status='open', start=local.current_period_start, end=local.current_period_end)
        event = make_event('invoice.payment_failed', invoice)

        for _ in range(3):
            response = await post_event(client, event)
            assert response.status_code == 200
            assert response.json()['action'] == 'invoice_payment_failed'

        assert len(invoice_store.rows) == 1
        assert store.rows[USER_ID].status == SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_subscription_updated_without_metadata_is_200(self, client, store, gateway):
        remote = make_remote_subscription(user_id=None)
        gateway.retrieve_subscription.return_value = remote

        response = await post_event(client, make_event('customer.subscription.updated', remote))

        body = response.json()
        assert response.status_code == 200
        assert body['processed'] is True
        assert body['action'] == 'subscription_updated_no_user_metadata'
        assert store.saves == []

    @pytest.mark.asyncio
    async def test_orphaned_invoice_is_400(self, client):
        response = await post_event(client, make_event('invoice.payment_succeeded', make_invoice(customer='cus_nobody')))

        body = response.json()
        assert response.status_code == 400
        assert body['processed'] is False
        assert body['action'] == 'invoice_processing_failed'
        assert 'cus_nobody' in body['error']

    @pytest.mark.asyncio
    async def test_unhandled_event_is_ignored(self, client):
        response = await post_event(client, make_event('customer.created', {'id': 'cus_123'}))

        assert response.status_code == 200
        assert response.json()['action'] == 'ignored'

    @pytest.mark.asyncio
    async def test_checkout_completed_reports_period(self, client, store, gateway):
        remote = make_remote_subscription(subscription_id='sub_new')
        gateway.retrieve_subscription.return_value = remote
        session = {
            'id': 'cs_123',
            'customer': 'cus_123',
            'subscription': 'sub_new',
            'metadata': {'user_id': USER_ID, 'plan_type': 'monthly'},
        }

        response = await post_event(client, make_event('checkout.session.completed', session))

        body = response.json()
        assert body['action'] == 'checkout_completed'
        assert body['user_id'] == USER_ID
        assert body['plan_type'] == 'monthly'
        assert body['billing_period_accurate'] is True
        assert body['actual_duration_days'] == 30
        assert store.rows[USER_ID].stripe_subscription_id == 'sub_new'

    @pytest.mark.asyncio
    async def test_non_plan_payment_is_acknowledged(self, client, store):
        payment_intent = {
            'id': 'pi_456',
            'customer': 'cus_123',
            'created': 1767225600,
            'metadata': {'user_id': USER_ID, 'plan_type': 'starter_pack'},
        }

        response = await post_event(client, make_event('payment_intent.succeeded', payment_intent))

        body = response.json()
        assert response.status_code == 200
        assert body['processed'] is True
        assert body['action'] == 'payment_succeeded_ignored'
        assert store.saves == []
