"""
Integration tests for the billing API.

The full app is exercised over ASGI with the subscription service swapped
for one backed by in-memory stores and a mocked Stripe gateway.
"""

import time
from datetime import timedelta

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from loyalty_backend.core.conf import settings
from loyalty_backend.main import app
from loyalty_backend.src.billing.domain.subscription import SubscriptionStatus
from loyalty_backend.src.billing.endpoints.dependencies import get_subscription_service
from loyalty_backend.src.billing.shared.exceptions import RemoteProviderError
from loyalty_backend.src.billing.subscriptions.service import SubscriptionService
from loyalty_backend.tests.factories import USER_ID, make_record, make_remote_subscription, utcnow

BASE = f"{settings.FASTAPI_API_V1_PATH}/billing"


def auth_header(user_id: str = USER_ID, **claims) -> dict:
    payload = {
        'sub': user_id,
        'email': 'owner@example.com',
        'aud': settings.SUPABASE_JWT_AUDIENCE,
        'exp': int(time.time()) + 3600,
        **claims,
    }
    token = jwt.encode(payload, settings.SUPABASE_JWT_SECRET, algorithm=settings.SUPABASE_JWT_ALGORITHM)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def service(store, gateway):
    return SubscriptionService(store=store, gateway=gateway)


@pytest_asyncio.fixture
async def client(service):
    app.dependency_overrides[get_subscription_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestAuth:
    """Tests for bearer token handling."""

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        response = await client.get(f"{BASE}/subscription")

        assert response.status_code == 401
        assert response.json()['error'] == 'UNAUTHORIZED'

    @pytest.mark.asyncio
    async def test_wrong_audience_is_401(self, client):
        response = await client.get(f"{BASE}/subscription", headers=auth_header(aud='anon'))

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_request_id_header_is_echoed(self, client):
        response = await client.get(
            f"{BASE}/subscription",
            headers={**auth_header(), settings.TRACE_ID_REQUEST_HEADER_KEY: 'trace-abc'},
        )

        assert response.headers[settings.TRACE_ID_REQUEST_HEADER_KEY] == 'trace-abc'


class TestSubscriptionEndpoints:
    """Tests for the subscription routes."""

    @pytest.mark.asyncio
    async def test_get_subscription_before_checkout(self, client):
        response = await client.get(f"{BASE}/subscription", headers=auth_header())

        assert response.status_code == 200
        assert response.json() == {'subscription': None}

    @pytest.mark.asyncio
    async def test_create_payment_accepts_camel_case(self, client, store, gateway):
        gateway.create_subscription.return_value = make_remote_subscription(status='incomplete')

        response = await client.post(
            f"{BASE}/create-payment",
            headers=auth_header(),
            json={'planType': 'monthly', 'priceId': 'price_monthly', 'paymentMethodId': 'pm_123'},
        )

        assert response.status_code == 200
        body = response.json()
        assert body['requires_payment'] is True
        assert body['client_secret'] == 'pi_123_secret_abc'
        assert store.rows[USER_ID].status == SubscriptionStatus.INCOMPLETE

    @pytest.mark.asyncio
    async def test_invalid_plan_type_is_400(self, client):
        response = await client.post(
            f"{BASE}/create-payment",
            headers=auth_header(),
            json={'plan_type': 'weekly', 'price_id': 'price_x', 'payment_method_id': 'pm_123'},
        )

        assert response.status_code == 400
        assert response.json()['error'] == 'INVALID_PLAN_TYPE'

    @pytest.mark.asyncio
    async def test_card_declined_is_402(self, client, gateway):
        gateway.create_subscription.side_effect = RemoteProviderError(
            'Your card was declined.', stripe_code='card_declined'
        )

        response = await client.post(
            f"{BASE}/create-payment",
            headers=auth_header(),
            json={'planType': 'monthly', 'priceId': 'price_monthly', 'paymentMethodId': 'pm_123'},
        )

        assert response.status_code == 402
        assert response.json()['message'] == 'Your card was declined.'

    @pytest.mark.asyncio
    async def test_cancel_unknown_subscription_is_404(self, client):
        response = await client.post(
            f"{BASE}/cancel-subscription",
            headers=auth_header(),
            json={'subscriptionId': '44444444-4444-4444-8444-444444444444'},
        )

        assert response.status_code == 404
        assert response.json()['error'] == 'SUBSCRIPTION_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_cancel_then_read(self, client, store, gateway):
        local = store.add(make_record())
        gateway.cancel_at_period_end.return_value = make_remote_subscription(
            start=local.current_period_start, end=local.current_period_end, cancel_at_period_end=True
        )

        response = await client.post(
            f"{BASE}/cancel-subscription", headers=auth_header(), json={'subscriptionId': local.id}
        )
        assert response.status_code == 200
        assert response.json()['access_until'] == local.current_period_end.isoformat()

        response = await client.get(f"{BASE}/subscription", headers=auth_header())
        subscription = response.json()['subscription']
        assert subscription['status'] == 'canceled'
        assert subscription['cancel_at_period_end'] is True

    @pytest.mark.asyncio
    async def test_reactivate_expired_is_409(self, client, store, gateway):
        end = utcnow() - timedelta(days=1)
        local = store.add(make_record(status=SubscriptionStatus.CANCELED, start=end - timedelta(days=30), end=end))

        response = await client.post(
            f"{BASE}/reactivate-subscription",
            headers=auth_header(),
            json={'subscriptionId': local.id, 'paymentMethodId': 'pm_123', 'priceId': 'price_monthly'},
        )

        assert response.status_code == 409
        assert response.json()['error'] == 'SUBSCRIPTION_EXPIRED'
        gateway.retrieve_subscription.assert_not_called()

    @pytest.mark.asyncio
    async def test_preview_without_subscription(self, client):
        response = await client.post(
            f"{BASE}/preview-plan-change",
            headers=auth_header(),
            json={'newPlanType': 'annual', 'newPriceId': 'price_annual'},
        )

        assert response.status_code == 200
        assert response.json()['is_new_subscription'] is True

    @pytest.mark.asyncio
    async def test_change_plan_without_subscription_is_404(self, client):
        response = await client.post(
            f"{BASE}/change-plan",
            headers=auth_header(),
            json={'newPlanType': 'annual', 'newPriceId': 'price_annual'},
        )

        assert response.status_code == 404
