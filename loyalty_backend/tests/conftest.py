import os

# Settings are read at import time, so these must be in place before any
# loyalty_backend module is imported.
os.environ.setdefault('ENVIRONMENT', 'dev')
os.environ.setdefault('DATABASE_HOST', 'localhost')
os.environ.setdefault('DATABASE_USER', 'postgres')
os.environ.setdefault('DATABASE_PASSWORD', 'postgres')
os.environ.setdefault('STRIPE_SECRET_KEY', 'sk_test_loyalty')
os.environ.setdefault('STRIPE_WEBHOOK_SECRET', 'whsec_loyalty')
os.environ.setdefault('SUPABASE_JWT_SECRET', 'test-supabase-jwt-secret-with-enough-length')
os.environ.setdefault('LOG_FILE_ENABLED', 'false')

import pytest
from unittest.mock import AsyncMock

from loyalty_backend.tests.factories import InMemoryInvoiceStore, InMemorySubscriptionStore


@pytest.fixture
def store():
    return InMemorySubscriptionStore()


@pytest.fixture
def invoice_store():
    return InMemoryInvoiceStore()


@pytest.fixture
def gateway():
    """Stripe gateway with every call mocked. Tests set return values as needed."""
    mock = AsyncMock()
    mock.retrieve_customer.return_value = {'id': 'cus_123'}
    mock.find_customer_by_user.return_value = None
    mock.create_customer.return_value = {'id': 'cus_123'}
    mock.attach_payment_method.return_value = {'id': 'pm_123'}
    mock.set_default_payment_method.return_value = {'id': 'cus_123'}
    mock.get_card_fingerprint.return_value = 'fp_card_1'
    mock.retrieve_subscription.return_value = None
    mock.retrieve_invoice.return_value = None
    return mock
