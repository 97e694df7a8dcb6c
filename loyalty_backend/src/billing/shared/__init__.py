"""
Billing Shared Module

Plan catalog and exceptions used across the billing package.
"""

from .config import (
    PlanType,
    PLAN_HIERARCHY,
    PLAN_DURATION_BANDS,
    DIRECT_PAYMENT_OFFSETS,
    DEFAULT_WEBHOOK_PLAN,
    TRIAL_PERIOD_DAYS,
    get_plan_display_name,
    parse_plan_type,
)
from .exceptions import (
    BillingError,
    UnauthorizedError,
    SubscriptionNotFoundError,
    DuplicateTrialCardError,
    SubscriptionExpiredError,
    CannotReactivateError,
    RemoteProviderError,
    PaymentProcessingFailedError,
    InvalidPlanTypeError,
    OrphanedInvoiceError,
    WebhookSignatureInvalidError,
    WebhookSecretMissingError,
)

__all__ = [
    'PlanType',
    'PLAN_HIERARCHY',
    'PLAN_DURATION_BANDS',
    'DIRECT_PAYMENT_OFFSETS',
    'DEFAULT_WEBHOOK_PLAN',
    'TRIAL_PERIOD_DAYS',
    'get_plan_display_name',
    'parse_plan_type',
    'BillingError',
    'UnauthorizedError',
    'SubscriptionNotFoundError',
    'DuplicateTrialCardError',
    'SubscriptionExpiredError',
    'CannotReactivateError',
    'RemoteProviderError',
    'PaymentProcessingFailedError',
    'InvalidPlanTypeError',
    'OrphanedInvoiceError',
    'WebhookSignatureInvalidError',
    'WebhookSecretMissingError',
]
