"""
Billing Domain Module

Pure billing logic with no I/O: plan change classification, billing
periods, the subscription and invoice records, and reconciliation.
"""

from .subscription import (
    SubscriptionStatus,
    SubscriptionRecord,
    PendingPlanChange,
    map_remote_status,
    mirror_remote_status,
    status_from_invoice,
)
from .invoice import InvoiceRecord, TERMINAL_INVOICE_STATUSES
from .period import (
    BillingPeriod,
    PeriodSource,
    period_from_remote,
    period_for_direct_payment,
    validate_duration,
)
from .plan_change import (
    PlanChange,
    ChangeType,
    UpdatePolicy,
    ProrationBehavior,
    BillingCycleAnchor,
    NEW_SUBSCRIPTION_POLICY,
    classify_plan_change,
    resolve_update_policy,
)
from .reconciliation import (
    SubscriptionUpdate,
    UpdateSource,
    reconcile,
    is_stale_update,
    is_stale_active,
)

__all__ = [
    'SubscriptionStatus',
    'SubscriptionRecord',
    'PendingPlanChange',
    'map_remote_status',
    'mirror_remote_status',
    'status_from_invoice',
    'InvoiceRecord',
    'TERMINAL_INVOICE_STATUSES',
    'BillingPeriod',
    'PeriodSource',
    'period_from_remote',
    'period_for_direct_payment',
    'validate_duration',
    'PlanChange',
    'ChangeType',
    'UpdatePolicy',
    'ProrationBehavior',
    'BillingCycleAnchor',
    'NEW_SUBSCRIPTION_POLICY',
    'classify_plan_change',
    'resolve_update_policy',
    'SubscriptionUpdate',
    'UpdateSource',
    'reconcile',
    'is_stale_update',
    'is_stale_active',
]
