"""
Invoice Webhook Handler

Handles invoice webhook events:
- invoice.payment_succeeded / invoice.finalized / invoice.created
- invoice.payment_failed

The invoice snapshot is always persisted first, whether or not it belongs
to a subscription. Subscription-linked invoices then re-derive status and
period from the live subscription.
"""

import logging
from typing import Any, Callable, Dict, Optional

from loyalty_backend.src.billing.domain.period import period_from_remote
from loyalty_backend.src.billing.domain.reconciliation import SubscriptionUpdate, UpdateSource
from loyalty_backend.src.billing.domain.subscription import (
    SubscriptionStatus,
    status_from_invoice,
)
from loyalty_backend.src.billing.invoices.persister import (
    InvoicePersister,
    invoice_subscription_id,
    object_id,
    service_period,
)
from .base import BaseWebhookHandler, WebhookResult, metadata_plan_type, metadata_user_id
from .checkout import period_plan

logger = logging.getLogger(__name__)

# Allowed drift between the invoice's service period and the subscription period
PERIOD_MISMATCH_TOLERANCE_SECONDS = 86400


def _failed_invoice_status(invoice_status, remote_status, previous) -> SubscriptionStatus:
    if invoice_status == 'paid':
        return SubscriptionStatus.ACTIVE
    return SubscriptionStatus.PAST_DUE


class InvoiceWebhookHandler(BaseWebhookHandler):
    """
    Handler for Stripe invoice webhook events.
    
    Invoice events are critical for:
    - Keeping the invoice ledger complete
    - Moving the row to past_due when a renewal fails
    - Advancing the period on renewal
    """

    def __init__(self, store=None, gateway=None, persister=None):
        super().__init__(store=store, gateway=gateway)
        self.persister = persister or InvoicePersister(subscription_store=self.store)

    async def handle_invoice_event(self, invoice: Dict[str, Any]) -> WebhookResult:
        """
        Handle invoice.payment_succeeded, invoice.finalized and invoice.created.
        
        paid -> active, open -> past_due, anything else mirrors the subscription.
        """
        return await self._sync_from_invoice(
            invoice,
            action='invoice_processed',
            no_subscription_action='invoice_persisted_no_subscription',
            no_metadata_action='invoice_persisted_no_user_metadata',
            resolve_status=status_from_invoice,
        )

    async def handle_payment_failed(self, invoice: Dict[str, Any]) -> WebhookResult:
        """
        Handle invoice.payment_failed.
        
        Stripe keeps retrying the charge, so access is not revoked here.
        The row moves to past_due unless the invoice has been paid since.
        """
        logger.warning(
            f"[INVOICE] Payment failed: invoice={invoice.get('id')}, attempt={invoice.get('attempt_count')}"
        )
        return await self._sync_from_invoice(
            invoice,
            action='invoice_payment_failed',
            no_subscription_action='invoice_payment_failed_no_subscription',
            no_metadata_action='invoice_payment_failed_no_user_metadata',
            resolve_status=_failed_invoice_status,
        )

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    async def _fresh_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        invoice = await self.gateway.retrieve_invoice(payload['id'])
        if invoice is None:
            logger.warning(f"[INVOICE] Invoice {payload['id']} not found in Stripe, using event payload")
            return payload
        return invoice

    async def _sync_from_invoice(
        self,
        payload: Dict[str, Any],
        action: str,
        no_subscription_action: str,
        no_metadata_action: str,
        resolve_status: Callable[[Optional[str], Optional[str], Optional[SubscriptionStatus]], SubscriptionStatus]
    ) -> WebhookResult:
        invoice = await self._fresh_invoice(payload)
        invoice_record = await self.persister.persist(invoice)

        subscription_id = invoice_subscription_id(invoice)
        subscription = await self.fresh_subscription(subscription_id) if subscription_id else None
        if not subscription:
            logger.info(f"[INVOICE] {invoice['id']} is not linked to a subscription, ledger only")
            return WebhookResult(success=True, action=no_subscription_action, user_id=invoice_record.user_id)

        user_id = metadata_user_id(subscription)
        if not user_id:
            logger.info(f"[INVOICE] Subscription {subscription_id} has no user_id metadata, ledger only")
            return WebhookResult(success=True, action=no_metadata_action, user_id=invoice_record.user_id)

        local = await self.store.get_by_user(user_id)
        reported_plan = metadata_plan_type(subscription)
        period = period_from_remote(subscription, period_plan(local, subscription_id, reported_plan))
        self._check_service_period(invoice, period)

        status = resolve_status(
            invoice.get('status'),
            subscription.get('status'),
            local.status if local else None,
        )

        record = await self.write_back(local, SubscriptionUpdate(
            user_id=user_id,
            source=UpdateSource.WEBHOOK,
            status=status,
            plan_type=reported_plan,
            stripe_customer_id=object_id(invoice.get('customer')),
            stripe_subscription_id=subscription_id,
            period=period,
            cancel_at_period_end=subscription.get('cancel_at_period_end'),
        ))
        return WebhookResult.with_period(action, record, period)

    @staticmethod
    def _check_service_period(invoice: Dict[str, Any], period) -> None:
        _, line_end = service_period(invoice)
        if line_end is None:
            return
        drift = abs((line_end - period.end).total_seconds())
        if drift > PERIOD_MISMATCH_TOLERANCE_SECONDS:
            logger.info(
                f"[INVOICE] {invoice['id']} service period ends {line_end.isoformat()}, "
                f"subscription period ends {period.end.isoformat()}"
            )
