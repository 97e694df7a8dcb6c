"""
Stripe Webhook Service

Central dispatcher for Stripe webhook events.
Handles signature verification and routing to handlers.

There is no dedup table: every handler is a reconcile-and-upsert keyed on
Stripe ids, so redelivered and out-of-order events converge on the same row.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import stripe
from fastapi import Request
from fastapi.responses import JSONResponse

from loyalty_backend.core.conf import settings
from loyalty_backend.src.billing.shared.exceptions import (
    WebhookSecretMissingError,
    WebhookSignatureInvalidError,
)
from .client import to_dict
from .handlers import (
    CheckoutWebhookHandler,
    InvoiceWebhookHandler,
    SubscriptionWebhookHandler,
    WebhookResult,
)

logger = logging.getLogger(__name__)

INVOICE_SYNC_EVENTS = ('invoice.payment_succeeded', 'invoice.finalized', 'invoice.created')


class WebhookService:
    """
    Central service for processing Stripe webhooks.
    
    Responsibilities:
    - Verify webhook signatures (fail closed)
    - Route events to the appropriate handler
    - Turn handler failures into a 400 so Stripe redelivers
    
    Usage:
        webhook_service = WebhookService()
        response = await webhook_service.process_stripe_webhook(request)
    """

    def __init__(self, store=None, gateway=None, persister=None):
        self.checkout_handler = CheckoutWebhookHandler(store=store, gateway=gateway)
        self.subscription_handler = SubscriptionWebhookHandler(store=store, gateway=gateway)
        self.invoice_handler = InvoiceWebhookHandler(store=store, gateway=gateway, persister=persister)

    async def process_stripe_webhook(self, request: Request) -> JSONResponse:
        """
        Process an incoming Stripe webhook.
        
        Args:
            request: FastAPI Request object
            
        Returns:
            JSONResponse, 200 when processed or not applicable, 400 when
            a handler failed
            
        Raises:
            WebhookSignatureInvalidError: Missing or invalid signature
            WebhookSecretMissingError: STRIPE_WEBHOOK_SECRET not configured
        """
        payload = await request.body()
        event = self.construct_event(payload, request.headers.get('stripe-signature'))

        event_id = event.get('id')
        event_type = event.get('type')
        logger.info(f"[WEBHOOK] Processing event type: {event_type} (ID: {event_id})")

        try:
            result = await self._route_event(event)
        except Exception as e:
            logger.error(f"[WEBHOOK] Error processing {event_type} ({event_id}): {e}", exc_info=True)
            action = 'invoice_processing_failed' if (event_type or '').startswith('invoice.') else 'processing_failed'
            result = WebhookResult(success=False, action=action, error=str(e))

        return JSONResponse(
            status_code=200 if result.success else 400,
            content=self._render(event_type, result),
        )

    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """Verify the signature and parse the event into a plain dict."""
        if not sig_header:
            logger.warning("[WEBHOOK] Missing stripe-signature header")
            raise WebhookSignatureInvalidError("Missing stripe-signature header")

        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("[WEBHOOK] STRIPE_WEBHOOK_SECRET not configured")
            raise WebhookSecretMissingError()

        try:
            event = stripe.Webhook.construct_event(
                payload,
                sig_header,
                settings.STRIPE_WEBHOOK_SECRET,
                tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[WEBHOOK] Invalid signature: {e}")
            raise WebhookSignatureInvalidError()
        except ValueError as e:
            logger.warning(f"[WEBHOOK] Invalid payload: {e}")
            raise WebhookSignatureInvalidError("Invalid webhook payload")

        return to_dict(event)

    async def _route_event(self, event: Dict[str, Any]) -> WebhookResult:
        """
        Route event to the appropriate handler.
        
        Args:
            event: Verified Stripe event as a dict
        """
        event_type = event.get('type')
        obj = (event.get('data') or {}).get('object') or {}

        # Checkout / one-time payment events
        if event_type == 'checkout.session.completed':
            return await self.checkout_handler.handle_checkout_completed(obj)

        elif event_type == 'payment_intent.succeeded':
            return await self.checkout_handler.handle_payment_succeeded(obj)

        # Invoice events
        elif event_type in INVOICE_SYNC_EVENTS:
            return await self.invoice_handler.handle_invoice_event(obj)

        elif event_type == 'invoice.payment_failed':
            return await self.invoice_handler.handle_payment_failed(obj)

        # Subscription events
        elif event_type == 'customer.subscription.updated':
            return await self.subscription_handler.handle_subscription_updated(obj)

        elif event_type == 'customer.subscription.deleted':
            return await self.subscription_handler.handle_subscription_deleted(obj)

        else:
            logger.info(f"[WEBHOOK] Unhandled event type: {event_type}")
            return WebhookResult(success=True, action='ignored')

    @staticmethod
    def _render(event_type: str, result: WebhookResult) -> Dict[str, Any]:
        return {
            'received': True,
            'processed': result.success,
            'action': result.action,
            'event_type': event_type,
            'user_id': result.user_id,
            'plan_type': result.plan_type,
            'billing_period_accurate': result.billing_period_accurate,
            'actual_duration_days': result.actual_duration_days,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'error': result.error,
        }


# Global instance
webhook_service = WebhookService()
