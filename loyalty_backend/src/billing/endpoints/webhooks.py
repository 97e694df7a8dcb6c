"""
Webhook Endpoints

Stripe webhook endpoint for processing billing events.
"""

import logging

from fastapi import APIRouter, Depends, Request

from loyalty_backend.src.billing.external.stripe import WebhookService
from .dependencies import get_webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-webhooks"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service)
):
    """
    Process Stripe webhook events.
    
    Handles:
    - checkout.session.completed
    - payment_intent.succeeded
    - invoice.payment_succeeded / invoice.finalized / invoice.created
    - invoice.payment_failed
    - customer.subscription.updated
    - customer.subscription.deleted
    """
    return await service.process_stripe_webhook(request)
