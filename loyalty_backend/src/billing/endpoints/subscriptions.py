"""
Subscription Endpoints

API endpoints for subscription management.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from loyalty_backend.src.billing.shared.exceptions import BillingError
from loyalty_backend.src.billing.subscriptions import SubscriptionService
from .dependencies import get_current_user, get_current_user_id, get_subscription_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-subscriptions"])


# ============================================================================
# Request Models
# ============================================================================

class BillingRequest(BaseModel):
    """Accepts both the dashboard's camelCase keys and snake_case."""
    model_config = ConfigDict(populate_by_name=True)


class CreatePaymentRequest(BillingRequest):
    """Request for first checkout or a plan switch."""
    plan_type: str = Field(alias='planType')
    price_id: str = Field(alias='priceId')
    payment_method_id: str = Field(alias='paymentMethodId')
    is_trial: bool = Field(default=False, alias='isTrial')
    auto_renew: bool = Field(default=True, alias='autoRenew')


class ChangePlanRequest(BillingRequest):
    new_plan_type: str = Field(alias='newPlanType')
    new_price_id: str = Field(alias='newPriceId')


class CancelSubscriptionRequest(BillingRequest):
    subscription_id: str = Field(alias='subscriptionId')


class ReactivateSubscriptionRequest(BillingRequest):
    subscription_id: str = Field(alias='subscriptionId')
    payment_method_id: str = Field(alias='paymentMethodId')
    price_id: str = Field(alias='priceId')


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/create-payment")
async def create_payment(
    request: CreatePaymentRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    """
    Start a subscription or switch plans.
    
    Handles:
    - New trials (no charge, card fingerprint checked)
    - New paid subscriptions (first invoice charged now)
    - Trial conversion, upgrades, interval changes (charged now)
    - Downgrades (deferred to the end of the period)
    """
    try:
        return await service.create_or_change_subscription(
            user_id=user['user_id'],
            email=user.get('email'),
            plan_type=request.plan_type,
            price_id=request.price_id,
            payment_method_id=request.payment_method_id,
            is_trial=request.is_trial,
            auto_renew=request.auto_renew,
        )
    except BillingError:
        raise
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[BILLING] Error creating payment: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process payment")


@router.post("/change-plan")
async def change_plan(
    request: ChangePlanRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    try:
        return await service.change_plan(user_id, request.new_plan_type, request.new_price_id)
    except BillingError:
        raise
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[BILLING] Error changing plan: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to change plan")


@router.post("/preview-plan-change")
async def preview_plan_change(
    request: ChangePlanRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    """Amount a plan change would charge now. Nothing is changed in Stripe."""
    try:
        return await service.preview_plan_change(user_id, request.new_plan_type, request.new_price_id)
    except BillingError:
        raise
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[BILLING] Error previewing plan change: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to preview plan change")


@router.post("/cancel-subscription")
async def cancel_subscription(
    request: CancelSubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    """Cancel at period end. Access continues until current_period_end."""
    try:
        return await service.cancel_subscription(user_id, request.subscription_id)
    except BillingError:
        raise
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[BILLING] Error canceling subscription: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to cancel subscription")


@router.post("/reactivate-subscription")
async def reactivate_subscription(
    request: ReactivateSubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    try:
        return await service.reactivate_subscription(
            user_id,
            request.subscription_id,
            request.payment_method_id,
            request.price_id,
        )
    except BillingError:
        raise
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[BILLING] Error reactivating subscription: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to reactivate subscription")


@router.get("/subscription")
async def get_subscription(
    user_id: str = Depends(get_current_user_id),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Optional[Dict[str, Any]]]:
    """Current subscription row, or null before the first checkout."""
    try:
        return {'subscription': await service.get_subscription(user_id)}
    except Exception as e:
        logger.error(f"[BILLING] Error getting subscription: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load subscription")
