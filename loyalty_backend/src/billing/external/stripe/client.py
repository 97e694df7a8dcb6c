"""
Stripe API Client Wrapper

The billing package's only entry point into the Stripe SDK. Every call
goes through safe_stripe_call, which turns SDK errors into
RemoteProviderError, and every object comes back as a plain dict.

Proration and billing-cycle-anchor behaviour is always passed explicitly
and the API version is pinned, so provider defaults never leak in.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

import stripe

from loyalty_backend.core.conf import settings
from loyalty_backend.src.billing.domain.plan_change import (
    BillingCycleAnchor,
    UpdatePolicy,
)
from loyalty_backend.src.billing.shared.exceptions import RemoteProviderError

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.api_version = settings.STRIPE_API_VERSION

SUBSCRIPTION_EXPAND = ['latest_invoice.payment_intent', 'pending_setup_intent']

_ALREADY_ATTACHED = re.compile(r'already (been )?attached', re.IGNORECASE)


def to_dict(obj: Any) -> Any:
    """Normalise a Stripe object (or None) into plain dicts and lists."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    to_dict_method = getattr(obj, 'to_dict', None)
    if callable(to_dict_method):
        obj = to_dict_method()
    if isinstance(obj, dict):
        return {key: to_dict(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [to_dict(value) for value in obj]
    return obj


def extract_client_secret(subscription: Dict[str, Any]) -> Optional[str]:
    """
    Client secret the browser needs to confirm the first payment.
    
    Paid subscriptions carry it on the latest invoice's payment intent,
    trials on the pending setup intent.
    """
    latest_invoice = subscription.get('latest_invoice')
    if isinstance(latest_invoice, dict):
        payment_intent = latest_invoice.get('payment_intent')
        if isinstance(payment_intent, dict) and payment_intent.get('client_secret'):
            return payment_intent['client_secret']

    setup_intent = subscription.get('pending_setup_intent')
    if isinstance(setup_intent, dict):
        return setup_intent.get('client_secret')

    return None


def first_item_id(subscription: Dict[str, Any]) -> Optional[str]:
    items = (subscription.get('items') or {}).get('data') or []
    return items[0].get('id') if items else None


class StripeAPIWrapper:
    """
    Safe wrapper for Stripe API calls.
    
    All methods are async class methods that can be called directly:
        customer = await StripeAPIWrapper.create_customer(email="owner@example.com", user_id=user_id)
    """

    @classmethod
    def _ensure_stripe_configured(cls):
        """Raise error if Stripe is not configured."""
        if not settings.STRIPE_SECRET_KEY:
            raise ValueError("STRIPE_SECRET_KEY not configured")

    @classmethod
    async def safe_stripe_call(cls, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a Stripe API call and normalise the result.
        
        Raises:
            RemoteProviderError: For any Stripe SDK error, carrying the
                provider's user-facing message
        """
        cls._ensure_stripe_configured()
        try:
            return to_dict(await func(*args, **kwargs))
        except stripe.StripeError as e:
            logger.error(
                f"[STRIPE] {getattr(func, '__qualname__', func)} failed: "
                f"{type(e).__name__} code={e.code} {e}"
            )
            raise RemoteProviderError(
                message=e.user_message or str(e),
                stripe_code=e.code,
                stripe_error=type(e).__name__
            )

    @staticmethod
    def _is_missing(error: RemoteProviderError) -> bool:
        return error.stripe_code == 'resource_missing'

    # -------------------------------------------------------------------------
    # Customer Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_customer(
        cls,
        email: Optional[str],
        user_id: str,
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a Stripe customer linked to the Supabase user."""
        params: Dict[str, Any] = {'email': email, 'metadata': {'supabase_user_id': user_id}}
        if idempotency_key:
            params['idempotency_key'] = idempotency_key
        return await cls.safe_stripe_call(stripe.Customer.create_async, **params)

    @classmethod
    async def retrieve_customer(cls, customer_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve a customer, or None if it is missing or deleted."""
        try:
            customer = await cls.safe_stripe_call(stripe.Customer.retrieve_async, customer_id)
        except RemoteProviderError as e:
            if cls._is_missing(e):
                return None
            raise
        if customer.get('deleted'):
            return None
        return customer

    @classmethod
    async def find_customer_by_user(cls, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Newest customer created for the Supabase user, or None.
        
        Search results can lag customer creation by about a minute. Retries
        inside that lag are covered by the create idempotency key.
        """
        result = await cls.safe_stripe_call(
            stripe.Customer.search_async,
            query=f"metadata['supabase_user_id']:'{user_id}'"
        )
        customers = sorted(result.get('data') or [], key=lambda c: c.get('created') or 0, reverse=True)
        return customers[0] if customers else None

    @classmethod
    async def set_default_payment_method(cls, customer_id: str, payment_method_id: str) -> Dict[str, Any]:
        return await cls.safe_stripe_call(
            stripe.Customer.modify_async,
            customer_id,
            invoice_settings={'default_payment_method': payment_method_id}
        )

    # -------------------------------------------------------------------------
    # Payment Method Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def attach_payment_method(cls, payment_method_id: str, customer_id: str) -> Dict[str, Any]:
        """
        Attach a payment method to a customer.
        
        "Already attached" is treated as success and the payment method is
        returned as it stands.
        """
        try:
            return await cls.safe_stripe_call(
                stripe.PaymentMethod.attach_async,
                payment_method_id,
                customer=customer_id
            )
        except RemoteProviderError as e:
            if _ALREADY_ATTACHED.search(e.message or ''):
                logger.info(f"[STRIPE] Payment method {payment_method_id} already attached")
                return await cls.retrieve_payment_method(payment_method_id)
            raise

    @classmethod
    async def retrieve_payment_method(cls, payment_method_id: str) -> Dict[str, Any]:
        return await cls.safe_stripe_call(stripe.PaymentMethod.retrieve_async, payment_method_id)

    @classmethod
    async def get_card_fingerprint(cls, payment_method_id: str) -> Optional[str]:
        """Card fingerprint of a payment method, None for non-card methods."""
        payment_method = await cls.retrieve_payment_method(payment_method_id)
        return (payment_method.get('card') or {}).get('fingerprint')

    # -------------------------------------------------------------------------
    # Subscription Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_subscription(
        cls,
        customer_id: str,
        price_id: str,
        policy: UpdatePolicy,
        metadata: Dict[str, str],
        default_payment_method: Optional[str] = None,
        trial_period_days: Optional[int] = None,
        trial_end: Optional[int] = None,
        cancel_at_period_end: bool = False,
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a new subscription.
        
        A new subscription is always anchored at creation, so only
        BillingCycleAnchor.NOW is accepted.
        
        Args:
            customer_id: Stripe customer
            price_id: Price to subscribe to
            policy: Proration policy; its anchor must be NOW
            metadata: Must carry user_id and plan_type for webhooks
            default_payment_method: Card to charge
            trial_period_days: Free trial length
            trial_end: Unix seconds to end a trial at
            cancel_at_period_end: Stop renewing after the first period
            idempotency_key: Deduplicates client retries
        """
        if policy.anchor != BillingCycleAnchor.NOW:
            raise ValueError("New subscriptions can only be anchored now")

        params: Dict[str, Any] = {
            'customer': customer_id,
            'items': [{'price': price_id}],
            'metadata': metadata,
            'proration_behavior': policy.proration.value,
            'cancel_at_period_end': cancel_at_period_end,
            'payment_behavior': 'default_incomplete',
            'payment_settings': {'save_default_payment_method': 'on_subscription'},
            'expand': SUBSCRIPTION_EXPAND,
        }
        if default_payment_method:
            params['default_payment_method'] = default_payment_method
        if trial_period_days:
            params['trial_period_days'] = trial_period_days
        if trial_end:
            params['trial_end'] = trial_end
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        return await cls.safe_stripe_call(stripe.Subscription.create_async, **params)

    @classmethod
    async def retrieve_subscription(cls, subscription_id: str, expand: Optional[List[str]] = None) -> Optional[Dict[str, Any]]:
        """Retrieve a subscription, or None if Stripe has no such object."""
        try:
            return await cls.safe_stripe_call(
                stripe.Subscription.retrieve_async,
                subscription_id,
                expand=expand or []
            )
        except RemoteProviderError as e:
            if cls._is_missing(e):
                logger.info(f"[STRIPE] Subscription {subscription_id} not found")
                return None
            raise

    @classmethod
    async def update_subscription(
        cls,
        subscription_id: str,
        item_id: str,
        price_id: str,
        policy: UpdatePolicy,
        metadata: Dict[str, str],
        cancel_at_period_end: Optional[bool] = None
    ) -> Dict[str, Any]:
        """
        Switch a live subscription's single item to a new price.
        
        The proration behaviour, the anchor and the trial end all come
        from the policy.
        """
        params: Dict[str, Any] = {
            'items': [{'id': item_id, 'price': price_id}],
            'proration_behavior': policy.proration.value,
            'billing_cycle_anchor': policy.anchor.value,
            'metadata': metadata,
            'expand': SUBSCRIPTION_EXPAND,
        }
        if policy.end_trial_now:
            params['trial_end'] = 'now'
        if cancel_at_period_end is not None:
            params['cancel_at_period_end'] = cancel_at_period_end

        return await cls.safe_stripe_call(stripe.Subscription.modify_async, subscription_id, **params)

    @classmethod
    async def cancel_at_period_end(cls, subscription_id: str) -> Dict[str, Any]:
        """Stop renewing; access continues until the period ends."""
        return await cls.safe_stripe_call(
            stripe.Subscription.modify_async,
            subscription_id,
            cancel_at_period_end=True
        )

    @classmethod
    async def resume_subscription(cls, subscription_id: str, payment_method_id: str) -> Dict[str, Any]:
        """Undo a scheduled cancellation and swap the default card. No charge."""
        return await cls.safe_stripe_call(
            stripe.Subscription.modify_async,
            subscription_id,
            cancel_at_period_end=False,
            default_payment_method=payment_method_id
        )

    # -------------------------------------------------------------------------
    # Invoice Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def retrieve_invoice(cls, invoice_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve an invoice, or None if Stripe has no such object."""
        try:
            return await cls.safe_stripe_call(stripe.Invoice.retrieve_async, invoice_id)
        except RemoteProviderError as e:
            if cls._is_missing(e):
                return None
            raise

    @classmethod
    async def preview_invoice(
        cls,
        customer_id: str,
        subscription_id: str,
        item_id: str,
        price_id: str,
        policy: UpdatePolicy
    ) -> Dict[str, Any]:
        """
        Dry-run the invoice a plan change would produce.
        
        Nothing is created or modified on the Stripe side.
        """
        subscription_details: Dict[str, Any] = {
            'items': [{'id': item_id, 'price': price_id}],
            'proration_behavior': policy.proration.value,
            'billing_cycle_anchor': policy.anchor.value,
        }
        if policy.end_trial_now:
            subscription_details['trial_end'] = 'now'

        return await cls.safe_stripe_call(
            stripe.Invoice.create_preview_async,
            customer=customer_id,
            subscription=subscription_id,
            subscription_details=subscription_details
        )
