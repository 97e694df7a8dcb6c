"""
Billing Exceptions

Custom exception classes for billing-related errors.
Each carries a stable error code and the HTTP status the API answers with,
so endpoints can surface a short message while the full provider detail
stays in the logs.
"""

from typing import Optional


class BillingError(Exception):
    """
    Base exception for all billing-related errors.
    
    All billing exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    status_code = 400
    
    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)
    
    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class UnauthorizedError(BillingError):
    """Raised when the request carries no valid caller identity."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, code="UNAUTHORIZED")


class SubscriptionNotFoundError(BillingError):
    """Raised when no subscription row exists for the given id and user."""

    status_code = 404

    def __init__(
        self,
        message: str = "Subscription not found",
        subscription_id: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="SUBSCRIPTION_NOT_FOUND",
            details={'subscription_id': subscription_id} if subscription_id else {}
        )
        self.subscription_id = subscription_id


class DuplicateTrialCardError(BillingError):
    """Raised when a card that already funded a trial is used for another one."""

    status_code = 409

    def __init__(self, message: str = "This card has already been used for a trial."):
        super().__init__(message=message, code="DUPLICATE_TRIAL_CARD")


class SubscriptionExpiredError(BillingError):
    """
    Raised when reactivation is attempted after the paid period has ended.
    
    The caller must start a fresh checkout instead.
    """

    status_code = 409

    def __init__(
        self,
        message: str = "Subscription has expired. Please start a new subscription.",
        period_end: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="SUBSCRIPTION_EXPIRED",
            details={'current_period_end': period_end} if period_end else {}
        )


class CannotReactivateError(BillingError):
    """Raised when the remote subscription is in a state that cannot be resumed."""

    status_code = 409

    def __init__(
        self,
        message: str = "Subscription cannot be reactivated. Please start a new subscription.",
        remote_status: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="CANNOT_REACTIVATE",
            details={'remote_status': remote_status} if remote_status else {}
        )
        self.remote_status = remote_status


class RemoteProviderError(BillingError):
    """
    Raised when a call to the billing provider fails.
    
    Examples:
        - Network failure talking to Stripe
        - Request validation error
        - Card declined
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Payment provider error",
        code: str = "REMOTE_PROVIDER_ERROR",
        stripe_code: Optional[str] = None,
        stripe_error: Optional[str] = None
    ):
        details = {}
        if stripe_code:
            details['stripe_code'] = stripe_code
        if stripe_error:
            details['stripe_error'] = stripe_error
        super().__init__(message=message, code=code, details=details)
        self.stripe_code = stripe_code
        self.stripe_error = stripe_error


class PaymentProcessingFailedError(RemoteProviderError):
    """Raised when a subscription create or update is rejected by the provider."""

    status_code = 402

    def __init__(
        self,
        message: str = "Payment processing failed",
        stripe_code: Optional[str] = None,
        stripe_error: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="PAYMENT_PROCESSING_FAILED",
            stripe_code=stripe_code,
            stripe_error=stripe_error
        )

    @classmethod
    def from_remote(cls, error: RemoteProviderError) -> 'PaymentProcessingFailedError':
        return cls(
            message=error.message,
            stripe_code=error.stripe_code,
            stripe_error=error.stripe_error
        )


class InvalidPlanTypeError(BillingError):
    """Raised for a plan identifier outside the plan catalog."""

    status_code = 400

    def __init__(self, plan_type):
        super().__init__(
            message=f"Invalid plan type: {plan_type}",
            code="INVALID_PLAN_TYPE",
            details={'plan_type': plan_type}
        )
        self.plan_type = plan_type


class OrphanedInvoiceError(BillingError):
    """
    Raised when an invoice references a customer no subscription row knows.
    
    This means the two systems of record have drifted apart and must
    never be swallowed silently.
    """

    status_code = 422

    def __init__(self, invoice_id: str, customer_id: Optional[str]):
        super().__init__(
            message=f"No subscription found for customer {customer_id} (invoice {invoice_id})",
            code="ORPHANED_INVOICE",
            details={'invoice_id': invoice_id, 'customer_id': customer_id}
        )
        self.invoice_id = invoice_id
        self.customer_id = customer_id


class WebhookSignatureInvalidError(BillingError):
    """Raised when the webhook signature header is missing or does not verify."""

    status_code = 400

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="WEBHOOK_SIGNATURE_INVALID")


class WebhookSecretMissingError(BillingError):
    """Raised when no webhook signing secret is configured."""

    status_code = 500

    def __init__(self, message: str = "Webhook secret not configured"):
        super().__init__(message=message, code="WEBHOOK_SECRET_MISSING")
