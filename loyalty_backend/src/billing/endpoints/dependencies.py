"""
Endpoint Dependencies

Shared dependencies for billing API endpoints. All of them can be
overridden in tests through app.dependency_overrides.
"""

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header

from loyalty_backend.core.conf import settings
from loyalty_backend.src.billing.external.stripe import WebhookService, webhook_service
from loyalty_backend.src.billing.shared.exceptions import UnauthorizedError
from loyalty_backend.src.billing.subscriptions import SubscriptionService, subscription_service

logger = logging.getLogger(__name__)


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Dict[str, Any]:
    """
    Verify the Supabase access token and return the caller.
    
    Returns:
        Dict with user_id (the token's sub) and email
        
    Raises:
        UnauthorizedError: Missing, malformed or invalid token
    """
    if not authorization:
        raise UnauthorizedError("Missing authorization header")

    scheme, _, token = authorization.partition(' ')
    if scheme.lower() != 'bearer' or not token:
        raise UnauthorizedError("Invalid authorization header")

    if not settings.SUPABASE_JWT_SECRET:
        logger.error("[AUTH] SUPABASE_JWT_SECRET not configured")
        raise UnauthorizedError("Auth not configured")

    try:
        decoded = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALGORITHM],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"[AUTH] Invalid token: {e}")
        raise UnauthorizedError("Invalid token")

    user_id = decoded.get('sub')
    if not user_id:
        raise UnauthorizedError("Invalid token")

    return {'user_id': user_id, 'email': decoded.get('email')}


async def get_current_user_id(user: Dict[str, Any] = Depends(get_current_user)) -> str:
    return user['user_id']


def get_subscription_service() -> SubscriptionService:
    return subscription_service


def get_webhook_service() -> WebhookService:
    return webhook_service
