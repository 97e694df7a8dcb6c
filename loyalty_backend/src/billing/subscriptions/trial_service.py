"""
Trial Service

Trial eligibility is scoped to the physical card, not the account: a card
fingerprint that already sits on another user's subscription row cannot
start a second trial.
"""

import logging
from typing import Optional

from loyalty_backend.src.billing.external.stripe import StripeAPIWrapper
from loyalty_backend.src.billing.shared.exceptions import DuplicateTrialCardError
from loyalty_backend.src.billing.store import subscription_store

logger = logging.getLogger(__name__)


class TrialService:

    def __init__(self, store=None, gateway=None):
        self.store = store or subscription_store
        self.gateway = gateway or StripeAPIWrapper

    async def get_card_fingerprint(self, payment_method_id: str) -> Optional[str]:
        return await self.gateway.get_card_fingerprint(payment_method_id)

    async def ensure_trial_eligible(self, user_id: str, fingerprint: Optional[str]) -> None:
        """
        Raises:
            DuplicateTrialCardError: If another user already used this card
        """
        if not fingerprint:
            return

        if await self.store.fingerprint_used_by_other_user(fingerprint, user_id):
            logger.warning(f"[TRIAL] Card fingerprint reuse blocked for {user_id}")
            raise DuplicateTrialCardError()


trial_service = TrialService()
