"""
Subscription Store

Read/write access to the subscriptions table: one authoritative row per
user. Writes are upserts keyed by user_id, last write wins.

Usage:
    record = await subscription_store.get_by_user(user_id)
    saved = await subscription_store.save(reconciled)
"""

import json
import logging
import uuid
from dataclasses import replace
from typing import Any, Dict, Optional

from sqlalchemy import text

from loyalty_backend.database.db import async_db_session
from loyalty_backend.src.billing.domain.subscription import SubscriptionRecord

logger = logging.getLogger(__name__)

_COLUMNS = """
    id::text AS id,
    user_id::text AS user_id,
    restaurant_id::text AS restaurant_id,
    stripe_customer_id,
    stripe_subscription_id,
    plan_type,
    status,
    current_period_start,
    current_period_end,
    cancel_at_period_end,
    card_fingerprint,
    pending_plan_change,
    created_at,
    updated_at
"""


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class SubscriptionStore:
    """
    Postgres-backed subscription rows.
    
    Each call opens its own session so handlers never hold a connection
    across a Stripe round trip.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or async_db_session

    async def _fetch_one(self, where: str, params: Dict[str, Any]) -> Optional[SubscriptionRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                text(f"SELECT {_COLUMNS} FROM subscriptions WHERE {where} ORDER BY updated_at DESC LIMIT 1"),
                params
            )
            row = result.mappings().first()
        return SubscriptionRecord.from_row(row) if row else None

    async def get_by_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        return await self._fetch_one("user_id = CAST(:user_id AS uuid)", {"user_id": user_id})

    async def get_for_user(self, subscription_id: str, user_id: str) -> Optional[SubscriptionRecord]:
        """Row by id, only if it belongs to the user."""
        if not _is_uuid(subscription_id):
            return None
        return await self._fetch_one(
            "id = CAST(:id AS uuid) AND user_id = CAST(:user_id AS uuid)",
            {"id": subscription_id, "user_id": user_id}
        )

    async def find_by_customer(self, customer_id: str) -> Optional[SubscriptionRecord]:
        if not customer_id:
            return None
        return await self._fetch_one("stripe_customer_id = :customer_id", {"customer_id": customer_id})

    async def fingerprint_used_by_other_user(self, fingerprint: str, user_id: str) -> bool:
        """Whether another user's row already carries this card fingerprint."""
        async with self._session_factory() as session:
            result = await session.execute(
                text("""
                    SELECT 1
                    FROM subscriptions
                    WHERE card_fingerprint = :fingerprint
                      AND user_id <> CAST(:user_id AS uuid)
                    LIMIT 1
                """),
                {"fingerprint": fingerprint, "user_id": user_id}
            )
            return result.first() is not None

    async def save(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """
        Upsert the user's row.
        
        Returns:
            The record with its database id and created_at filled in
        """
        params = {
            "user_id": record.user_id,
            "restaurant_id": record.restaurant_id,
            "stripe_customer_id": record.stripe_customer_id,
            "stripe_subscription_id": record.stripe_subscription_id,
            "plan_type": record.plan_type.value,
            "status": record.status.value,
            "current_period_start": record.current_period_start,
            "current_period_end": record.current_period_end,
            "cancel_at_period_end": record.cancel_at_period_end,
            "card_fingerprint": record.card_fingerprint,
            "pending_plan_change": (
                json.dumps(record.pending_plan_change.to_dict()) if record.pending_plan_change else None
            ),
            "created_at": record.created_at or record.updated_at,
            "updated_at": record.updated_at,
        }

        async with self._session_factory() as session:
            result = await session.execute(
                text("""
                    INSERT INTO subscriptions (
                        user_id, restaurant_id, stripe_customer_id, stripe_subscription_id,
                        plan_type, status, current_period_start, current_period_end,
                        cancel_at_period_end, card_fingerprint, pending_plan_change,
                        created_at, updated_at
                    ) VALUES (
                        CAST(:user_id AS uuid), CAST(:restaurant_id AS uuid),
                        :stripe_customer_id, :stripe_subscription_id,
                        :plan_type, :status, :current_period_start, :current_period_end,
                        :cancel_at_period_end, :card_fingerprint, CAST(:pending_plan_change AS jsonb),
                        COALESCE(:created_at, NOW()), COALESCE(:updated_at, NOW())
                    )
                    ON CONFLICT (user_id) DO UPDATE SET
                        restaurant_id = EXCLUDED.restaurant_id,
                        stripe_customer_id = EXCLUDED.stripe_customer_id,
                        stripe_subscription_id = EXCLUDED.stripe_subscription_id,
                        plan_type = EXCLUDED.plan_type,
                        status = EXCLUDED.status,
                        current_period_start = EXCLUDED.current_period_start,
                        current_period_end = EXCLUDED.current_period_end,
                        cancel_at_period_end = EXCLUDED.cancel_at_period_end,
                        card_fingerprint = EXCLUDED.card_fingerprint,
                        pending_plan_change = EXCLUDED.pending_plan_change,
                        updated_at = EXCLUDED.updated_at
                    RETURNING id::text AS id, created_at
                """),
                params
            )
            row = result.mappings().first()
            await session.commit()

        logger.info(
            f"[STORE] Saved subscription for {record.user_id}: plan={record.plan_type.value}, "
            f"status={record.status.value}, sub={record.stripe_subscription_id}"
        )
        return replace(record, id=row['id'], created_at=row['created_at'])


subscription_store = SubscriptionStore()
