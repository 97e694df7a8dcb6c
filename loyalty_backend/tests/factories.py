"""Builders for Stripe payloads and in-memory stand-ins for the stores."""

import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from loyalty_backend.src.billing.domain.invoice import InvoiceRecord
from loyalty_backend.src.billing.domain.subscription import SubscriptionRecord, SubscriptionStatus
from loyalty_backend.src.billing.shared.config import PlanType

USER_ID = '11111111-1111-4111-8111-111111111111'
OTHER_USER_ID = '22222222-2222-4222-8222-222222222222'


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def ts(value: datetime) -> int:
    return int(value.timestamp())


def make_record(
    user_id: str = USER_ID,
    plan_type: PlanType = PlanType.MONTHLY,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    subscription_id: Optional[str] = 'sub_123',
    customer_id: Optional[str] = 'cus_123',
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    **kwargs
) -> SubscriptionRecord:
    start = start or utcnow() - timedelta(days=10)
    end = end or start + timedelta(days=30)
    return SubscriptionRecord(
        id=kwargs.pop('id', str(uuid.uuid4())),
        user_id=user_id,
        plan_type=plan_type,
        status=status,
        stripe_customer_id=customer_id,
        stripe_subscription_id=subscription_id,
        current_period_start=start,
        current_period_end=end,
        created_at=kwargs.pop('created_at', start),
        updated_at=kwargs.pop('updated_at', start),
        **kwargs
    )


def make_remote_subscription(
    subscription_id: str = 'sub_123',
    status: str = 'active',
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user_id: Optional[str] = USER_ID,
    plan_type: Optional[str] = 'monthly',
    customer: str = 'cus_123',
    cancel_at_period_end: bool = False,
    client_secret: Optional[str] = 'pi_123_secret_abc',
    **metadata
) -> Dict[str, Any]:
    start = start or utcnow() - timedelta(days=10)
    end = end or start + timedelta(days=30)
    meta = dict(metadata)
    if user_id:
        meta['user_id'] = user_id
    if plan_type:
        meta['plan_type'] = plan_type
    return {
        'id': subscription_id,
        'object': 'subscription',
        'status': status,
        'customer': customer,
        'current_period_start': ts(start),
        'current_period_end': ts(end),
        'cancel_at_period_end': cancel_at_period_end,
        'metadata': meta,
        'items': {'data': [{'id': 'si_123', 'price': {'id': 'price_monthly'}}]},
        'latest_invoice': {
            'id': 'in_latest',
            'payment_intent': {'id': 'pi_123', 'client_secret': client_secret} if client_secret else None,
        },
        'pending_setup_intent': None,
    }


def make_invoice(
    invoice_id: str = 'in_123',
    customer: str = 'cus_123',
    subscription: Optional[str] = 'sub_123',
    status: str = 'paid',
    total: Optional[int] = 2999,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    **fields
) -> Dict[str, Any]:
    start = start or utcnow() - timedelta(days=10)
    end = end or start + timedelta(days=30)
    invoice = {
        'id': invoice_id,
        'object': 'invoice',
        'customer': customer,
        'subscription': subscription,
        'status': status,
        'currency': 'usd',
        'total': total,
        'subtotal': total,
        'tax': None,
        'amount_paid': total if status == 'paid' else 0,
        'amount_due': total,
        'number': 'ABCD-0001',
        'created': ts(start),
        'period_start': ts(start - timedelta(days=30)),
        'period_end': ts(start),
        'status_transitions': {'paid_at': ts(start) if status == 'paid' else None},
        'payment_intent': 'pi_123',
        'lines': {'data': [{'period': {'start': ts(start), 'end': ts(end)}}]},
        'metadata': {},
    }
    invoice.update(fields)
    return invoice


def make_event(event_type: str, obj: Dict[str, Any], event_id: str = 'evt_123') -> Dict[str, Any]:
    return {'id': event_id, 'type': event_type, 'data': {'object': obj}}


class InMemorySubscriptionStore:
    """SubscriptionStore with a dict keyed by user_id."""

    def __init__(self, records: Optional[List[SubscriptionRecord]] = None):
        self.rows: Dict[str, SubscriptionRecord] = {}
        self.saves: List[SubscriptionRecord] = []
        for record in records or []:
            self.rows[record.user_id] = record

    def add(self, record: SubscriptionRecord) -> SubscriptionRecord:
        self.rows[record.user_id] = record
        return record

    async def get_by_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        return self.rows.get(user_id)

    async def get_for_user(self, subscription_id: str, user_id: str) -> Optional[SubscriptionRecord]:
        record = self.rows.get(user_id)
        if record and record.id == subscription_id:
            return record
        return None

    async def find_by_customer(self, customer_id: str) -> Optional[SubscriptionRecord]:
        for record in self.rows.values():
            if customer_id and record.stripe_customer_id == customer_id:
                return record
        return None

    async def fingerprint_used_by_other_user(self, fingerprint: str, user_id: str) -> bool:
        return any(
            record.card_fingerprint == fingerprint and record.user_id != user_id
            for record in self.rows.values()
        )

    async def save(self, record: SubscriptionRecord) -> SubscriptionRecord:
        existing = self.rows.get(record.user_id)
        saved = replace(
            record,
            id=existing.id if existing else (record.id or str(uuid.uuid4())),
            created_at=existing.created_at if existing else record.created_at,
        )
        self.rows[record.user_id] = saved
        self.saves.append(saved)
        return saved


class InMemoryInvoiceStore:
    """InvoiceStore with a dict keyed by stripe_invoice_id."""

    def __init__(self, restaurant_name: Optional[str] = None):
        self.rows: Dict[str, InvoiceRecord] = {}
        self.upserts = 0
        self.restaurant_name = restaurant_name

    async def get(self, stripe_invoice_id: str) -> Optional[InvoiceRecord]:
        return self.rows.get(stripe_invoice_id)

    async def upsert(self, record: InvoiceRecord) -> None:
        self.upserts += 1
        self.rows[record.stripe_invoice_id] = record

    async def get_restaurant_name(self, user_id: str) -> Optional[str]:
        return self.restaurant_name
