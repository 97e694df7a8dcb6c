"""
Invoice Store

Read/write access to the invoices ledger, keyed by Stripe invoice id.
"""

import json
import logging
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from loyalty_backend.database.db import async_db_session
from loyalty_backend.src.billing.domain.invoice import InvoiceRecord

logger = logging.getLogger(__name__)

_FIELDS = (
    'stripe_invoice_id', 'user_id', 'stripe_customer_id', 'stripe_subscription_id',
    'invoice_number', 'status', 'currency', 'total', 'subtotal', 'tax', 'discount',
    'amount_paid', 'amount_due', 'period_start', 'period_end', 'invoice_date',
    'paid_at', 'due_date', 'invoice_pdf', 'hosted_invoice_url', 'payment_method',
    'description', 'restaurant_name', 'metadata', 'raw', 'updated_at',
)

_JSON_FIELDS = ('metadata', 'raw')


def _load_json(value) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def invoice_from_row(row: Mapping[str, Any]) -> InvoiceRecord:
    data = {name: row.get(name) for name in _FIELDS}
    data['user_id'] = str(data['user_id'])
    for name in _JSON_FIELDS:
        data[name] = _load_json(data[name])
    return InvoiceRecord(**data)


class InvoiceStore:
    """Postgres-backed invoice ledger."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or async_db_session

    async def get(self, stripe_invoice_id: str) -> Optional[InvoiceRecord]:
        columns = ", ".join('user_id::text AS user_id' if name == 'user_id' else name for name in _FIELDS)
        async with self._session_factory() as session:
            result = await session.execute(
                text(f"SELECT {columns} FROM invoices WHERE stripe_invoice_id = :invoice_id"),
                {"invoice_id": stripe_invoice_id}
            )
            row = result.mappings().first()
        return invoice_from_row(row) if row else None

    async def upsert(self, record: InvoiceRecord) -> None:
        """Insert or overwrite the invoice row for record.stripe_invoice_id."""
        params = {name: getattr(record, name) for name in _FIELDS}
        for name in _JSON_FIELDS:
            params[name] = json.dumps(params[name], default=str)

        values = []
        for name in _FIELDS:
            if name == 'user_id':
                values.append("CAST(:user_id AS uuid)")
            elif name in _JSON_FIELDS:
                values.append(f"CAST(:{name} AS jsonb)")
            else:
                values.append(f":{name}")
        updates = ",\n                ".join(
            f"{name} = EXCLUDED.{name}" for name in _FIELDS if name != 'stripe_invoice_id'
        )

        async with self._session_factory() as session:
            await session.execute(
                text(f"""
                    INSERT INTO invoices ({", ".join(_FIELDS)})
                    VALUES ({", ".join(values)})
                    ON CONFLICT (stripe_invoice_id) DO UPDATE SET
                    {updates}
                """),
                params
            )
            await session.commit()

        logger.info(
            f"[STORE] Upserted invoice {record.stripe_invoice_id} "
            f"(status={record.status}, total={record.total} {record.currency})"
        )

    async def get_restaurant_name(self, user_id: str) -> Optional[str]:
        """Name of the restaurant the user owns, if the restaurants table has one."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    text("""
                        SELECT name
                        FROM restaurants
                        WHERE owner_id = CAST(:user_id AS uuid)
                        LIMIT 1
                    """),
                    {"user_id": user_id}
                )
                row = result.first()
                return row.name if row else None
        except SQLAlchemyError as e:
            logger.warning(f"[STORE] Could not look up restaurant for {user_id}: {e}")
            return None


invoice_store = InvoiceStore()
