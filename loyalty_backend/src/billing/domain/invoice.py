"""
Invoice Domain Entity

A row in the local invoice ledger. Amounts are integer minor currency
units exactly as Stripe reports them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

# Invoice statuses after which only the raw snapshot may change
TERMINAL_INVOICE_STATUSES = frozenset({'paid', 'void'})


@dataclass(frozen=True)
class InvoiceRecord:
    stripe_invoice_id: str
    user_id: str
    stripe_customer_id: Optional[str]
    stripe_subscription_id: Optional[str]
    invoice_number: str
    status: Optional[str]
    currency: str
    total: int
    subtotal: int
    tax: int
    discount: int
    amount_paid: int
    amount_due: int
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    invoice_date: Optional[datetime]
    paid_at: Optional[datetime]
    due_date: Optional[datetime]
    invoice_pdf: Optional[str]
    hosted_invoice_url: Optional[str]
    payment_method: str
    description: Optional[str]
    restaurant_name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INVOICE_STATUSES
