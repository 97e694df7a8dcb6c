"""Add subscription billing tables

Revision ID: 20260112_001_billing
Revises:
Create Date: 2026-01-12 10:00:00.000000

This migration adds the subscription billing tables:
- subscriptions: One authoritative row per user, mirrored from Stripe
- invoices: Ledger of Stripe invoice snapshots
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20260112_001_billing'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create billing tables."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = inspector.get_table_names()

    # -------------------------------------------------------------------------
    # 1. subscriptions - One row per user
    # -------------------------------------------------------------------------
    if 'subscriptions' not in existing_tables:
        op.create_table(
            'subscriptions',
            # Primary key
            sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
            sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, unique=True, comment='Supabase auth user ID'),
            sa.Column('restaurant_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Owning restaurant'),

            # Stripe references
            sa.Column('stripe_customer_id', sa.String(length=255), nullable=True, comment='Stripe customer ID'),
            sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True, comment='Stripe subscription ID'),

            # Plan and status
            sa.Column('plan_type', sa.String(length=20), nullable=False, comment='trial, monthly, semiannual, annual'),
            sa.Column('status', sa.String(length=30), server_default='active', nullable=False, comment='active, trialing, past_due, canceled, unpaid, incomplete, incomplete_expired'),

            # Billing period
            sa.Column('current_period_start', sa.TIMESTAMP(timezone=True), nullable=True, comment='Start of the paid window'),
            sa.Column('current_period_end', sa.TIMESTAMP(timezone=True), nullable=True, comment='End of the paid window'),
            sa.Column('cancel_at_period_end', sa.Boolean(), server_default='false', nullable=False),

            # Trial abuse detection
            sa.Column('card_fingerprint', sa.String(length=255), nullable=True, comment='Stripe card fingerprint'),

            # Deferred downgrade
            sa.Column('pending_plan_change', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='{plan_type, price_id, requested_at}'),

            # Timestamps
            sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
            sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),

            sa.PrimaryKeyConstraint('id'),
        )

        # Indexes for subscriptions
        op.create_index('idx_subscriptions_stripe_customer_id', 'subscriptions', ['stripe_customer_id'])
        op.create_index('idx_subscriptions_stripe_subscription_id', 'subscriptions', ['stripe_subscription_id'])
        op.create_index('idx_subscriptions_card_fingerprint', 'subscriptions', ['card_fingerprint'])

    # -------------------------------------------------------------------------
    # 2. invoices - Stripe invoice ledger
    # -------------------------------------------------------------------------
    if 'invoices' not in existing_tables:
        op.create_table(
            'invoices',
            sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
            sa.Column('stripe_invoice_id', sa.String(length=255), nullable=False, unique=True, comment='Stripe invoice ID'),
            sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Owner, resolved by Stripe customer'),
            sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
            sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
            sa.Column('invoice_number', sa.String(length=100), nullable=True),
            sa.Column('status', sa.String(length=30), nullable=True, comment='draft, open, paid, void, uncollectible'),
            sa.Column('currency', sa.String(length=10), server_default='usd', nullable=False),

            # Amounts (integer minor units, as sent by Stripe)
            sa.Column('total', sa.BigInteger(), server_default='0', nullable=False),
            sa.Column('subtotal', sa.BigInteger(), server_default='0', nullable=False),
            sa.Column('tax', sa.BigInteger(), server_default='0', nullable=False),
            sa.Column('discount', sa.BigInteger(), server_default='0', nullable=False),
            sa.Column('amount_paid', sa.BigInteger(), server_default='0', nullable=False),
            sa.Column('amount_due', sa.BigInteger(), server_default='0', nullable=False),

            # Dates
            sa.Column('period_start', sa.TIMESTAMP(timezone=True), nullable=True, comment='Service period start'),
            sa.Column('period_end', sa.TIMESTAMP(timezone=True), nullable=True, comment='Service period end'),
            sa.Column('invoice_date', sa.TIMESTAMP(timezone=True), nullable=True),
            sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True),
            sa.Column('due_date', sa.TIMESTAMP(timezone=True), nullable=True),

            # Display
            sa.Column('invoice_pdf', sa.Text(), nullable=True),
            sa.Column('hosted_invoice_url', sa.Text(), nullable=True),
            sa.Column('payment_method', sa.String(length=20), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('restaurant_name', sa.String(length=255), nullable=True),

            # Snapshots
            sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.Column('raw', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Latest Stripe payload'),

            # Timestamps
            sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
            sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),

            sa.PrimaryKeyConstraint('id'),
        )

        # Indexes for invoices
        op.create_index('idx_invoices_user_id', 'invoices', ['user_id'])
        op.create_index('idx_invoices_stripe_subscription_id', 'invoices', ['stripe_subscription_id'])
        op.create_index('idx_invoices_invoice_date', 'invoices', ['invoice_date'])


def downgrade() -> None:
    """Drop billing tables."""
    op.drop_index('idx_invoices_invoice_date', table_name='invoices')
    op.drop_index('idx_invoices_stripe_subscription_id', table_name='invoices')
    op.drop_index('idx_invoices_user_id', table_name='invoices')
    op.drop_table('invoices')

    op.drop_index('idx_subscriptions_card_fingerprint', table_name='subscriptions')
    op.drop_index('idx_subscriptions_stripe_subscription_id', table_name='subscriptions')
    op.drop_index('idx_subscriptions_stripe_customer_id', table_name='subscriptions')
    op.drop_table('subscriptions')
