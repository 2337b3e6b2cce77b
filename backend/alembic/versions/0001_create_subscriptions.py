"""Create subscriptions table

Revision ID: 0001_create_subscriptions
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_create_subscriptions'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the subscriptions table, one row per tenant."""

    op.create_table(
        'subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),

        # Plan & status
        sa.Column('plan', sa.String(), server_default='free', nullable=False),
        sa.Column('status', sa.String(), server_default='active', nullable=False),

        # Billing
        sa.Column('billing_interval', sa.String(), server_default='monthly', nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), server_default='0', nullable=False),

        # Billing period dates
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('next_billing_date', sa.DateTime(timezone=True)),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True)),
        sa.Column('canceled_at', sa.DateTime(timezone=True)),
        sa.Column('cancel_at_period_end', sa.Boolean, server_default='false', nullable=False),

        # Limits
        sa.Column('max_customers', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_projects', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_storage_gb', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_team_members', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_services_listed', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_bookings_per_month', sa.Integer, server_default='0', nullable=False),

        # Usage tracking
        sa.Column('current_customers', sa.Integer, server_default='0', nullable=False),
        sa.Column('current_projects', sa.Integer, server_default='0', nullable=False),
        sa.Column('current_storage_gb', sa.Integer, server_default='0', nullable=False),
        sa.Column('current_team_members', sa.Integer, server_default='0', nullable=False),
        sa.Column('current_services', sa.Integer, server_default='0', nullable=False),
        sa.Column('current_bookings_month', sa.Integer, server_default='0', nullable=False),

        sa.Column('features', postgresql.JSONB, server_default='{}', nullable=False),

        # Payments
        sa.Column('failed_payments', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_payment_date', sa.DateTime(timezone=True)),
        sa.Column('last_payment_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('payment_method_id', sa.String()),
        sa.Column('stripe_customer_id', sa.String()),
        sa.Column('stripe_subscription_id', sa.String()),

        sa.Column('metadata', postgresql.JSONB, server_default='{}', nullable=False),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_index('ix_subscriptions_tenant_id', 'subscriptions', ['tenant_id'], unique=True)
    op.create_index('ix_subscriptions_plan', 'subscriptions', ['plan'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_next_billing_date', 'subscriptions', ['next_billing_date'])
    op.create_index('ix_subscriptions_stripe_customer_id', 'subscriptions', ['stripe_customer_id'])
    op.create_index(
        'ix_subscriptions_stripe_subscription_id',
        'subscriptions',
        ['stripe_subscription_id'],
        unique=True,
    )
    op.create_index('ix_subscriptions_created_at', 'subscriptions', ['created_at'])


def downgrade() -> None:
    """Drop the subscriptions table."""
    op.drop_table('subscriptions')
