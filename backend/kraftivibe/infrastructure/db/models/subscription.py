"""
Subscription Database Model

SQLModel table for subscription data persistence.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime, Numeric
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionModel(SQLModel, table=True):
    """
    Subscription table, one row per tenant.

    Maps to the 'subscriptions' table in PostgreSQL.
    """

    __tablename__ = "subscriptions"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    tenant_id: UUID = Field(sa_column=Column(PGUUID(as_uuid=True), unique=True, index=True, nullable=False))

    # Plan & status
    plan: str = Field(default="free", index=True)
    status: str = Field(default="active", index=True)

    # Billing
    billing_interval: str = Field(default="monthly")
    amount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(default="USD", max_length=3)
    discount_percent: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(5, 2), nullable=False))

    # Billing period dates
    current_period_start: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    current_period_end: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    next_billing_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), index=True))
    trial_ends_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    canceled_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    cancel_at_period_end: bool = Field(default=False)

    # Limits
    max_customers: int = Field(default=0)
    max_projects: int = Field(default=0)
    max_storage_gb: int = Field(default=0)
    max_team_members: int = Field(default=0)
    max_services_listed: int = Field(default=0)
    max_bookings_per_month: int = Field(default=0)

    # Usage tracking
    current_customers: int = Field(default=0)
    current_projects: int = Field(default=0)
    current_storage_gb: int = Field(default=0)
    current_team_members: int = Field(default=0)
    current_services: int = Field(default=0)
    current_bookings_month: int = Field(default=0)

    features: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))

    # Payments
    failed_payments: int = Field(default=0)
    last_payment_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_payment_amount: Decimal = Field(default=Decimal("0.00"), sa_column=Column(Numeric(12, 2), nullable=False))
    payment_method_id: Optional[str] = Field(default=None)
    stripe_customer_id: Optional[str] = Field(default=None, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, unique=True, index=True)

    # 'metadata' is reserved on declarative classes
    extra_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSONB, nullable=False))

    # Timestamps
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
