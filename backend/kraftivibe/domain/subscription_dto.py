"""
Subscription DTOs

Request and response models for the subscription service and API.
Field constraints here are the first line of input validation; the
service re-checks anything a caller could bypass by constructing
models directly.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from kraftivibe.domain.subscription import (
    BillingInterval,
    as_utc,
    SubscriptionFeatures,
    SubscriptionLimits,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageType,
)


class UsageOperation(str, Enum):
    """How an UpdateUsageRequest changes a counter."""
    INCREMENT = "increment"
    DECREMENT = "decrement"
    SET = "set"


class AnalyticsGroupBy(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SweepName(str, Enum):
    """
    Background sweeps that can be run on demand.

    Declaration order is the run order: renewals roll due periods over
    before the expiry cleanup looks for lapsed subscriptions.
    """
    EXPIRING_TRIALS = "expiring_trials"
    FAILED_PAYMENTS = "failed_payments"
    RENEWALS = "renewals"
    EXPIRED_SUBSCRIPTIONS = "expired_subscriptions"


# =============================================================================
# Request DTOs
# =============================================================================

class CreateSubscriptionRequest(BaseModel):
    """Request DTO for creating a tenant subscription."""
    tenant_id: UUID = Field(..., description="Owning tenant")
    plan: SubscriptionPlan = Field(..., description="Plan to subscribe to")
    billing_interval: BillingInterval = Field(
        default=BillingInterval.MONTHLY,
        description="Billing interval"
    )
    trial_days: int = Field(default=0, ge=0, le=90, description="Trial length in days")
    payment_method_id: Optional[str] = Field(default=None, max_length=255)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateSubscriptionRequest(BaseModel):
    """Request DTO for updating mutable subscription details."""
    payment_method_id: Optional[str] = Field(default=None, max_length=255)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255)
    metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Keys merged into the existing metadata"
    )


class ChangePlanRequest(BaseModel):
    """Request DTO for changing (or previewing a change of) plan."""
    new_plan: SubscriptionPlan = Field(..., description="Target plan")
    change_immediate: bool = Field(
        default=False,
        description="Apply a downgrade now instead of at period end"
    )


class StartTrialRequest(BaseModel):
    trial_days: int = Field(..., ge=1, le=90, description="Trial length in days")


class CancelSubscriptionRequest(BaseModel):
    """Request DTO for canceling a subscription."""
    cancel_at_period_end: bool = Field(
        default=True,
        description="Keep the subscription until the period ends"
    )
    reason: Optional[str] = Field(default=None, max_length=500)
    feedback: Optional[str] = Field(default=None, max_length=1000)


class ReactivateSubscriptionRequest(BaseModel):
    payment_method_id: Optional[str] = Field(default=None, max_length=255)


class SuspendSubscriptionRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class UpdateBillingIntervalRequest(BaseModel):
    """Request DTO for switching billing interval."""
    billing_interval: BillingInterval
    change_immediate: bool = Field(
        default=False,
        description="Restart the billing period now"
    )


class UpdateUsageRequest(BaseModel):
    """Request DTO for changing a usage counter."""
    usage_type: UsageType
    operation: UsageOperation
    amount: int = Field(..., ge=0)


class ProcessPaymentRequest(BaseModel):
    """Request DTO for recording a payment against a subscription."""
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str = Field(..., min_length=3, max_length=3)
    payment_method_id: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)


class SubscriptionFilter(BaseModel):
    """Filtered, paginated subscription search."""
    plans: List[SubscriptionPlan] = Field(default_factory=list)
    statuses: List[SubscriptionStatus] = Field(default_factory=list)
    billing_intervals: List[BillingInterval] = Field(default_factory=list)
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    has_failed_payments: Optional[bool] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)

    @field_validator("created_after", "created_before")
    @classmethod
    def normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def check_ranges(self) -> "SubscriptionFilter":
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("min_amount must not exceed max_amount")
        if (
            self.created_after is not None
            and self.created_before is not None
            and self.created_after > self.created_before
        ):
            raise ValueError("created_after must not be later than created_before")
        return self


class AnalyticsFilter(BaseModel):
    """Date range and grouping for analytics queries."""
    start_date: datetime
    end_date: datetime
    group_by: AnalyticsGroupBy = AnalyticsGroupBy.MONTH
    plans: List[SubscriptionPlan] = Field(default_factory=list)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def check_range(self) -> "AnalyticsFilter":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be later than end_date")
        return self


# =============================================================================
# Response DTOs
# =============================================================================

class SubscriptionResponse(BaseModel):
    """Response DTO for a tenant subscription."""
    id: Optional[UUID] = None
    tenant_id: UUID
    plan: SubscriptionPlan
    plan_name: str
    status: SubscriptionStatus
    billing_interval: BillingInterval
    amount: Decimal
    currency: str
    discount_percent: Decimal
    current_period_start: datetime
    current_period_end: datetime
    next_billing_date: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    pending_plan: Optional[SubscriptionPlan] = None
    is_active: bool
    is_trialing: bool
    days_until_renewal: int
    limits: SubscriptionLimits
    features: SubscriptionFeatures
    usage_percentages: Dict[str, float]
    failed_payments: int
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BillingPreview(BaseModel):
    """Advisory result of a proposed plan change."""
    current_plan: SubscriptionPlan
    new_plan: SubscriptionPlan
    proration_amount: Decimal = Field(description="Negative means a credit is due")
    new_amount: Decimal
    next_billing_date: datetime
    effective_date: datetime
    currency: str
    change_immediate: bool


class PlanDetails(BaseModel):
    plan: SubscriptionPlan
    name: str
    description: str
    monthly_price: Decimal
    yearly_price: Decimal
    lifetime_price: Decimal
    yearly_discount: Decimal = Field(description="Yearly saving in percent")
    features: SubscriptionFeatures
    limits: SubscriptionLimits
    popular: bool = False
    recommended: bool = False


class PlanComparisonResponse(BaseModel):
    plans: List[PlanDetails]


class UsageMetric(BaseModel):
    used: int
    limit: int
    percentage: float
    unlimited: bool


class UsageResponse(BaseModel):
    """Per-dimension usage for a tenant."""
    tenant_id: UUID
    plan: SubscriptionPlan
    metrics: Dict[str, UsageMetric]
    is_over_limit: bool
    over_limit_reasons: List[str]


class LimitCheckResponse(BaseModel):
    limit_type: UsageType
    allowed: bool


class FeatureDetail(BaseModel):
    name: str
    enabled: bool
    required_plan: Optional[SubscriptionPlan] = None
    upgrade_required: bool


class FeatureAccessResponse(BaseModel):
    tenant_id: UUID
    plan: SubscriptionPlan
    features: SubscriptionFeatures
    enabled_features: List[str]
    details: List[FeatureDetail]


class PaymentResponse(BaseModel):
    tenant_id: UUID
    amount: Decimal
    currency: str
    status: str
    payment_method_id: str
    processed_at: datetime
    description: Optional[str] = None


class SubscriptionStats(BaseModel):
    """Aggregate figures returned by the repository."""
    total_subscriptions: int = 0
    active_subscriptions: int = 0
    trialing_subscriptions: int = 0
    canceled_subscriptions: int = 0
    by_plan: Dict[str, int] = Field(default_factory=dict)
    by_status: Dict[str, int] = Field(default_factory=dict)
    mrr: Decimal = Decimal("0.00")
    arr: Decimal = Decimal("0.00")
    churn_rate: float = 0.0
    revenue_by_plan: Dict[str, Decimal] = Field(default_factory=dict)
    new_last_30_days: int = 0
    new_previous_30_days: int = 0


class SubscriptionStatsResponse(SubscriptionStats):
    average_revenue_per_user: Decimal = Decimal("0.00")
    growth_rate: float = 0.0
    customer_lifetime_value: Decimal = Decimal("0.00")


class SubscriptionListResponse(BaseModel):
    items: List[SubscriptionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AnalyticsResponse(BaseModel):
    start_date: datetime
    end_date: datetime
    group_by: AnalyticsGroupBy
    new_subscriptions: int
    cancellations: int
    revenue: Decimal
    by_period: Dict[str, int] = Field(description="New subscriptions per period bucket")


class ChurnAnalysisResponse(BaseModel):
    start_date: datetime
    end_date: datetime
    churn_rate: float
    retention_rate: float
    churned_subscriptions: int
    churn_by_plan: Dict[str, int]


class RevenueAnalysisResponse(BaseModel):
    start_date: datetime
    end_date: datetime
    total_revenue: Decimal
    revenue_by_plan: Dict[str, Decimal]
    mrr: Decimal
    arr: Decimal
    currency: str


class SweepResult(BaseModel):
    """Outcome of one background sweep run."""
    sweep: str
    found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    status: str
    service: str
    checked_at: datetime


class ServiceMetrics(BaseModel):
    total_subscriptions: int
    active_subscriptions: int
    trialing_subscriptions: int
    mrr: Decimal
    churn_rate: float
    collected_at: datetime
