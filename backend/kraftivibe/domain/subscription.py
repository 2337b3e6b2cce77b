"""
Subscription Domain Models

Domain models for subscription management following Clean Architecture.
Enums, the feature and limit bundles, and the Subscription entity with its
state transitions. Nothing in this module touches I/O: every transition
takes the current instant as an argument.
"""

import calendar
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from kraftivibe.infrastructure.exceptions import ConflictError


class SubscriptionPlan(str, Enum):
    """Subscription plans, ordered from lowest to highest tier."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    SUSPENDED = "suspended"
    CANCELED = "canceled"


class BillingInterval(str, Enum):
    """How often a subscription is billed."""
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class UsageType(str, Enum):
    """Tracked usage dimensions."""
    CUSTOMERS = "customers"
    PROJECTS = "projects"
    STORAGE_GB = "storage_gb"
    TEAM_MEMBERS = "team_members"
    SERVICES = "services"
    BOOKINGS = "bookings"


# (usage counter field, limit field) per dimension
USAGE_FIELDS: Dict[UsageType, Tuple[str, str]] = {
    UsageType.CUSTOMERS: ("current_customers", "max_customers"),
    UsageType.PROJECTS: ("current_projects", "max_projects"),
    UsageType.STORAGE_GB: ("current_storage_gb", "max_storage_gb"),
    UsageType.TEAM_MEMBERS: ("current_team_members", "max_team_members"),
    UsageType.SERVICES: ("current_services", "max_services_listed"),
    UsageType.BOOKINGS: ("current_bookings_month", "max_bookings_per_month"),
}

UNLIMITED = -1


# =============================================================================
# Feature & Limit Bundles
# =============================================================================

class SubscriptionFeatures(BaseModel):
    """Feature flags resolved from the subscription plan."""

    # Booking & customers
    basic_booking: bool = False
    customer_management: bool = False
    service_catalog: bool = False

    # Communication
    in_app_messaging: bool = False
    email_notifications: bool = False
    sms_notifications: bool = False
    whatsapp_integration: bool = False

    # Projects
    basic_projects: bool = False
    advanced_project_mgmt: bool = False
    project_templates: bool = False
    gantt_charts: bool = False
    resource_allocation: bool = False

    # Team
    team_members: bool = False
    role_based_access: bool = False
    team_chat: bool = False
    task_assignment: bool = False

    # Finance
    invoice_generation: bool = False
    online_payments: bool = False
    recurring_billing: bool = False
    multi_currency: bool = False
    expense_tracking: bool = False
    profit_loss_reports: bool = False

    # Analytics
    basic_analytics: bool = False
    advanced_analytics: bool = False
    custom_reports: bool = False
    data_export: bool = False
    api_access: bool = False

    # Marketing
    public_profile: bool = False
    online_booking_widget: bool = False
    seo_optimization: bool = False
    marketing_automation: bool = False
    review_management: bool = False
    loyalty_programs: bool = False

    # Branding
    custom_branding: bool = False
    custom_domain: bool = False
    white_labeling: bool = False
    mobile_app: bool = False

    # Documents & inventory
    inventory_management: bool = False
    quotation_management: bool = False
    contract_management: bool = False
    document_storage: bool = False
    digital_signatures: bool = False

    # Support
    email_support: bool = False
    priority_support: bool = False
    dedicated_account_mgr: bool = False
    onboarding_training: bool = False

    def enabled(self) -> List[str]:
        """Names of the enabled features, in declaration order."""
        return [name for name, value in self.model_dump().items() if value]

    def has(self, feature: str) -> bool:
        """Check a feature by name; unknown names are disabled."""
        return feature in type(self).model_fields and bool(getattr(self, feature))


class SubscriptionLimits(BaseModel):
    """Plan limits. UNLIMITED (-1) means no cap."""
    max_customers: int
    max_projects: int
    max_storage_gb: int
    max_team_members: int
    max_services_listed: int
    max_bookings_per_month: int


# =============================================================================
# Period Arithmetic
# =============================================================================

def as_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


INTERVAL_MONTHS: Dict[BillingInterval, int] = {
    BillingInterval.MONTHLY: 1,
    BillingInterval.YEARLY: 12,
    BillingInterval.LIFETIME: 120,
}

FREE_PLAN_PERIOD_MONTHS = 12


def billing_period(
    plan: SubscriptionPlan,
    interval: BillingInterval,
    start: datetime,
) -> Tuple[datetime, Optional[datetime]]:
    """
    Compute the end of a billing period starting at ``start``.

    Returns:
        (period_end, next_billing_date). Free and lifetime periods have no
        next billing date.
    """
    if plan == SubscriptionPlan.FREE:
        return add_months(start, FREE_PLAN_PERIOD_MONTHS), None

    period_end = add_months(start, INTERVAL_MONTHS[interval])
    if interval == BillingInterval.LIFETIME:
        return period_end, None
    return period_end, period_end


# =============================================================================
# Domain Entity
# =============================================================================

class Subscription(BaseModel):
    """
    Core subscription domain entity. One per tenant.

    State transitions live on the entity so the repository only has to
    load, mutate and persist.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[UUID] = None
    tenant_id: UUID
    plan: SubscriptionPlan = SubscriptionPlan.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE

    # Billing
    billing_interval: BillingInterval = BillingInterval.MONTHLY
    amount: Decimal = Decimal("0.00")
    currency: str = "USD"
    discount_percent: Decimal = Decimal("0.00")

    # Periods
    current_period_start: datetime
    current_period_end: datetime
    next_billing_date: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False

    # Limits
    max_customers: int = 0
    max_projects: int = 0
    max_storage_gb: int = 0
    max_team_members: int = 0
    max_services_listed: int = 0
    max_bookings_per_month: int = 0

    # Usage
    current_customers: int = 0
    current_projects: int = 0
    current_storage_gb: int = 0
    current_team_members: int = 0
    current_services: int = 0
    current_bookings_month: int = 0

    features: SubscriptionFeatures = Field(default_factory=SubscriptionFeatures)

    # Payments
    failed_payments: int = 0
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Decimal = Decimal("0.00")
    payment_method_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

    def is_trialing(self, now: datetime) -> bool:
        return (
            self.status == SubscriptionStatus.TRIALING
            and self.trial_ends_at is not None
            and now < self.trial_ends_at
        )

    def days_until_renewal(self, now: datetime) -> int:
        if self.next_billing_date is None:
            return 0
        return max((self.next_billing_date - now).days, 0)

    @property
    def pending_plan(self) -> Optional[SubscriptionPlan]:
        value = self.metadata.get("pending_plan")
        return SubscriptionPlan(value) if value else None

    def usage_of(self, usage_type: UsageType) -> Tuple[int, int]:
        """(used, limit) for a dimension."""
        used_field, limit_field = USAGE_FIELDS[usage_type]
        return getattr(self, used_field), getattr(self, limit_field)

    @property
    def limits(self) -> SubscriptionLimits:
        return SubscriptionLimits(
            max_customers=self.max_customers,
            max_projects=self.max_projects,
            max_storage_gb=self.max_storage_gb,
            max_team_members=self.max_team_members,
            max_services_listed=self.max_services_listed,
            max_bookings_per_month=self.max_bookings_per_month,
        )

    # -------------------------------------------------------------------------
    # Plan & Billing Transitions
    # -------------------------------------------------------------------------

    def apply_plan(
        self,
        plan: SubscriptionPlan,
        limits: SubscriptionLimits,
        features: SubscriptionFeatures,
        amount: Decimal,
    ) -> None:
        """Switch plan; limits, features and amount always move together."""
        self.plan = plan
        for field, value in limits.model_dump().items():
            setattr(self, field, value)
        self.features = features.model_copy()
        self.amount = amount
        self.metadata.pop("pending_plan", None)

    def schedule_plan(self, plan: SubscriptionPlan) -> None:
        """Record a plan change to be applied when the period rolls over."""
        self.metadata["pending_plan"] = plan.value

    def change_interval(
        self,
        interval: BillingInterval,
        amount: Decimal,
        immediate: bool,
        now: datetime,
    ) -> None:
        self.billing_interval = interval
        self.amount = amount
        if immediate:
            self.restart_period(now)

    def restart_period(self, now: datetime) -> None:
        self.current_period_start = now
        self.current_period_end, self.next_billing_date = billing_period(
            self.plan, self.billing_interval, now
        )

    def renew(self) -> None:
        """Roll the period forward from the current period end."""
        start = self.current_period_end
        self.current_period_start = start
        self.current_period_end, self.next_billing_date = billing_period(
            self.plan, self.billing_interval, start
        )

    # -------------------------------------------------------------------------
    # Lifecycle Transitions
    # -------------------------------------------------------------------------

    def start_trial(self, trial_days: int, now: datetime) -> None:
        if self.status == SubscriptionStatus.TRIALING:
            raise ConflictError(
                "Subscription is already in a trial",
                {"status": self.status.value},
            )
        trial_end = now + timedelta(days=trial_days)
        self.status = SubscriptionStatus.TRIALING
        self.trial_ends_at = trial_end
        self.current_period_start = now
        self.current_period_end = trial_end
        self.next_billing_date = trial_end

    def end_trial(self) -> None:
        if self.status != SubscriptionStatus.TRIALING:
            raise ConflictError(
                "Subscription is not in a trial",
                {"status": self.status.value},
            )
        self.status = SubscriptionStatus.ACTIVE
        self.trial_ends_at = None
        if self.billing_interval == BillingInterval.LIFETIME or self.plan == SubscriptionPlan.FREE:
            self.next_billing_date = None
        else:
            self.next_billing_date = self.current_period_end

    def cancel(self, at_period_end: bool, now: datetime) -> None:
        if self.status == SubscriptionStatus.CANCELED:
            raise ConflictError(
                "Subscription is already canceled",
                {"status": self.status.value},
            )
        self.cancel_at_period_end = at_period_end
        if not at_period_end:
            self.status = SubscriptionStatus.CANCELED
            self.canceled_at = now
            self.next_billing_date = None

    def reactivate(self, now: datetime) -> None:
        if self.status != SubscriptionStatus.CANCELED and not self.cancel_at_period_end:
            raise ConflictError(
                "Only canceled subscriptions can be reactivated",
                {"status": self.status.value},
            )
        if self.status == SubscriptionStatus.CANCELED:
            if self.current_period_end <= now:
                self.restart_period(now)
            elif self.plan != SubscriptionPlan.FREE and self.billing_interval != BillingInterval.LIFETIME:
                self.next_billing_date = self.current_period_end
        self.status = SubscriptionStatus.ACTIVE
        self.canceled_at = None
        self.cancel_at_period_end = False

    def suspend(self, reason: str, now: datetime) -> None:
        if self.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE):
            raise ConflictError(
                f"Cannot suspend a {self.status.value} subscription",
                {"status": self.status.value},
            )
        self.status = SubscriptionStatus.SUSPENDED
        self.metadata["suspend_reason"] = reason
        self.metadata["suspended_at"] = now.isoformat()

    def convert_to_free(
        self,
        limits: SubscriptionLimits,
        features: SubscriptionFeatures,
        now: datetime,
    ) -> None:
        """Drop an expired trial onto the Free plan."""
        self.apply_plan(SubscriptionPlan.FREE, limits, features, Decimal("0.00"))
        self.status = SubscriptionStatus.ACTIVE
        self.trial_ends_at = None
        self.restart_period(now)

    # -------------------------------------------------------------------------
    # Usage Transitions
    # -------------------------------------------------------------------------

    def increment_usage(self, usage_type: UsageType, amount: int) -> None:
        used_field, _ = USAGE_FIELDS[usage_type]
        setattr(self, used_field, getattr(self, used_field) + amount)

    def decrement_usage(self, usage_type: UsageType, amount: int) -> None:
        used_field, _ = USAGE_FIELDS[usage_type]
        setattr(self, used_field, max(getattr(self, used_field) - amount, 0))

    def reset_monthly_usage(self) -> None:
        self.current_bookings_month = 0

    # -------------------------------------------------------------------------
    # Payment Transitions
    # -------------------------------------------------------------------------

    def record_payment(self, amount: Decimal, now: datetime) -> None:
        self.last_payment_date = now
        self.last_payment_amount = amount
        self.failed_payments = 0
        if self.status == SubscriptionStatus.PAST_DUE:
            self.status = SubscriptionStatus.ACTIVE

    def record_failed_payment(self, threshold: int) -> None:
        self.failed_payments += 1
        if self.failed_payments >= threshold and self.status in (
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.TRIALING,
        ):
            self.status = SubscriptionStatus.PAST_DUE
