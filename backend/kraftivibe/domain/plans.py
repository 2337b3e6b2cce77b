"""
Plan Catalog

Static pricing, feature bundles and limits for every subscription plan.
Tables are built once at import time and only ever read.
"""

from decimal import Decimal
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from kraftivibe.domain.subscription import (
    BillingInterval,
    SubscriptionFeatures,
    SubscriptionLimits,
    SubscriptionPlan,
    UNLIMITED,
)


# =============================================================================
# Plan Ranking
# =============================================================================

PLAN_RANK: Mapping[SubscriptionPlan, int] = MappingProxyType({
    SubscriptionPlan.FREE: 0,
    SubscriptionPlan.STARTER: 1,
    SubscriptionPlan.PRO: 2,
    SubscriptionPlan.BUSINESS: 3,
    SubscriptionPlan.ENTERPRISE: 4,
})


def plan_rank(plan: SubscriptionPlan) -> Optional[int]:
    """Rank of a plan, or None for anything outside the catalog."""
    return PLAN_RANK.get(plan)


def is_plan_upgrade(current: SubscriptionPlan, new: SubscriptionPlan) -> bool:
    """True when ``new`` ranks strictly above ``current``. Unknown plans never upgrade."""
    current_rank = plan_rank(current)
    new_rank = plan_rank(new)
    if current_rank is None or new_rank is None:
        return False
    return new_rank > current_rank


# =============================================================================
# Pricing
# =============================================================================

_PRICING: Mapping[Tuple[SubscriptionPlan, BillingInterval], Decimal] = MappingProxyType({
    (SubscriptionPlan.FREE, BillingInterval.MONTHLY): Decimal("0.00"),
    (SubscriptionPlan.FREE, BillingInterval.YEARLY): Decimal("0.00"),
    (SubscriptionPlan.FREE, BillingInterval.LIFETIME): Decimal("0.00"),
    (SubscriptionPlan.STARTER, BillingInterval.MONTHLY): Decimal("29.99"),
    (SubscriptionPlan.STARTER, BillingInterval.YEARLY): Decimal("299.99"),
    (SubscriptionPlan.STARTER, BillingInterval.LIFETIME): Decimal("999.99"),
    (SubscriptionPlan.PRO, BillingInterval.MONTHLY): Decimal("79.99"),
    (SubscriptionPlan.PRO, BillingInterval.YEARLY): Decimal("799.99"),
    (SubscriptionPlan.PRO, BillingInterval.LIFETIME): Decimal("2499.99"),
    (SubscriptionPlan.BUSINESS, BillingInterval.MONTHLY): Decimal("199.99"),
    (SubscriptionPlan.BUSINESS, BillingInterval.YEARLY): Decimal("1999.99"),
    (SubscriptionPlan.BUSINESS, BillingInterval.LIFETIME): Decimal("5999.99"),
    (SubscriptionPlan.ENTERPRISE, BillingInterval.MONTHLY): Decimal("499.99"),
    (SubscriptionPlan.ENTERPRISE, BillingInterval.YEARLY): Decimal("4999.99"),
    (SubscriptionPlan.ENTERPRISE, BillingInterval.LIFETIME): Decimal("14999.99"),
})


def get_plan_pricing(plan: SubscriptionPlan, interval: BillingInterval) -> Decimal:
    """Catalog price for a plan and interval; unknown combinations cost 0."""
    return _PRICING.get((plan, interval), Decimal("0.00"))


def yearly_discount_percent(plan: SubscriptionPlan) -> Decimal:
    """Saving of yearly billing over twelve monthly payments, in percent."""
    monthly = get_plan_pricing(plan, BillingInterval.MONTHLY)
    if monthly <= 0:
        return Decimal("0.00")
    yearly = get_plan_pricing(plan, BillingInterval.YEARLY)
    saving = (monthly * 12 - yearly) / (monthly * 12) * 100
    return saving.quantize(Decimal("0.01"))


# =============================================================================
# Feature Bundles (cumulative by tier)
# =============================================================================

_FREE_FEATURES: FrozenSet[str] = frozenset({
    "basic_booking",
    "customer_management",
    "service_catalog",
    "invoice_generation",
    "public_profile",
    "mobile_app",
    "email_support",
})

_STARTER_FEATURES = _FREE_FEATURES | {
    "in_app_messaging",
    "email_notifications",
    "basic_projects",
    "online_payments",
    "online_booking_widget",
    "review_management",
    "quotation_management",
    "document_storage",
}

_PRO_FEATURES = _STARTER_FEATURES | {
    "sms_notifications",
    "advanced_project_mgmt",
    "team_members",
    "role_based_access",
    "task_assignment",
    "recurring_billing",
    "expense_tracking",
    "basic_analytics",
    "advanced_analytics",
    "data_export",
    "seo_optimization",
    "loyalty_programs",
    "custom_branding",
    "inventory_management",
    "digital_signatures",
    "priority_support",
}

_BUSINESS_FEATURES = _PRO_FEATURES | {
    "whatsapp_integration",
    "project_templates",
    "gantt_charts",
    "team_chat",
    "multi_currency",
    "profit_loss_reports",
    "custom_reports",
    "api_access",
    "marketing_automation",
    "custom_domain",
    "contract_management",
    "onboarding_training",
}

_ENTERPRISE_FEATURES = _BUSINESS_FEATURES | {
    "resource_allocation",
    "white_labeling",
    "dedicated_account_mgr",
}

_FEATURE_BUNDLES: Mapping[SubscriptionPlan, FrozenSet[str]] = MappingProxyType({
    SubscriptionPlan.FREE: _FREE_FEATURES,
    SubscriptionPlan.STARTER: frozenset(_STARTER_FEATURES),
    SubscriptionPlan.PRO: frozenset(_PRO_FEATURES),
    SubscriptionPlan.BUSINESS: frozenset(_BUSINESS_FEATURES),
    SubscriptionPlan.ENTERPRISE: frozenset(_ENTERPRISE_FEATURES),
})


def get_default_features(plan: SubscriptionPlan) -> SubscriptionFeatures:
    """Feature flags for a plan. Unknown plans get the Free bundle."""
    bundle = _FEATURE_BUNDLES.get(plan, _FREE_FEATURES)
    return SubscriptionFeatures(**{name: True for name in bundle})


def required_plan_for_feature(feature: str) -> Optional[SubscriptionPlan]:
    """Lowest plan that includes ``feature``, or None if no plan does."""
    for plan in sorted(PLAN_RANK, key=PLAN_RANK.__getitem__):
        if feature in _FEATURE_BUNDLES[plan]:
            return plan
    return None


def normalize_feature_name(feature: str) -> str:
    """'Custom Branding' / 'custom-branding' -> 'custom_branding'."""
    return feature.strip().lower().replace(" ", "_").replace("-", "_")


# =============================================================================
# Limits
# =============================================================================

_LIMITS: Mapping[SubscriptionPlan, SubscriptionLimits] = MappingProxyType({
    SubscriptionPlan.FREE: SubscriptionLimits(
        max_customers=6,
        max_projects=2,
        max_storage_gb=1,
        max_team_members=1,
        max_services_listed=5,
        max_bookings_per_month=20,
    ),
    SubscriptionPlan.STARTER: SubscriptionLimits(
        max_customers=25,
        max_projects=10,
        max_storage_gb=5,
        max_team_members=3,
        max_services_listed=20,
        max_bookings_per_month=100,
    ),
    SubscriptionPlan.PRO: SubscriptionLimits(
        max_customers=150,
        max_projects=50,
        max_storage_gb=25,
        max_team_members=10,
        max_services_listed=100,
        max_bookings_per_month=500,
    ),
    SubscriptionPlan.BUSINESS: SubscriptionLimits(
        max_customers=1000,
        max_projects=200,
        max_storage_gb=100,
        max_team_members=50,
        max_services_listed=500,
        max_bookings_per_month=2000,
    ),
    SubscriptionPlan.ENTERPRISE: SubscriptionLimits(
        max_customers=UNLIMITED,
        max_projects=UNLIMITED,
        max_storage_gb=500,
        max_team_members=UNLIMITED,
        max_services_listed=UNLIMITED,
        max_bookings_per_month=UNLIMITED,
    ),
})


def get_default_limits(plan: SubscriptionPlan) -> SubscriptionLimits:
    """Limits for a plan. Unknown plans get the Free limits."""
    return _LIMITS.get(plan, _LIMITS[SubscriptionPlan.FREE]).model_copy()


# =============================================================================
# Display Metadata
# =============================================================================

_PLAN_NAMES: Dict[SubscriptionPlan, str] = {
    SubscriptionPlan.FREE: "Free",
    SubscriptionPlan.STARTER: "Starter",
    SubscriptionPlan.PRO: "Professional",
    SubscriptionPlan.BUSINESS: "Business",
    SubscriptionPlan.ENTERPRISE: "Enterprise",
}

_PLAN_DESCRIPTIONS: Dict[SubscriptionPlan, str] = {
    SubscriptionPlan.FREE: "Perfect for getting started with basic features",
    SubscriptionPlan.STARTER: "Ideal for small artisan businesses",
    SubscriptionPlan.PRO: "Advanced features for growing businesses",
    SubscriptionPlan.BUSINESS: "Comprehensive solution for established businesses",
    SubscriptionPlan.ENTERPRISE: "Full-featured solution for large operations",
}


def get_plan_name(plan: SubscriptionPlan) -> str:
    return _PLAN_NAMES.get(plan, "Unknown")


def get_plan_description(plan: SubscriptionPlan) -> str:
    return _PLAN_DESCRIPTIONS.get(plan, "")


def all_plans() -> List[SubscriptionPlan]:
    """Every catalog plan, lowest tier first."""
    return sorted(PLAN_RANK, key=PLAN_RANK.__getitem__)
