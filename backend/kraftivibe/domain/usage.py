"""
Usage Math

Percentages and over-limit evaluation for the tracked usage dimensions.
"""

from typing import List

from kraftivibe.domain.subscription import Subscription, UsageType, UNLIMITED
from kraftivibe.domain.subscription_dto import UsageMetric, UsageResponse


# Reason label reported for each dimension when it is over its limit
OVER_LIMIT_REASONS = {
    UsageType.CUSTOMERS: "customers",
    UsageType.PROJECTS: "projects",
    UsageType.STORAGE_GB: "storage",
    UsageType.TEAM_MEMBERS: "team_members",
    UsageType.SERVICES: "services",
    UsageType.BOOKINGS: "bookings",
}


def usage_percentage(used: int, limit: int) -> float:
    """used / limit * 100. A limit of zero or less is unlimited and reports 0."""
    if limit <= 0:
        return 0.0
    return used / limit * 100


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED or limit <= 0


def can_add(used: int, limit: int) -> bool:
    """Whether one more unit fits under the limit."""
    return is_unlimited(limit) or used < limit


def over_limit_reasons(subscription: Subscription) -> List[str]:
    """Dimensions whose usage is strictly above 100% of the limit."""
    reasons = []
    for usage_type in UsageType:
        used, limit = subscription.usage_of(usage_type)
        if usage_percentage(used, limit) > 100:
            reasons.append(OVER_LIMIT_REASONS[usage_type])
    return reasons


def build_usage_response(subscription: Subscription) -> UsageResponse:
    """Summarize every dimension of a subscription's usage."""
    metrics = {}
    for usage_type in UsageType:
        used, limit = subscription.usage_of(usage_type)
        metrics[usage_type.value] = UsageMetric(
            used=used,
            limit=limit,
            percentage=round(usage_percentage(used, limit), 2),
            unlimited=is_unlimited(limit),
        )

    reasons = over_limit_reasons(subscription)
    return UsageResponse(
        tenant_id=subscription.tenant_id,
        plan=subscription.plan,
        metrics=metrics,
        is_over_limit=bool(reasons),
        over_limit_reasons=reasons,
    )
