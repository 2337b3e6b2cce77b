"""
Billing Preview Calculator

Advisory proration math for a proposed plan change. Pure functions:
nothing here mutates the subscription or reads the clock.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from kraftivibe.domain.plans import get_plan_pricing
from kraftivibe.domain.subscription import Subscription, SubscriptionPlan
from kraftivibe.domain.subscription_dto import BillingPreview


CENT = Decimal("0.01")


def remaining_period_ratio(subscription: Subscription, now: datetime) -> Decimal:
    """
    Fraction of the current period still ahead of ``now``.

    Zero when the period is empty or already over.
    """
    total = (subscription.current_period_end - subscription.current_period_start).total_seconds()
    remaining = (subscription.current_period_end - now).total_seconds()
    if total <= 0 or remaining <= 0:
        return Decimal("0")
    return Decimal(str(remaining)) / Decimal(str(total))


def calculate_billing_preview(
    subscription: Subscription,
    new_plan: SubscriptionPlan,
    immediate: bool,
    now: datetime,
) -> BillingPreview:
    """
    Preview the financial effect of moving ``subscription`` to ``new_plan``.

    Immediate changes prorate both prices over the unused part of the
    period; the result is negative when the new plan is cheaper. Deferred
    changes take effect at the period end with no proration.

    Args:
        subscription: Current subscription state
        new_plan: Target plan
        immediate: Whether the change applies now or at period end
        now: Current instant

    Returns:
        BillingPreview priced at the subscription's current interval
    """
    new_amount = get_plan_pricing(new_plan, subscription.billing_interval)

    proration = Decimal("0.00")
    effective_date = subscription.current_period_end
    if immediate:
        ratio = remaining_period_ratio(subscription, now)
        proration = (new_amount * ratio - subscription.amount * ratio).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        effective_date = now

    return BillingPreview(
        current_plan=subscription.plan,
        new_plan=new_plan,
        proration_amount=proration,
        new_amount=new_amount,
        next_billing_date=subscription.current_period_end,
        effective_date=effective_date,
        currency=subscription.currency,
        change_immediate=immediate,
    )
