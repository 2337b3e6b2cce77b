"""
Subscription API Routes

Tenant-facing endpoints: lifecycle, plan changes, billing, usage and
feature access. Domain errors propagate to the application exception
handlers.
"""

import logging
from typing import Annotated, List
from uuid import UUID

from fastapi import APIRouter, Query, status

from kraftivibe.api.dependencies import SubscriptionServiceDep
from kraftivibe.domain.subscription import UsageType
from kraftivibe.domain.subscription_dto import (
    BillingPreview,
    CancelSubscriptionRequest,
    ChangePlanRequest,
    CreateSubscriptionRequest,
    FeatureAccessResponse,
    LimitCheckResponse,
    PaymentResponse,
    PlanComparisonResponse,
    ProcessPaymentRequest,
    ReactivateSubscriptionRequest,
    StartTrialRequest,
    SubscriptionFilter,
    SubscriptionListResponse,
    SubscriptionResponse,
    SuspendSubscriptionRequest,
    UpdateBillingIntervalRequest,
    UpdateSubscriptionRequest,
    UpdateUsageRequest,
    UsageResponse,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


# =============================================================================
# Lifecycle
# =============================================================================

@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    request: CreateSubscriptionRequest,
    service: SubscriptionServiceDep,
):
    """Create the subscription for a tenant."""
    return await service.create_subscription(request)


@router.get("", response_model=SubscriptionListResponse)
async def list_subscriptions(
    service: SubscriptionServiceDep,
    filters: Annotated[SubscriptionFilter, Query()],
):
    """Filtered, paginated subscription listing."""
    return await service.get_subscription_list(filters)


@router.get("/plans", response_model=PlanComparisonResponse)
async def get_plans(service: SubscriptionServiceDep):
    """Plan catalog with prices, features and limits."""
    return await service.get_plan_comparison()


@router.get("/{tenant_id}", response_model=SubscriptionResponse)
async def get_subscription(tenant_id: UUID, service: SubscriptionServiceDep):
    return await service.get_subscription(tenant_id)


@router.put("/{tenant_id}", response_model=SubscriptionResponse)
async def update_subscription(
    tenant_id: UUID,
    request: UpdateSubscriptionRequest,
    service: SubscriptionServiceDep,
):
    return await service.update_subscription(tenant_id, request)


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(tenant_id: UUID, service: SubscriptionServiceDep):
    await service.delete_subscription(tenant_id)


# =============================================================================
# Plans & Billing
# =============================================================================

@router.post("/{tenant_id}/change-plan", response_model=BillingPreview)
async def change_plan(
    tenant_id: UUID,
    request: ChangePlanRequest,
    service: SubscriptionServiceDep,
):
    """
    Change plan. Upgrades apply immediately; downgrades wait for the
    period end unless change_immediate is set.
    """
    return await service.change_plan(tenant_id, request)


@router.post("/{tenant_id}/preview-plan-change", response_model=BillingPreview)
async def preview_plan_change(
    tenant_id: UUID,
    request: ChangePlanRequest,
    service: SubscriptionServiceDep,
):
    return await service.preview_plan_change(tenant_id, request)


@router.put("/{tenant_id}/billing-interval", response_model=SubscriptionResponse)
async def update_billing_interval(
    tenant_id: UUID,
    request: UpdateBillingIntervalRequest,
    service: SubscriptionServiceDep,
):
    return await service.update_billing_interval(tenant_id, request)


@router.post("/{tenant_id}/payments", response_model=PaymentResponse)
async def process_payment(
    tenant_id: UUID,
    request: ProcessPaymentRequest,
    service: SubscriptionServiceDep,
):
    return await service.process_payment(tenant_id, request)


@router.post("/{tenant_id}/payments/failed", response_model=SubscriptionResponse)
async def record_failed_payment(tenant_id: UUID, service: SubscriptionServiceDep):
    """Count a declined charge; the subscription goes past due at the threshold."""
    return await service.record_failed_payment(tenant_id)


# =============================================================================
# Trials & Status
# =============================================================================

@router.post("/{tenant_id}/trial/start", response_model=SubscriptionResponse)
async def start_trial(
    tenant_id: UUID,
    request: StartTrialRequest,
    service: SubscriptionServiceDep,
):
    return await service.start_trial(tenant_id, request.trial_days)


@router.post("/{tenant_id}/trial/end", response_model=SubscriptionResponse)
async def end_trial(tenant_id: UUID, service: SubscriptionServiceDep):
    return await service.end_trial(tenant_id)


@router.post("/{tenant_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    tenant_id: UUID,
    request: CancelSubscriptionRequest,
    service: SubscriptionServiceDep,
):
    return await service.cancel_subscription(tenant_id, request)


@router.post("/{tenant_id}/reactivate", response_model=SubscriptionResponse)
async def reactivate_subscription(
    tenant_id: UUID,
    request: ReactivateSubscriptionRequest,
    service: SubscriptionServiceDep,
):
    return await service.reactivate_subscription(tenant_id, request)


@router.post("/{tenant_id}/suspend", response_model=SubscriptionResponse)
async def suspend_subscription(
    tenant_id: UUID,
    request: SuspendSubscriptionRequest,
    service: SubscriptionServiceDep,
):
    return await service.suspend_subscription(tenant_id, request.reason)


# =============================================================================
# Usage
# =============================================================================

@router.get("/{tenant_id}/usage", response_model=UsageResponse)
async def get_usage(tenant_id: UUID, service: SubscriptionServiceDep):
    return await service.get_usage(tenant_id)


@router.post("/{tenant_id}/usage", response_model=UsageResponse)
async def update_usage(
    tenant_id: UUID,
    request: UpdateUsageRequest,
    service: SubscriptionServiceDep,
):
    """Increment, decrement or set one usage counter. Limits are not enforced here."""
    return await service.update_usage(tenant_id, request)


@router.get("/{tenant_id}/limits/{limit_type}", response_model=LimitCheckResponse)
async def check_limit(
    tenant_id: UUID,
    limit_type: UsageType,
    service: SubscriptionServiceDep,
):
    allowed = await service.check_limits(tenant_id, limit_type)
    return LimitCheckResponse(limit_type=limit_type, allowed=allowed)


@router.post("/{tenant_id}/usage/enforce", status_code=status.HTTP_204_NO_CONTENT)
async def enforce_usage_limits(tenant_id: UUID, service: SubscriptionServiceDep):
    """204 when within limits, 409 naming the exceeded dimensions otherwise."""
    await service.enforce_usage_limits(tenant_id)


@router.post("/{tenant_id}/usage/reset-monthly", response_model=UsageResponse)
async def reset_monthly_usage(tenant_id: UUID, service: SubscriptionServiceDep):
    return await service.reset_monthly_usage(tenant_id)


# =============================================================================
# Features
# =============================================================================

@router.get("/{tenant_id}/features", response_model=FeatureAccessResponse)
async def get_feature_access(tenant_id: UUID, service: SubscriptionServiceDep):
    return await service.get_feature_access(tenant_id)


@router.get("/{tenant_id}/features/enabled", response_model=List[str])
async def get_enabled_features(tenant_id: UUID, service: SubscriptionServiceDep):
    return await service.get_enabled_features(tenant_id)


@router.get("/{tenant_id}/features/{feature}")
async def has_feature(tenant_id: UUID, feature: str, service: SubscriptionServiceDep):
    enabled = await service.has_feature(tenant_id, feature)
    return {"feature": feature, "enabled": enabled}
