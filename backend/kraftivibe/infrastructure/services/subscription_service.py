"""
Subscription Service

Business operations for tenant subscriptions: lifecycle, plan changes,
billing, usage tracking, feature access, analytics and the background
sweeps. Holds a repository, an optional payment gateway and a clock;
validation always runs before the first repository mutation.
"""

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from uuid import UUID

from kraftivibe.config.settings import Settings, get_settings
from kraftivibe.domain.billing import calculate_billing_preview
from kraftivibe.domain.plans import (
    all_plans,
    get_default_features,
    get_default_limits,
    get_plan_description,
    get_plan_name,
    get_plan_pricing,
    is_plan_upgrade,
    normalize_feature_name,
    plan_rank,
    required_plan_for_feature,
    yearly_discount_percent,
)
from kraftivibe.domain.subscription import (
    BillingInterval,
    Subscription,
    SubscriptionFeatures,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageType,
    as_utc,
    billing_period,
)
from kraftivibe.domain.subscription_dto import (
    AnalyticsFilter,
    AnalyticsGroupBy,
    AnalyticsResponse,
    BillingPreview,
    CancelSubscriptionRequest,
    ChangePlanRequest,
    ChurnAnalysisResponse,
    CreateSubscriptionRequest,
    FeatureAccessResponse,
    FeatureDetail,
    HealthResponse,
    PaymentResponse,
    PlanComparisonResponse,
    PlanDetails,
    ProcessPaymentRequest,
    ReactivateSubscriptionRequest,
    RevenueAnalysisResponse,
    ServiceMetrics,
    SubscriptionFilter,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionStatsResponse,
    SweepName,
    SweepResult,
    UpdateBillingIntervalRequest,
    UpdateSubscriptionRequest,
    UpdateUsageRequest,
    UsageOperation,
    UsageResponse,
)
from kraftivibe.domain.usage import (
    build_usage_response,
    can_add,
    over_limit_reasons,
    usage_percentage,
)
from kraftivibe.infrastructure.db.repositories.subscription_repository import (
    ISubscriptionRepository,
)
from kraftivibe.infrastructure.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceError,
    UsageLimitExceededError,
    ValidationError,
)
from kraftivibe.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

EXPIRING_TRIAL_HORIZON = timedelta(days=3)
PAYMENT_FAILURE_SUSPEND_REASON = "Payment failures"
EXPIRED_SUSPEND_REASON = "Expired subscription"

# Errors that already carry the right meaning for callers
_PASSTHROUGH_ERRORS = (ValidationError, NotFoundError, ConflictError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_subscription_response(subscription: Subscription, now: datetime) -> SubscriptionResponse:
    """Map the domain entity onto the API response."""
    return SubscriptionResponse(
        id=subscription.id,
        tenant_id=subscription.tenant_id,
        plan=subscription.plan,
        plan_name=get_plan_name(subscription.plan),
        status=subscription.status,
        billing_interval=subscription.billing_interval,
        amount=subscription.amount,
        currency=subscription.currency,
        discount_percent=subscription.discount_percent,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        next_billing_date=subscription.next_billing_date,
        trial_ends_at=subscription.trial_ends_at,
        canceled_at=subscription.canceled_at,
        cancel_at_period_end=subscription.cancel_at_period_end,
        pending_plan=subscription.pending_plan,
        is_active=subscription.is_active,
        is_trialing=subscription.is_trialing(now),
        days_until_renewal=subscription.days_until_renewal(now),
        limits=subscription.limits,
        features=subscription.features,
        usage_percentages={
            usage_type.value: round(usage_percentage(*subscription.usage_of(usage_type)), 2)
            for usage_type in UsageType
        },
        failed_payments=subscription.failed_payments,
        last_payment_date=subscription.last_payment_date,
        last_payment_amount=subscription.last_payment_amount,
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
    )


class ISubscriptionService(ABC):
    """Operations the API and the sweep runner depend on."""

    # Lifecycle
    @abstractmethod
    async def create_subscription(self, request: CreateSubscriptionRequest) -> SubscriptionResponse: ...

    @abstractmethod
    async def get_subscription(self, tenant_id: UUID) -> SubscriptionResponse: ...

    @abstractmethod
    async def update_subscription(
        self, tenant_id: UUID, request: UpdateSubscriptionRequest
    ) -> SubscriptionResponse: ...

    @abstractmethod
    async def delete_subscription(self, tenant_id: UUID) -> None: ...

    # Plans & billing
    @abstractmethod
    async def change_plan(self, tenant_id: UUID, request: ChangePlanRequest) -> BillingPreview: ...

    @abstractmethod
    async def preview_plan_change(self, tenant_id: UUID, request: ChangePlanRequest) -> BillingPreview: ...

    @abstractmethod
    async def get_plan_comparison(self) -> PlanComparisonResponse: ...

    @abstractmethod
    async def update_billing_interval(
        self, tenant_id: UUID, request: UpdateBillingIntervalRequest
    ) -> SubscriptionResponse: ...

    @abstractmethod
    async def process_payment(self, tenant_id: UUID, request: ProcessPaymentRequest) -> PaymentResponse: ...

    @abstractmethod
    async def record_failed_payment(self, tenant_id: UUID) -> SubscriptionResponse: ...

    # Trials & state
    @abstractmethod
    async def start_trial(self, tenant_id: UUID, trial_days: int) -> SubscriptionResponse: ...

    @abstractmethod
    async def end_trial(self, tenant_id: UUID) -> SubscriptionResponse: ...

    @abstractmethod
    async def cancel_subscription(
        self, tenant_id: UUID, request: CancelSubscriptionRequest
    ) -> SubscriptionResponse: ...

    @abstractmethod
    async def reactivate_subscription(
        self, tenant_id: UUID, request: ReactivateSubscriptionRequest
    ) -> SubscriptionResponse: ...

    @abstractmethod
    async def suspend_subscription(self, tenant_id: UUID, reason: str) -> SubscriptionResponse: ...

    # Usage & features
    @abstractmethod
    async def get_usage(self, tenant_id: UUID) -> UsageResponse: ...

    @abstractmethod
    async def update_usage(self, tenant_id: UUID, request: UpdateUsageRequest) -> UsageResponse: ...

    @abstractmethod
    async def check_limits(self, tenant_id: UUID, limit_type: UsageType) -> bool: ...

    @abstractmethod
    async def enforce_usage_limits(self, tenant_id: UUID) -> None: ...

    @abstractmethod
    async def reset_monthly_usage(self, tenant_id: UUID) -> UsageResponse: ...

    @abstractmethod
    async def get_feature_access(self, tenant_id: UUID) -> FeatureAccessResponse: ...

    @abstractmethod
    async def has_feature(self, tenant_id: UUID, feature: str) -> bool: ...

    @abstractmethod
    async def get_enabled_features(self, tenant_id: UUID) -> List[str]: ...

    # Analytics
    @abstractmethod
    async def get_subscription_stats(self) -> SubscriptionStatsResponse: ...

    @abstractmethod
    async def get_subscription_list(self, filters: SubscriptionFilter) -> SubscriptionListResponse: ...

    @abstractmethod
    async def get_analytics(self, filters: AnalyticsFilter) -> AnalyticsResponse: ...

    @abstractmethod
    async def get_churn_analysis(self, start_date: datetime, end_date: datetime) -> ChurnAnalysisResponse: ...

    @abstractmethod
    async def get_revenue_analysis(self, filters: AnalyticsFilter) -> RevenueAnalysisResponse: ...

    # Sweeps
    @abstractmethod
    async def process_expiring_trials(self) -> SweepResult: ...

    @abstractmethod
    async def process_failed_payments(self) -> SweepResult: ...

    @abstractmethod
    async def cleanup_expired_subscriptions(self) -> SweepResult: ...

    @abstractmethod
    async def process_subscription_renewals(self) -> SweepResult: ...

    async def run_sweep(self, sweep: SweepName) -> SweepResult:
        """Dispatch to the sweep operation named by ``sweep``."""
        if sweep == SweepName.EXPIRING_TRIALS:
            return await self.process_expiring_trials()
        if sweep == SweepName.FAILED_PAYMENTS:
            return await self.process_failed_payments()
        if sweep == SweepName.EXPIRED_SUBSCRIPTIONS:
            return await self.cleanup_expired_subscriptions()
        return await self.process_subscription_renewals()

    # Health
    @abstractmethod
    async def health_check(self) -> HealthResponse: ...

    @abstractmethod
    async def get_service_metrics(self) -> ServiceMetrics: ...


class SubscriptionService(ISubscriptionService):
    """
    Subscription service backed by an ISubscriptionRepository.

    Args:
        repository: Persistence collaborator
        payment_gateway: Stripe wrapper; None disables gateway calls
        settings: Billing rules; defaults to the cached application settings
        clock: Source of the current instant
    """

    def __init__(
        self,
        repository: ISubscriptionRepository,
        payment_gateway: Optional[StripeService] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._gateway = payment_gateway
        self._settings = settings or get_settings()
        self._clock = clock

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _call(self, code: str, message: str, operation: Awaitable[T]) -> T:
        """Await a repository call, wrapping unexpected failures in ServiceError."""
        try:
            return await operation
        except _PASSTHROUGH_ERRORS:
            raise
        except Exception as e:
            logger.error(f"{message}: {e}")
            raise ServiceError(code, message, e) from e

    async def _load(self, tenant_id: UUID) -> Subscription:
        self._validate_tenant(tenant_id)
        subscription = await self._call(
            "SUBSCRIPTION_GET_FAILED",
            "failed to get subscription",
            self._repo.get_by_tenant_id(tenant_id),
        )
        if subscription is None:
            raise NotFoundError(
                "subscription not found",
                resource="subscription",
                key=str(tenant_id),
            )
        return subscription

    @staticmethod
    def _validate_tenant(tenant_id: Optional[UUID]) -> None:
        if tenant_id is None or tenant_id.int == 0:
            raise ValidationError("tenant ID is required", field="tenant_id")

    def _validate_trial_days(self, trial_days: int, minimum: int) -> None:
        if trial_days < minimum or trial_days > self._settings.max_trial_days:
            raise ValidationError(
                f"trial days must be between {minimum} and {self._settings.max_trial_days}",
                field="trial_days",
            )

    def _response(self, subscription: Subscription) -> SubscriptionResponse:
        return to_subscription_response(subscription, self._clock())

    # =========================================================================
    # Subscription Lifecycle
    # =========================================================================

    async def create_subscription(self, request: CreateSubscriptionRequest) -> SubscriptionResponse:
        """
        Create the tenant's subscription.

        Paid plans with trial days start Trialing with the period ending at
        the trial end; everything else starts Active with a period sized by
        plan and interval.

        Raises:
            ValidationError: missing tenant or trial days out of range
            ConflictError: the tenant already has a subscription
        """
        self._validate_tenant(request.tenant_id)
        self._validate_trial_days(request.trial_days, minimum=0)

        existing = await self._call(
            "SUBSCRIPTION_GET_FAILED",
            "failed to check existing subscription",
            self._repo.get_by_tenant_id(request.tenant_id),
        )
        if existing is not None:
            raise ConflictError(
                "subscription already exists for tenant",
                {"tenant_id": str(request.tenant_id)},
            )

        now = self._clock()
        if request.trial_days > 0 and request.plan != SubscriptionPlan.FREE:
            status = SubscriptionStatus.TRIALING
            trial_ends_at = now + timedelta(days=request.trial_days)
            period_end, next_billing = trial_ends_at, trial_ends_at
        else:
            status = SubscriptionStatus.ACTIVE
            trial_ends_at = None
            period_end, next_billing = billing_period(request.plan, request.billing_interval, now)

        subscription = Subscription(
            tenant_id=request.tenant_id,
            plan=request.plan,
            status=status,
            billing_interval=request.billing_interval,
            amount=get_plan_pricing(request.plan, request.billing_interval),
            currency=self._settings.default_currency,
            current_period_start=now,
            current_period_end=period_end,
            next_billing_date=next_billing,
            trial_ends_at=trial_ends_at,
            features=get_default_features(request.plan),
            payment_method_id=request.payment_method_id,
            stripe_customer_id=request.stripe_customer_id,
            stripe_subscription_id=request.stripe_subscription_id,
            metadata=dict(request.metadata),
            created_at=now,
            updated_at=now,
            **get_default_limits(request.plan).model_dump(),
        )

        created = await self._call(
            "SUBSCRIPTION_CREATE_FAILED",
            "failed to create subscription",
            self._repo.create(subscription),
        )

        logger.info(
            f"Subscription created for tenant {request.tenant_id}: "
            f"plan={request.plan.value}, status={status.value}, "
            f"interval={request.billing_interval.value}"
        )
        return self._response(created)

    async def get_subscription(self, tenant_id: UUID) -> SubscriptionResponse:
        return self._response(await self._load(tenant_id))

    async def update_subscription(
        self,
        tenant_id: UUID,
        request: UpdateSubscriptionRequest,
    ) -> SubscriptionResponse:
        """Update payment references and merge metadata keys."""
        subscription = await self._load(tenant_id)

        if request.payment_method_id is not None:
            subscription.payment_method_id = request.payment_method_id
        if request.stripe_customer_id is not None:
            subscription.stripe_customer_id = request.stripe_customer_id
        if request.stripe_subscription_id is not None:
            subscription.stripe_subscription_id = request.stripe_subscription_id
        if request.metadata:
            subscription.metadata.update(request.metadata)
        subscription.updated_at = self._clock()

        updated = await self._call(
            "SUBSCRIPTION_UPDATE_FAILED",
            "failed to update subscription",
            self._repo.update(subscription),
        )
        logger.info(f"Subscription updated for tenant {tenant_id}")
        return self._response(updated)

    async def delete_subscription(self, tenant_id: UUID) -> None:
        """
        Hard-delete the tenant's subscription.

        A linked Stripe subscription is canceled first; a gateway failure is
        logged and does not block the delete.
        """
        subscription = await self._load(tenant_id)

        if subscription.stripe_subscription_id and self._gateway is not None:
            try:
                await self._gateway.cancel_subscription(subscription.stripe_subscription_id)
            except StripeServiceError as e:
                logger.warning(
                    f"Stripe cancel failed for tenant {tenant_id} "
                    f"({subscription.stripe_subscription_id}): {e}"
                )

        await self._call(
            "SUBSCRIPTION_DELETE_FAILED",
            "failed to delete subscription",
            self._repo.delete(tenant_id),
        )
        logger.info(f"Subscription deleted for tenant {tenant_id}")

    # =========================================================================
    # Plan Management
    # =========================================================================

    async def change_plan(self, tenant_id: UUID, request: ChangePlanRequest) -> BillingPreview:
        """
        Move the tenant to another plan.

        Upgrades always apply now. Downgrades wait for the period end unless
        ``change_immediate`` is set.

        Returns:
            Billing preview computed from the pre-change subscription

        Raises:
            ConflictError: the tenant is already on the requested plan
        """
        subscription = await self._load(tenant_id)
        if request.new_plan == subscription.plan:
            raise ConflictError(
                f"subscription is already on the {request.new_plan.value} plan",
                {"plan": request.new_plan.value},
            )

        now = self._clock()
        upgrade = is_plan_upgrade(subscription.plan, request.new_plan)
        immediate = upgrade or request.change_immediate
        preview = calculate_billing_preview(subscription, request.new_plan, immediate, now)

        if upgrade:
            operation = self._repo.upgrade_plan(tenant_id, request.new_plan, now)
        else:
            operation = self._repo.downgrade_plan(tenant_id, request.new_plan, request.change_immediate, now)
        await self._call("PLAN_CHANGE_FAILED", "failed to change plan", operation)

        logger.info(
            f"Plan change for tenant {tenant_id}: {subscription.plan.value} -> "
            f"{request.new_plan.value} (upgrade={upgrade}, immediate={immediate})"
        )
        return preview

    async def preview_plan_change(self, tenant_id: UUID, request: ChangePlanRequest) -> BillingPreview:
        subscription = await self._load(tenant_id)
        immediate = is_plan_upgrade(subscription.plan, request.new_plan) or request.change_immediate
        return calculate_billing_preview(subscription, request.new_plan, immediate, self._clock())

    async def get_plan_comparison(self) -> PlanComparisonResponse:
        plans = []
        for plan in all_plans():
            plans.append(
                PlanDetails(
                    plan=plan,
                    name=get_plan_name(plan),
                    description=get_plan_description(plan),
                    monthly_price=get_plan_pricing(plan, BillingInterval.MONTHLY),
                    yearly_price=get_plan_pricing(plan, BillingInterval.YEARLY),
                    lifetime_price=get_plan_pricing(plan, BillingInterval.LIFETIME),
                    yearly_discount=yearly_discount_percent(plan),
                    features=get_default_features(plan),
                    limits=get_default_limits(plan),
                    popular=plan == SubscriptionPlan.PRO,
                    recommended=plan == SubscriptionPlan.BUSINESS,
                )
            )
        return PlanComparisonResponse(plans=plans)

    # =========================================================================
    # Trials & Status Transitions
    # =========================================================================

    async def start_trial(self, tenant_id: UUID, trial_days: int) -> SubscriptionResponse:
        """
        Raises:
            ValidationError: trial days outside 1..max_trial_days
            ConflictError: the subscription is already trialing
        """
        self._validate_tenant(tenant_id)
        self._validate_trial_days(trial_days, minimum=1)

        subscription = await self._call(
            "TRIAL_START_FAILED",
            "failed to start trial",
            self._repo.start_trial(tenant_id, trial_days, self._clock()),
        )
        logger.info(f"Trial started for tenant {tenant_id}: {trial_days} days")
        return self._response(subscription)

    async def end_trial(self, tenant_id: UUID) -> SubscriptionResponse:
        self._validate_tenant(tenant_id)
        subscription = await self._call(
            "TRIAL_END_FAILED",
            "failed to end trial",
            self._repo.end_trial(tenant_id, self._clock()),
        )
        logger.info(f"Trial ended for tenant {tenant_id}")
        return self._response(subscription)

    async def cancel_subscription(
        self,
        tenant_id: UUID,
        request: CancelSubscriptionRequest,
    ) -> SubscriptionResponse:
        """
        Cancel now, or flag the subscription to cancel at period end.

        The deferred flag is recorded only; nothing enacts it when the
        period ends (the renewal sweep skips such subscriptions). Reason and
        feedback are stored afterwards as a best-effort write.
        """
        self._validate_tenant(tenant_id)
        now = self._clock()

        subscription = await self._call(
            "SUBSCRIPTION_CANCEL_FAILED",
            "failed to cancel subscription",
            self._repo.cancel(tenant_id, request.cancel_at_period_end, now),
        )

        if request.cancel_at_period_end:
            logger.warning(
                f"Tenant {tenant_id} flagged to cancel at period end "
                f"({subscription.current_period_end.isoformat()}); deferred cancellation is not enacted automatically"
            )
        else:
            logger.info(f"Subscription canceled for tenant {tenant_id}")

        if request.reason or request.feedback:
            subscription = await self._record_cancellation_details(subscription, request, now)

        return self._response(subscription)

    async def _record_cancellation_details(
        self,
        subscription: Subscription,
        request: CancelSubscriptionRequest,
        now: datetime,
    ) -> Subscription:
        """Best-effort: the cancellation already succeeded, so a failure here is only logged."""
        details: Dict[str, Any] = {"canceled_requested_at": now.isoformat()}
        if request.reason:
            details["cancel_reason"] = request.reason
        if request.feedback:
            details["cancel_feedback"] = request.feedback
        updated = subscription.model_copy(deep=True)
        updated.metadata.update(details)

        try:
            return await self._repo.update(updated)
        except Exception as e:
            logger.warning(f"Could not store cancellation details for tenant {subscription.tenant_id}: {e}")
            return subscription

    async def reactivate_subscription(
        self,
        tenant_id: UUID,
        request: ReactivateSubscriptionRequest,
    ) -> SubscriptionResponse:
        self._validate_tenant(tenant_id)
        subscription = await self._call(
            "SUBSCRIPTION_REACTIVATE_FAILED",
            "failed to reactivate subscription",
            self._repo.reactivate(tenant_id, self._clock()),
        )

        if request.payment_method_id:
            subscription.payment_method_id = request.payment_method_id
            subscription = await self._call(
                "SUBSCRIPTION_UPDATE_FAILED",
                "failed to update payment method",
                self._repo.update(subscription),
            )

        logger.info(f"Subscription reactivated for tenant {tenant_id}")
        return self._response(subscription)

    async def suspend_subscription(self, tenant_id: UUID, reason: str) -> SubscriptionResponse:
        self._validate_tenant(tenant_id)
        if not reason or not reason.strip():
            raise ValidationError("suspend reason is required", field="reason")

        subscription = await self._call(
            "SUBSCRIPTION_SUSPEND_FAILED",
            "failed to suspend subscription",
            self._repo.suspend(tenant_id, reason.strip(), self._clock()),
        )
        logger.info(f"Subscription suspended for tenant {tenant_id}: {reason}")
        return self._response(subscription)

    # =========================================================================
    # Billing
    # =========================================================================

    async def update_billing_interval(
        self,
        tenant_id: UUID,
        request: UpdateBillingIntervalRequest,
    ) -> SubscriptionResponse:
        """Switch interval and re-price; an unchanged interval writes nothing."""
        subscription = await self._load(tenant_id)
        if request.billing_interval == subscription.billing_interval:
            return self._response(subscription)

        updated = await self._call(
            "BILLING_INTERVAL_UPDATE_FAILED",
            "failed to update billing interval",
            self._repo.change_billing_interval(
                tenant_id, request.billing_interval, request.change_immediate, self._clock()
            ),
        )
        logger.info(
            f"Billing interval for tenant {tenant_id}: "
            f"{subscription.billing_interval.value} -> {request.billing_interval.value}"
        )
        return self._response(updated)

    async def process_payment(self, tenant_id: UUID, request: ProcessPaymentRequest) -> PaymentResponse:
        """
        Record a successful payment. Charging is delegated to the gateway
        outside this service; here the payment is accepted as paid.
        """
        self._validate_tenant(tenant_id)
        if request.amount <= 0:
            raise ValidationError("payment amount must be positive", field="amount")
        if len(request.currency) != 3 or not request.currency.isalpha():
            raise ValidationError("currency must be a 3-letter code", field="currency")
        if not request.payment_method_id.strip():
            raise ValidationError("payment method is required", field="payment_method_id")

        await self._load(tenant_id)
        now = self._clock()
        await self._call(
            "PAYMENT_PROCESSING_FAILED",
            "failed to record payment",
            self._repo.record_payment(tenant_id, request.amount, now),
        )

        logger.info(f"Payment of {request.amount} {request.currency.upper()} recorded for tenant {tenant_id}")
        return PaymentResponse(
            tenant_id=tenant_id,
            amount=request.amount,
            currency=request.currency.upper(),
            status="paid",
            payment_method_id=request.payment_method_id,
            processed_at=now,
            description=request.description,
        )

    async def record_failed_payment(self, tenant_id: UUID) -> SubscriptionResponse:
        self._validate_tenant(tenant_id)
        threshold = self._settings.failed_payment_threshold
        subscription = await self._call(
            "PAYMENT_FAILURE_RECORD_FAILED",
            "failed to record payment failure",
            self._repo.record_failed_payment(tenant_id, threshold, self._clock()),
        )
        if subscription.status == SubscriptionStatus.PAST_DUE:
            logger.warning(
                f"Tenant {tenant_id} is past due after {subscription.failed_payments} failed payments"
            )
        return self._response(subscription)

    # =========================================================================
    # Usage Tracking
    # =========================================================================

    async def get_usage(self, tenant_id: UUID) -> UsageResponse:
        return build_usage_response(await self._load(tenant_id))

    async def update_usage(self, tenant_id: UUID, request: UpdateUsageRequest) -> UsageResponse:
        """
        Apply an increment, decrement or absolute set to one counter.

        Limits are not enforced here; see enforce_usage_limits. A set to the
        current value performs no write.
        """
        self._validate_tenant(tenant_id)
        if request.amount < 0:
            raise ValidationError("usage amount cannot be negative", field="amount")

        now = self._clock()
        operation = request.operation
        amount = request.amount

        if operation == UsageOperation.SET:
            subscription = await self._load(tenant_id)
            current, _ = subscription.usage_of(request.usage_type)
            delta = request.amount - current
            if delta == 0:
                return build_usage_response(subscription)
            operation = UsageOperation.INCREMENT if delta > 0 else UsageOperation.DECREMENT
            amount = abs(delta)

        if operation == UsageOperation.INCREMENT:
            call = self._repo.increment_usage(tenant_id, request.usage_type, amount, now)
        else:
            call = self._repo.decrement_usage(tenant_id, request.usage_type, amount, now)

        updated = await self._call("USAGE_UPDATE_FAILED", "failed to update usage", call)
        logger.info(
            f"Usage {request.operation.value} for tenant {tenant_id}: "
            f"{request.usage_type.value} by {request.amount}"
        )
        return build_usage_response(updated)

    async def check_limits(self, tenant_id: UUID, limit_type: UsageType) -> bool:
        """True while another unit of ``limit_type`` fits under the plan limit."""
        subscription = await self._load(tenant_id)
        return can_add(*subscription.usage_of(limit_type))

    async def enforce_usage_limits(self, tenant_id: UUID) -> None:
        """
        Raises:
            UsageLimitExceededError: naming every dimension above 100%
        """
        subscription = await self._load(tenant_id)
        reasons = over_limit_reasons(subscription)
        if reasons:
            logger.warning(f"Tenant {tenant_id} exceeds usage limits: {', '.join(reasons)}")
            raise UsageLimitExceededError(
                f"usage limits exceeded: {', '.join(reasons)}",
                dimensions=reasons,
            )

    async def reset_monthly_usage(self, tenant_id: UUID) -> UsageResponse:
        self._validate_tenant(tenant_id)
        subscription = await self._call(
            "USAGE_RESET_FAILED",
            "failed to reset monthly usage",
            self._repo.reset_monthly_usage(tenant_id, self._clock()),
        )
        logger.info(f"Monthly usage reset for tenant {tenant_id}")
        return build_usage_response(subscription)

    # =========================================================================
    # Feature Access
    # =========================================================================

    async def get_feature_access(self, tenant_id: UUID) -> FeatureAccessResponse:
        subscription = await self._load(tenant_id)
        current_rank = plan_rank(subscription.plan) or 0

        details = []
        for name in SubscriptionFeatures.model_fields:
            enabled = subscription.features.has(name)
            required = required_plan_for_feature(name)
            details.append(
                FeatureDetail(
                    name=name,
                    enabled=enabled,
                    required_plan=required,
                    upgrade_required=(
                        not enabled
                        and required is not None
                        and plan_rank(required) > current_rank
                    ),
                )
            )

        return FeatureAccessResponse(
            tenant_id=tenant_id,
            plan=subscription.plan,
            features=subscription.features,
            enabled_features=subscription.features.enabled(),
            details=details,
        )

    async def has_feature(self, tenant_id: UUID, feature: str) -> bool:
        if not feature or not feature.strip():
            raise ValidationError("feature name is required", field="feature")
        subscription = await self._load(tenant_id)
        return subscription.features.has(normalize_feature_name(feature))

    async def get_enabled_features(self, tenant_id: UUID) -> List[str]:
        subscription = await self._load(tenant_id)
        return subscription.features.enabled()

    # =========================================================================
    # Analytics
    # =========================================================================

    async def get_subscription_stats(self) -> SubscriptionStatsResponse:
        """Repository aggregates plus ARPU, growth rate and lifetime value."""
        stats = await self._call(
            "STATS_GET_FAILED",
            "failed to get subscription stats",
            self._repo.get_stats(self._clock()),
        )

        paying = stats.active_subscriptions + stats.trialing_subscriptions
        arpu = (stats.mrr / paying).quantize(Decimal("0.01")) if paying else Decimal("0.00")

        if stats.new_previous_30_days:
            growth = (stats.new_last_30_days - stats.new_previous_30_days) / stats.new_previous_30_days * 100
        else:
            growth = 100.0 if stats.new_last_30_days else 0.0

        clv = Decimal("0.00")
        if stats.churn_rate > 0:
            clv = (arpu / Decimal(str(stats.churn_rate / 100))).quantize(Decimal("0.01"))

        return SubscriptionStatsResponse(
            **stats.model_dump(),
            average_revenue_per_user=arpu,
            growth_rate=round(growth, 2),
            customer_lifetime_value=clv,
        )

    async def get_subscription_list(self, filters: SubscriptionFilter) -> SubscriptionListResponse:
        items, total = await self._call(
            "SUBSCRIPTION_LIST_FAILED",
            "failed to list subscriptions",
            self._repo.find_by_filters(filters),
        )
        return SubscriptionListResponse(
            items=[self._response(item) for item in items],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=math.ceil(total / filters.page_size) if total else 0,
        )

    async def get_analytics(self, filters: AnalyticsFilter) -> AnalyticsResponse:
        """New signups, cancellations and revenue in a window, bucketed by period."""
        self._validate_range(filters.start_date, filters.end_date)
        plans = filters.plans or None

        created = await self._call(
            "ANALYTICS_GET_FAILED",
            "failed to get analytics",
            self._repo.created_between(filters.start_date, filters.end_date, plans),
        )
        canceled = await self._call(
            "ANALYTICS_GET_FAILED",
            "failed to get analytics",
            self._repo.canceled_between(filters.start_date, filters.end_date, plans),
        )
        revenue = await self._call(
            "ANALYTICS_GET_FAILED",
            "failed to get analytics",
            self._repo.revenue_between(filters.start_date, filters.end_date, plans),
        )

        by_period: Dict[str, int] = {}
        for created_at in sorted(created):
            bucket = period_bucket(created_at, filters.group_by)
            by_period[bucket] = by_period.get(bucket, 0) + 1

        return AnalyticsResponse(
            start_date=filters.start_date,
            end_date=filters.end_date,
            group_by=filters.group_by,
            new_subscriptions=len(created),
            cancellations=sum(canceled.values()),
            revenue=sum(revenue.values(), Decimal("0.00")),
            by_period=by_period,
        )

    async def get_churn_analysis(self, start_date: datetime, end_date: datetime) -> ChurnAnalysisResponse:
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        self._validate_range(start_date, end_date)

        churn_by_plan = await self._call(
            "CHURN_ANALYSIS_FAILED",
            "failed to get churn analysis",
            self._repo.canceled_between(start_date, end_date),
        )
        base = await self._call(
            "CHURN_ANALYSIS_FAILED",
            "failed to get churn analysis",
            self._repo.count_active_at(start_date),
        )

        churned = sum(churn_by_plan.values())
        churn_rate = round(churned / base * 100, 2) if base else 0.0
        return ChurnAnalysisResponse(
            start_date=start_date,
            end_date=end_date,
            churn_rate=churn_rate,
            retention_rate=round(100.0 - churn_rate, 2),
            churned_subscriptions=churned,
            churn_by_plan=churn_by_plan,
        )

    async def get_revenue_analysis(self, filters: AnalyticsFilter) -> RevenueAnalysisResponse:
        self._validate_range(filters.start_date, filters.end_date)

        revenue_by_plan = await self._call(
            "REVENUE_ANALYSIS_FAILED",
            "failed to get revenue analysis",
            self._repo.revenue_between(filters.start_date, filters.end_date, filters.plans or None),
        )
        stats = await self._call(
            "REVENUE_ANALYSIS_FAILED",
            "failed to get revenue analysis",
            self._repo.get_stats(self._clock()),
        )

        return RevenueAnalysisResponse(
            start_date=filters.start_date,
            end_date=filters.end_date,
            total_revenue=sum(revenue_by_plan.values(), Decimal("0.00")),
            revenue_by_plan=revenue_by_plan,
            mrr=stats.mrr,
            arr=stats.arr,
            currency=self._settings.default_currency,
        )

    @staticmethod
    def _validate_range(start_date: datetime, end_date: datetime) -> None:
        if start_date > end_date:
            raise ValidationError("start date must not be later than end date", field="start_date")

    # =========================================================================
    # Background Sweeps
    # =========================================================================

    async def process_expiring_trials(self) -> SweepResult:
        """Notify tenants whose trial ends within three days. Read-only."""
        now = self._clock()
        trials = await self._call(
            "TRIAL_SWEEP_FAILED",
            "failed to load expiring trials",
            self._repo.get_expiring_trials(now + EXPIRING_TRIAL_HORIZON, now, self._settings.sweep_batch_size),
        )

        result = SweepResult(sweep="expiring_trials", found=len(trials))
        for subscription in trials:
            remaining = subscription.trial_ends_at - now
            logger.info(
                f"Trial for tenant {subscription.tenant_id} ends in "
                f"{remaining.days}d {remaining.seconds // 3600}h; expiry notice queued"
            )
            result.processed += 1

        logger.info(f"Expiring trial sweep: {result.processed} notified")
        return result

    async def process_failed_payments(self) -> SweepResult:
        """Suspend at the failure threshold, remind below it. Log and continue per item."""
        now = self._clock()
        threshold = self._settings.failed_payment_threshold
        subscriptions = await self._call(
            "PAYMENT_SWEEP_FAILED",
            "failed to load subscriptions with failed payments",
            self._repo.get_with_failed_payments(1, self._settings.sweep_batch_size),
        )

        result = SweepResult(sweep="failed_payments", found=len(subscriptions))
        for subscription in subscriptions:
            try:
                if subscription.failed_payments >= threshold:
                    await self._repo.suspend(subscription.tenant_id, PAYMENT_FAILURE_SUSPEND_REASON, now)
                    logger.info(
                        f"Suspended tenant {subscription.tenant_id} after "
                        f"{subscription.failed_payments} failed payments"
                    )
                else:
                    logger.info(
                        f"Payment reminder queued for tenant {subscription.tenant_id} "
                        f"({subscription.failed_payments}/{threshold} failures)"
                    )
                result.processed += 1
            except Exception as e:
                result.failed += 1
                logger.error(f"Failed-payment sweep error for tenant {subscription.tenant_id}: {e}")

        logger.info(f"Failed payment sweep: {result.processed} processed, {result.failed} failed")
        return result

    async def cleanup_expired_subscriptions(self) -> SweepResult:
        """Expired trials drop to Free; other expired subscriptions are suspended."""
        now = self._clock()
        expired = await self._call(
            "EXPIRY_SWEEP_FAILED",
            "failed to load expired subscriptions",
            self._repo.get_expired(now, self._settings.sweep_batch_size),
        )

        result = SweepResult(sweep="expired_subscriptions", found=len(expired))
        for subscription in expired:
            try:
                if subscription.status == SubscriptionStatus.TRIALING:
                    await self._repo.convert_to_free(subscription.tenant_id, now)
                    logger.info(f"Expired trial for tenant {subscription.tenant_id} moved to free plan")
                else:
                    await self._repo.suspend(subscription.tenant_id, EXPIRED_SUSPEND_REASON, now)
                    logger.info(f"Expired subscription for tenant {subscription.tenant_id} suspended")
                result.processed += 1
            except Exception as e:
                result.failed += 1
                logger.error(f"Expiry sweep error for tenant {subscription.tenant_id}: {e}")

        logger.info(f"Expired subscription sweep: {result.processed} processed, {result.failed} failed")
        return result

    async def process_subscription_renewals(self) -> SweepResult:
        """
        Roll due recurring subscriptions into their next period.

        Subscriptions flagged cancel_at_period_end are left untouched and
        reported as skipped.
        """
        now = self._clock()
        due = await self._call(
            "RENEWAL_SWEEP_FAILED",
            "failed to load subscriptions due for renewal",
            self._repo.get_due_for_renewal(now, self._settings.sweep_batch_size),
        )

        result = SweepResult(sweep="renewals", found=len(due))
        for subscription in due:
            if subscription.cancel_at_period_end:
                result.skipped += 1
                logger.warning(
                    f"Tenant {subscription.tenant_id} reached period end with a pending "
                    f"cancellation; left for manual handling"
                )
                continue
            try:
                await self._repo.renew(subscription.tenant_id, now)
                result.processed += 1
            except Exception as e:
                result.failed += 1
                logger.error(f"Renewal error for tenant {subscription.tenant_id}: {e}")

        logger.info(
            f"Renewal sweep: {result.processed} renewed, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    # =========================================================================
    # Health & Metrics
    # =========================================================================

    async def health_check(self) -> HealthResponse:
        await self._call("HEALTH_CHECK_FAILED", "subscription store unreachable", self._repo.ping())
        return HealthResponse(status="healthy", service="subscriptions", checked_at=self._clock())

    async def get_service_metrics(self) -> ServiceMetrics:
        stats = await self._call(
            "METRICS_GET_FAILED",
            "failed to collect service metrics",
            self._repo.get_stats(self._clock()),
        )
        return ServiceMetrics(
            total_subscriptions=stats.total_subscriptions,
            active_subscriptions=stats.active_subscriptions,
            trialing_subscriptions=stats.trialing_subscriptions,
            mrr=stats.mrr,
            churn_rate=stats.churn_rate,
            collected_at=self._clock(),
        )


def period_bucket(moment: datetime, group_by: AnalyticsGroupBy) -> str:
    """Label for the analytics bucket containing ``moment``."""
    if group_by == AnalyticsGroupBy.DAY:
        return moment.strftime("%Y-%m-%d")
    if group_by == AnalyticsGroupBy.WEEK:
        year, week, _ = moment.isocalendar()
        return f"{year}-W{week:02d}"
    if group_by == AnalyticsGroupBy.MONTH:
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y")
