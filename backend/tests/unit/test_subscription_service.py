"""
Unit tests for SubscriptionService.

Runs every business operation against a mocked repository with a frozen
clock. Validates request checks, the calls made on the repository and
the mapping of failures onto the error hierarchy.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

from kraftivibe.domain.subscription import (
    BillingInterval,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageType,
)
from kraftivibe.domain.subscription_dto import (
    AnalyticsFilter,
    AnalyticsGroupBy,
    CancelSubscriptionRequest,
    ChangePlanRequest,
    CreateSubscriptionRequest,
    ProcessPaymentRequest,
    ReactivateSubscriptionRequest,
    SubscriptionFilter,
    UpdateBillingIntervalRequest,
    UpdateSubscriptionRequest,
    UpdateUsageRequest,
    UsageOperation,
)
from kraftivibe.infrastructure.exceptions import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    ServiceError,
    UsageLimitExceededError,
    ValidationError,
)
from kraftivibe.infrastructure.payments.stripe_service import StripeServiceError
from kraftivibe.infrastructure.services.subscription_service import (
    SubscriptionService,
    period_bucket,
)

from conftest import NOW


def _echo(subscription):
    """Repository stub that persists the entity unchanged."""
    return subscription


# ============================================================================
# Lifecycle
# ============================================================================

class TestCreateSubscription:

    @pytest.mark.asyncio
    async def test_paid_plan_with_trial_starts_trialing(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None
        mock_repo.create.side_effect = _echo
        tenant_id = uuid4()

        result = await service.create_subscription(CreateSubscriptionRequest(
            tenant_id=tenant_id,
            plan=SubscriptionPlan.PRO,
            trial_days=14,
        ))

        assert result.tenant_id == tenant_id
        assert result.status == SubscriptionStatus.TRIALING
        assert result.trial_ends_at == NOW + timedelta(days=14)
        assert result.current_period_end == result.trial_ends_at
        assert result.amount == Decimal("79.99")
        assert result.limits.max_customers == 150
        assert result.features.advanced_analytics is True
        assert result.is_trialing is True
        assert result.days_until_renewal == 14
        assert result.plan_name == "Professional"

    @pytest.mark.asyncio
    async def test_free_plan_ignores_trial(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None
        mock_repo.create.side_effect = _echo

        result = await service.create_subscription(CreateSubscriptionRequest(
            tenant_id=uuid4(),
            plan=SubscriptionPlan.FREE,
            trial_days=14,
        ))

        assert result.status == SubscriptionStatus.ACTIVE
        assert result.trial_ends_at is None
        assert result.next_billing_date is None
        assert result.current_period_end == datetime(2027, 3, 15, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_yearly_paid_plan_without_trial(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None
        mock_repo.create.side_effect = _echo

        result = await service.create_subscription(CreateSubscriptionRequest(
            tenant_id=uuid4(),
            plan=SubscriptionPlan.BUSINESS,
            billing_interval=BillingInterval.YEARLY,
        ))

        assert result.status == SubscriptionStatus.ACTIVE
        assert result.amount == Decimal("1999.99")
        assert result.next_billing_date == datetime(2027, 3, 15, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_starter_monthly_without_trial_is_active_for_one_month(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None
        mock_repo.create.side_effect = _echo

        result = await service.create_subscription(CreateSubscriptionRequest(
            tenant_id=uuid4(),
            plan=SubscriptionPlan.STARTER,
            billing_interval=BillingInterval.MONTHLY,
            trial_days=0,
        ))

        assert result.status == SubscriptionStatus.ACTIVE
        assert result.current_period_start == NOW
        assert result.current_period_end == datetime(2026, 4, 15, 12, 0, tzinfo=timezone.utc)
        assert result.next_billing_date == result.current_period_end
        assert result.amount == Decimal("29.99")
        assert result.trial_ends_at is None

    @pytest.mark.asyncio
    async def test_lifetime_plan_has_ten_year_window_and_no_billing_date(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None
        mock_repo.create.side_effect = _echo

        result = await service.create_subscription(CreateSubscriptionRequest(
            tenant_id=uuid4(),
            plan=SubscriptionPlan.PRO,
            billing_interval=BillingInterval.LIFETIME,
        ))

        assert result.status == SubscriptionStatus.ACTIVE
        assert result.amount == Decimal("2499.99")
        assert result.current_period_end == datetime(2036, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert result.next_billing_date is None

    @pytest.mark.asyncio
    async def test_existing_subscription_conflicts(self, service, mock_repo, sample_subscription):
        mock_repo.get_by_tenant_id.return_value = sample_subscription

        with pytest.raises(ConflictError):
            await service.create_subscription(CreateSubscriptionRequest(
                tenant_id=sample_subscription.tenant_id,
                plan=SubscriptionPlan.PRO,
            ))

        mock_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_trial_longer_than_configured_maximum(self, mock_repo, test_settings):
        settings = test_settings.model_copy(update={"max_trial_days": 30})
        service = SubscriptionService(mock_repo, settings=settings, clock=lambda: NOW)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_subscription(CreateSubscriptionRequest(
                tenant_id=uuid4(),
                plan=SubscriptionPlan.PRO,
                trial_days=45,
            ))

        assert exc_info.value.details["field"] == "trial_days"
        mock_repo.get_by_tenant_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nil_tenant_is_rejected(self, service, mock_repo):
        with pytest.raises(ValidationError):
            await service.create_subscription(CreateSubscriptionRequest(
                tenant_id=UUID(int=0),
                plan=SubscriptionPlan.PRO,
            ))

    @pytest.mark.asyncio
    async def test_repository_failure_is_wrapped(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None
        mock_repo.create.side_effect = DatabaseError("boom", operation="create", table="subscriptions")

        with pytest.raises(ServiceError) as exc_info:
            await service.create_subscription(CreateSubscriptionRequest(
                tenant_id=uuid4(),
                plan=SubscriptionPlan.STARTER,
            ))

        assert exc_info.value.code == "SUBSCRIPTION_CREATE_FAILED"
        assert isinstance(exc_info.value.original_error, DatabaseError)


class TestGetUpdateDelete:

    @pytest.mark.asyncio
    async def test_get_missing_subscription(self, service, mock_repo):
        mock_repo.get_by_tenant_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.get_subscription(uuid4())

    @pytest.mark.asyncio
    async def test_get_reports_usage_percentages(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(current_projects=5)

        result = await service.get_subscription(uuid4())

        assert result.usage_percentages["projects"] == 50.0
        assert result.is_active is True

    @pytest.mark.asyncio
    async def test_update_merges_metadata(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(metadata={"source": "web"})
        mock_repo.update.side_effect = _echo

        await service.update_subscription(uuid4(), UpdateSubscriptionRequest(
            payment_method_id="pm_new",
            metadata={"campaign": "spring"},
        ))

        saved = mock_repo.update.await_args.args[0]
        assert saved.payment_method_id == "pm_new"
        assert saved.metadata == {"source": "web", "campaign": "spring"}
        assert saved.updated_at == NOW

    @pytest.mark.asyncio
    async def test_delete_cancels_stripe_first(self, mock_repo, test_settings, make_subscription):
        gateway = MagicMock()
        gateway.cancel_subscription = AsyncMock()
        service = SubscriptionService(mock_repo, gateway, settings=test_settings, clock=lambda: NOW)
        sub = make_subscription(stripe_subscription_id="sub_123")
        mock_repo.get_by_tenant_id.return_value = sub

        await service.delete_subscription(sub.tenant_id)

        gateway.cancel_subscription.assert_awaited_once_with("sub_123")
        mock_repo.delete.assert_awaited_once_with(sub.tenant_id)

    @pytest.mark.asyncio
    async def test_delete_survives_stripe_failure(self, mock_repo, test_settings, make_subscription):
        gateway = MagicMock()
        gateway.cancel_subscription = AsyncMock(side_effect=StripeServiceError("down"))
        service = SubscriptionService(mock_repo, gateway, settings=test_settings, clock=lambda: NOW)
        sub = make_subscription(stripe_subscription_id="sub_123")
        mock_repo.get_by_tenant_id.return_value = sub

        await service.delete_subscription(sub.tenant_id)

        mock_repo.delete.assert_awaited_once_with(sub.tenant_id)


# ============================================================================
# Plan Changes
# ============================================================================

class TestChangePlan:

    @pytest.mark.asyncio
    async def test_upgrade_applies_immediately(self, service, mock_repo, make_subscription):
        sub = make_subscription(plan=SubscriptionPlan.STARTER)
        mock_repo.get_by_tenant_id.return_value = sub

        preview = await service.change_plan(sub.tenant_id, ChangePlanRequest(new_plan=SubscriptionPlan.PRO))

        mock_repo.upgrade_plan.assert_awaited_once_with(sub.tenant_id, SubscriptionPlan.PRO, NOW)
        mock_repo.downgrade_plan.assert_not_awaited()
        assert preview.change_immediate is True
        assert preview.proration_amount == Decimal("33.33")
        assert preview.effective_date == NOW

    @pytest.mark.asyncio
    async def test_downgrade_waits_for_period_end(self, service, mock_repo, make_subscription):
        sub = make_subscription(plan=SubscriptionPlan.PRO)
        mock_repo.get_by_tenant_id.return_value = sub

        preview = await service.change_plan(sub.tenant_id, ChangePlanRequest(new_plan=SubscriptionPlan.STARTER))

        mock_repo.downgrade_plan.assert_awaited_once_with(
            sub.tenant_id, SubscriptionPlan.STARTER, False, NOW
        )
        assert preview.change_immediate is False
        assert preview.proration_amount == Decimal("0.00")
        assert preview.effective_date == sub.current_period_end

    @pytest.mark.asyncio
    async def test_immediate_downgrade(self, service, mock_repo, make_subscription):
        sub = make_subscription(plan=SubscriptionPlan.PRO)
        mock_repo.get_by_tenant_id.return_value = sub

        preview = await service.change_plan(
            sub.tenant_id,
            ChangePlanRequest(new_plan=SubscriptionPlan.STARTER, change_immediate=True),
        )

        mock_repo.downgrade_plan.assert_awaited_once_with(
            sub.tenant_id, SubscriptionPlan.STARTER, True, NOW
        )
        assert preview.proration_amount == Decimal("-33.33")

    @pytest.mark.asyncio
    async def test_same_plan_conflicts(self, service, mock_repo, make_subscription):
        sub = make_subscription(plan=SubscriptionPlan.PRO)
        mock_repo.get_by_tenant_id.return_value = sub

        with pytest.raises(ConflictError):
            await service.change_plan(sub.tenant_id, ChangePlanRequest(new_plan=SubscriptionPlan.PRO))

        mock_repo.upgrade_plan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preview_makes_no_changes(self, service, mock_repo, make_subscription):
        sub = make_subscription(plan=SubscriptionPlan.STARTER)
        mock_repo.get_by_tenant_id.return_value = sub

        preview = await service.preview_plan_change(
            sub.tenant_id, ChangePlanRequest(new_plan=SubscriptionPlan.BUSINESS)
        )

        assert preview.new_amount == Decimal("199.99")
        mock_repo.upgrade_plan.assert_not_awaited()
        mock_repo.downgrade_plan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plan_comparison(self, service):
        comparison = await service.get_plan_comparison()

        assert [p.plan for p in comparison.plans][0] == SubscriptionPlan.FREE
        pro = next(p for p in comparison.plans if p.plan == SubscriptionPlan.PRO)
        assert pro.popular is True
        assert pro.monthly_price == Decimal("79.99")
        assert pro.limits.max_projects == 50


# ============================================================================
# Trials & Status
# ============================================================================

class TestTrialsAndStatus:

    @pytest.mark.asyncio
    async def test_start_trial(self, service, mock_repo, make_subscription):
        tenant_id = uuid4()
        mock_repo.start_trial.return_value = make_subscription(
            tenant_id=tenant_id,
            status=SubscriptionStatus.TRIALING,
            trial_ends_at=NOW + timedelta(days=7),
        )

        result = await service.start_trial(tenant_id, 7)

        mock_repo.start_trial.assert_awaited_once_with(tenant_id, 7, NOW)
        assert result.status == SubscriptionStatus.TRIALING

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, 91])
    async def test_start_trial_days_out_of_range(self, service, mock_repo, days):
        with pytest.raises(ValidationError):
            await service.start_trial(uuid4(), days)
        mock_repo.start_trial.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_trial_conflict_passes_through(self, service, mock_repo):
        mock_repo.start_trial.side_effect = ConflictError("Subscription is already in a trial")

        with pytest.raises(ConflictError):
            await service.start_trial(uuid4(), 7)

    @pytest.mark.asyncio
    async def test_cancel_stores_reason(self, service, mock_repo, make_subscription):
        sub = make_subscription(cancel_at_period_end=True)
        mock_repo.cancel.return_value = sub
        mock_repo.update.side_effect = _echo

        result = await service.cancel_subscription(
            sub.tenant_id,
            CancelSubscriptionRequest(reason="Too expensive", feedback="Great app otherwise"),
        )

        mock_repo.cancel.assert_awaited_once_with(sub.tenant_id, True, NOW)
        saved = mock_repo.update.await_args.args[0]
        assert saved.metadata["cancel_reason"] == "Too expensive"
        assert saved.metadata["cancel_feedback"] == "Great app otherwise"
        assert result.cancel_at_period_end is True

    @pytest.mark.asyncio
    async def test_cancel_detail_write_is_best_effort(self, service, mock_repo, make_subscription):
        sub = make_subscription(status=SubscriptionStatus.CANCELED, canceled_at=NOW)
        mock_repo.cancel.return_value = sub
        mock_repo.update.side_effect = DatabaseError("boom")

        result = await service.cancel_subscription(
            sub.tenant_id,
            CancelSubscriptionRequest(cancel_at_period_end=False, reason="Closing shop"),
        )

        assert result.status == SubscriptionStatus.CANCELED
        assert "cancel_reason" not in sub.metadata

    @pytest.mark.asyncio
    async def test_cancel_without_reason_skips_update(self, service, mock_repo, make_subscription):
        mock_repo.cancel.return_value = make_subscription(cancel_at_period_end=True)

        await service.cancel_subscription(uuid4(), CancelSubscriptionRequest())

        mock_repo.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reactivate_with_new_payment_method(self, service, mock_repo, make_subscription):
        mock_repo.reactivate.return_value = make_subscription()
        mock_repo.update.side_effect = _echo

        result = await service.reactivate_subscription(
            uuid4(), ReactivateSubscriptionRequest(payment_method_id="pm_456")
        )

        assert mock_repo.update.await_args.args[0].payment_method_id == "pm_456"
        assert result.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_suspend_requires_reason(self, service, mock_repo):
        with pytest.raises(ValidationError):
            await service.suspend_subscription(uuid4(), "   ")
        mock_repo.suspend.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_suspend(self, service, mock_repo, make_subscription):
        tenant_id = uuid4()
        mock_repo.suspend.return_value = make_subscription(status=SubscriptionStatus.SUSPENDED)

        await service.suspend_subscription(tenant_id, " Chargeback ")

        mock_repo.suspend.assert_awaited_once_with(tenant_id, "Chargeback", NOW)


# ============================================================================
# Billing
# ============================================================================

class TestBilling:

    @pytest.mark.asyncio
    async def test_same_interval_writes_nothing(self, service, mock_repo, sample_subscription):
        mock_repo.get_by_tenant_id.return_value = sample_subscription

        result = await service.update_billing_interval(
            sample_subscription.tenant_id,
            UpdateBillingIntervalRequest(billing_interval=BillingInterval.MONTHLY),
        )

        assert result.billing_interval == BillingInterval.MONTHLY
        mock_repo.change_billing_interval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interval_change(self, service, mock_repo, make_subscription):
        sub = make_subscription()
        mock_repo.get_by_tenant_id.return_value = sub
        mock_repo.change_billing_interval.return_value = make_subscription(
            billing_interval=BillingInterval.YEARLY
        )

        await service.update_billing_interval(
            sub.tenant_id,
            UpdateBillingIntervalRequest(billing_interval=BillingInterval.YEARLY, change_immediate=True),
        )

        mock_repo.change_billing_interval.assert_awaited_once_with(
            sub.tenant_id, BillingInterval.YEARLY, True, NOW
        )

    @pytest.mark.asyncio
    async def test_process_payment(self, service, mock_repo, sample_subscription):
        mock_repo.get_by_tenant_id.return_value = sample_subscription
        tenant_id = sample_subscription.tenant_id

        payment = await service.process_payment(tenant_id, ProcessPaymentRequest(
            amount=Decimal("29.99"),
            currency="usd",
            payment_method_id="pm_123",
        ))

        mock_repo.record_payment.assert_awaited_once_with(tenant_id, Decimal("29.99"), NOW)
        assert payment.status == "paid"
        assert payment.currency == "USD"
        assert payment.processed_at == NOW

    @pytest.mark.asyncio
    async def test_process_payment_rejects_bad_currency(self, service, mock_repo):
        with pytest.raises(ValidationError):
            await service.process_payment(uuid4(), ProcessPaymentRequest(
                amount=Decimal("10.00"),
                currency="U$D",
                payment_method_id="pm_123",
            ))
        mock_repo.record_payment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_record_failed_payment_uses_threshold(self, service, mock_repo, make_subscription):
        tenant_id = uuid4()
        mock_repo.record_failed_payment.return_value = make_subscription(
            status=SubscriptionStatus.PAST_DUE, failed_payments=3
        )

        result = await service.record_failed_payment(tenant_id)

        mock_repo.record_failed_payment.assert_awaited_once_with(tenant_id, 3, NOW)
        assert result.status == SubscriptionStatus.PAST_DUE


# ============================================================================
# Usage & Features
# ============================================================================

class TestUsage:

    @pytest.mark.asyncio
    async def test_increment(self, service, mock_repo, make_subscription):
        tenant_id = uuid4()
        mock_repo.increment_usage.return_value = make_subscription(current_customers=4)

        usage = await service.update_usage(tenant_id, UpdateUsageRequest(
            usage_type=UsageType.CUSTOMERS, operation=UsageOperation.INCREMENT, amount=1,
        ))

        mock_repo.increment_usage.assert_awaited_once_with(tenant_id, UsageType.CUSTOMERS, 1, NOW)
        assert usage.metrics["customers"].used == 4

    @pytest.mark.asyncio
    async def test_decrement(self, service, mock_repo, make_subscription):
        tenant_id = uuid4()
        mock_repo.decrement_usage.return_value = make_subscription()

        await service.update_usage(tenant_id, UpdateUsageRequest(
            usage_type=UsageType.PROJECTS, operation=UsageOperation.DECREMENT, amount=2,
        ))

        mock_repo.decrement_usage.assert_awaited_once_with(tenant_id, UsageType.PROJECTS, 2, NOW)

    @pytest.mark.asyncio
    async def test_set_translates_to_delta(self, service, mock_repo, make_subscription):
        sub = make_subscription(current_projects=3)
        mock_repo.get_by_tenant_id.return_value = sub
        mock_repo.increment_usage.return_value = make_subscription(current_projects=5)

        await service.update_usage(sub.tenant_id, UpdateUsageRequest(
            usage_type=UsageType.PROJECTS, operation=UsageOperation.SET, amount=5,
        ))

        mock_repo.increment_usage.assert_awaited_once_with(sub.tenant_id, UsageType.PROJECTS, 2, NOW)

    @pytest.mark.asyncio
    async def test_set_to_current_value_writes_nothing(self, service, mock_repo, make_subscription):
        sub = make_subscription(current_projects=3)
        mock_repo.get_by_tenant_id.return_value = sub

        usage = await service.update_usage(sub.tenant_id, UpdateUsageRequest(
            usage_type=UsageType.PROJECTS, operation=UsageOperation.SET, amount=3,
        ))

        assert usage.metrics["projects"].used == 3
        mock_repo.increment_usage.assert_not_awaited()
        mock_repo.decrement_usage.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_check_limits(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(
            plan=SubscriptionPlan.FREE, current_projects=2
        )
        assert await service.check_limits(uuid4(), UsageType.PROJECTS) is False

        mock_repo.get_by_tenant_id.return_value = make_subscription(
            plan=SubscriptionPlan.ENTERPRISE, current_customers=50_000
        )
        assert await service.check_limits(uuid4(), UsageType.CUSTOMERS) is True

    @pytest.mark.asyncio
    async def test_enforce_names_every_exceeded_dimension(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(
            plan=SubscriptionPlan.FREE, current_customers=10, current_storage_gb=2
        )

        with pytest.raises(UsageLimitExceededError) as exc_info:
            await service.enforce_usage_limits(uuid4())

        assert exc_info.value.dimensions == ["customers", "storage"]
        assert exc_info.value.details["dimensions"] == ["customers", "storage"]

    @pytest.mark.asyncio
    async def test_enforce_passes_at_limit(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(
            plan=SubscriptionPlan.FREE, current_customers=6
        )
        await service.enforce_usage_limits(uuid4())

    @pytest.mark.asyncio
    async def test_reset_monthly_usage(self, service, mock_repo, make_subscription):
        tenant_id = uuid4()
        mock_repo.reset_monthly_usage.return_value = make_subscription(current_bookings_month=0)

        usage = await service.reset_monthly_usage(tenant_id)

        mock_repo.reset_monthly_usage.assert_awaited_once_with(tenant_id, NOW)
        assert usage.metrics["bookings"].used == 0


class TestFeatures:

    @pytest.mark.asyncio
    async def test_feature_access_flags_upgrades(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(plan=SubscriptionPlan.STARTER)

        access = await service.get_feature_access(uuid4())
        details = {d.name: d for d in access.details}

        assert details["basic_booking"].enabled is True
        assert details["basic_booking"].upgrade_required is False
        assert details["custom_branding"].enabled is False
        assert details["custom_branding"].required_plan == SubscriptionPlan.PRO
        assert details["custom_branding"].upgrade_required is True
        assert "online_payments" in access.enabled_features

    @pytest.mark.asyncio
    async def test_has_feature_normalizes_name(self, service, mock_repo, make_subscription):
        mock_repo.get_by_tenant_id.return_value = make_subscription(plan=SubscriptionPlan.PRO)

        assert await service.has_feature(uuid4(), "Custom Branding") is True
        assert await service.has_feature(uuid4(), "white-labeling") is False
        assert await service.has_feature(uuid4(), "no_such_feature") is False

    @pytest.mark.asyncio
    async def test_has_feature_requires_name(self, service):
        with pytest.raises(ValidationError):
            await service.has_feature(uuid4(), "")


# ============================================================================
# Analytics
# ============================================================================

class TestAnalytics:

    @pytest.mark.asyncio
    async def test_stats_derive_revenue_figures(self, service, mock_repo, sample_stats):
        mock_repo.get_stats.return_value = sample_stats

        stats = await service.get_subscription_stats()

        mock_repo.get_stats.assert_awaited_once_with(NOW)
        assert stats.mrr == Decimal("1000.00")
        assert stats.average_revenue_per_user == Decimal("100.00")
        assert stats.growth_rate == 20.0
        assert stats.customer_lifetime_value == Decimal("2000.00")

    @pytest.mark.asyncio
    async def test_stats_with_no_churn_have_no_lifetime_value(self, service, mock_repo, sample_stats):
        mock_repo.get_stats.return_value = sample_stats.model_copy(update={"churn_rate": 0.0})

        stats = await service.get_subscription_stats()

        assert stats.customer_lifetime_value == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_list_pagination(self, service, mock_repo, sample_subscription):
        mock_repo.find_by_filters.return_value = ([sample_subscription], 41)

        result = await service.get_subscription_list(SubscriptionFilter(page=2, page_size=20))

        assert result.total == 41
        assert result.total_pages == 3
        assert result.page == 2
        assert result.items[0].tenant_id == sample_subscription.tenant_id

    @pytest.mark.asyncio
    async def test_analytics_buckets_by_month(self, service, mock_repo):
        mock_repo.created_between.return_value = [
            datetime(2026, 2, 3, tzinfo=timezone.utc),
            datetime(2026, 1, 5, tzinfo=timezone.utc),
            datetime(2026, 1, 20, tzinfo=timezone.utc),
        ]
        mock_repo.canceled_between.return_value = {"pro": 1, "starter": 2}
        mock_repo.revenue_between.return_value = {"pro": Decimal("79.99"), "starter": Decimal("29.99")}

        result = await service.get_analytics(AnalyticsFilter(
            start_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
        ))

        assert result.new_subscriptions == 3
        assert result.cancellations == 3
        assert result.revenue == Decimal("109.98")
        assert result.by_period == {"2026-01": 2, "2026-02": 1}

    @pytest.mark.asyncio
    async def test_churn_analysis(self, service, mock_repo):
        mock_repo.canceled_between.return_value = {"pro": 2}
        mock_repo.count_active_at.return_value = 40
        start = NOW - timedelta(days=30)

        churn = await service.get_churn_analysis(start, NOW)

        mock_repo.count_active_at.assert_awaited_once_with(start)
        assert churn.churn_rate == 5.0
        assert churn.retention_rate == 95.0
        assert churn.churned_subscriptions == 2

    @pytest.mark.asyncio
    async def test_churn_with_empty_base(self, service, mock_repo):
        mock_repo.canceled_between.return_value = {}
        mock_repo.count_active_at.return_value = 0

        churn = await service.get_churn_analysis(NOW - timedelta(days=30), NOW)

        assert churn.churn_rate == 0.0
        assert churn.retention_rate == 100.0

    @pytest.mark.asyncio
    async def test_churn_treats_naive_dates_as_utc(self, service, mock_repo):
        mock_repo.canceled_between.return_value = {}
        mock_repo.count_active_at.return_value = 10

        churn = await service.get_churn_analysis(datetime(2026, 1, 1), NOW)

        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        mock_repo.count_active_at.assert_awaited_once_with(start)
        assert churn.start_date == start

    def test_analytics_filter_accepts_mixed_timezones(self):
        filters = AnalyticsFilter(
            start_date="2026-01-01T00:00:00",
            end_date="2026-02-01T00:00:00Z",
        )

        assert filters.start_date == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert filters.end_date.tzinfo is not None

    @pytest.mark.asyncio
    async def test_churn_rejects_inverted_range(self, service):
        with pytest.raises(ValidationError):
            await service.get_churn_analysis(NOW, NOW - timedelta(days=1))

    @pytest.mark.asyncio
    async def test_revenue_analysis(self, service, mock_repo, sample_stats):
        mock_repo.revenue_between.return_value = {"pro": Decimal("79.99")}
        mock_repo.get_stats.return_value = sample_stats

        revenue = await service.get_revenue_analysis(AnalyticsFilter(
            start_date=NOW - timedelta(days=30),
            end_date=NOW,
        ))

        assert revenue.total_revenue == Decimal("79.99")
        assert revenue.arr == Decimal("12000.00")
        assert revenue.currency == "USD"

    @pytest.mark.parametrize("group_by,expected", [
        (AnalyticsGroupBy.DAY, "2026-03-15"),
        (AnalyticsGroupBy.WEEK, "2026-W11"),
        (AnalyticsGroupBy.MONTH, "2026-03"),
        (AnalyticsGroupBy.YEAR, "2026"),
    ])
    def test_period_bucket(self, group_by, expected):
        assert period_bucket(NOW, group_by) == expected


# ============================================================================
# Health
# ============================================================================

class TestHealth:

    @pytest.mark.asyncio
    async def test_health_check(self, service, mock_repo):
        result = await service.health_check()

        mock_repo.ping.assert_awaited_once()
        assert result.status == "healthy"
        assert result.checked_at == NOW

    @pytest.mark.asyncio
    async def test_health_check_failure(self, service, mock_repo):
        mock_repo.ping.side_effect = DatabaseError("unreachable")

        with pytest.raises(ServiceError) as exc_info:
            await service.health_check()

        assert exc_info.value.code == "HEALTH_CHECK_FAILED"

    @pytest.mark.asyncio
    async def test_service_metrics(self, service, mock_repo, sample_stats):
        mock_repo.get_stats.return_value = sample_stats

        metrics = await service.get_service_metrics()

        assert metrics.total_subscriptions == 12
        assert metrics.churn_rate == 5.0
