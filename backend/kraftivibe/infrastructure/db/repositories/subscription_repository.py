"""
Subscription Repository

Data access layer for subscription persistence.
Follows Repository pattern for Clean Architecture: rows are mapped to the
Subscription domain entity, state transitions run on the entity, and the
result is written back within the caller's session.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, func, or_, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kraftivibe.domain.plans import (
    get_default_features,
    get_default_limits,
    get_plan_pricing,
)
from kraftivibe.domain.subscription import (
    BillingInterval,
    Subscription,
    SubscriptionFeatures,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageType,
)
from kraftivibe.domain.subscription_dto import SubscriptionFilter, SubscriptionStats
from kraftivibe.infrastructure.db.models.subscription import SubscriptionModel
from kraftivibe.infrastructure.db.repositories.base_repository import BaseRepository
from kraftivibe.infrastructure.exceptions import ConflictError, NotFoundError


logger = logging.getLogger(__name__)

CHURN_WINDOW = timedelta(days=30)
RECURRING_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


class ISubscriptionRepository(ABC):
    """
    Persistence contract the subscription service depends on.

    Every mutation is keyed by tenant and raises NotFoundError when the
    tenant has no subscription.
    """

    # Queries
    @abstractmethod
    async def get_by_tenant_id(self, tenant_id: UUID) -> Optional[Subscription]: ...

    @abstractmethod
    async def find_by_filters(self, filters: SubscriptionFilter) -> Tuple[List[Subscription], int]: ...

    @abstractmethod
    async def get_stats(self, now: datetime) -> SubscriptionStats: ...

    @abstractmethod
    async def get_expiring_trials(self, before: datetime, now: datetime, limit: int) -> List[Subscription]: ...

    @abstractmethod
    async def get_with_failed_payments(self, min_failures: int, limit: int) -> List[Subscription]: ...

    @abstractmethod
    async def get_expired(self, now: datetime, limit: int) -> List[Subscription]: ...

    @abstractmethod
    async def get_due_for_renewal(self, now: datetime, limit: int) -> List[Subscription]: ...

    @abstractmethod
    async def created_between(
        self, start: datetime, end: datetime, plans: Optional[List[SubscriptionPlan]] = None
    ) -> List[datetime]: ...

    @abstractmethod
    async def canceled_between(
        self, start: datetime, end: datetime, plans: Optional[List[SubscriptionPlan]] = None
    ) -> Dict[str, int]: ...

    @abstractmethod
    async def count_active_at(self, moment: datetime) -> int: ...

    @abstractmethod
    async def revenue_between(
        self, start: datetime, end: datetime, plans: Optional[List[SubscriptionPlan]] = None
    ) -> Dict[str, Decimal]: ...

    @abstractmethod
    async def ping(self) -> None: ...

    # Commands
    @abstractmethod
    async def create(self, subscription: Subscription) -> Subscription: ...

    @abstractmethod
    async def update(self, subscription: Subscription) -> Subscription: ...

    @abstractmethod
    async def delete(self, tenant_id: UUID) -> bool: ...

    @abstractmethod
    async def upgrade_plan(self, tenant_id: UUID, plan: SubscriptionPlan, now: datetime) -> Subscription: ...

    @abstractmethod
    async def downgrade_plan(
        self, tenant_id: UUID, plan: SubscriptionPlan, immediate: bool, now: datetime
    ) -> Subscription: ...

    @abstractmethod
    async def change_billing_interval(
        self, tenant_id: UUID, interval: BillingInterval, immediate: bool, now: datetime
    ) -> Subscription: ...

    @abstractmethod
    async def start_trial(self, tenant_id: UUID, trial_days: int, now: datetime) -> Subscription: ...

    @abstractmethod
    async def end_trial(self, tenant_id: UUID, now: datetime) -> Subscription: ...

    @abstractmethod
    async def cancel(self, tenant_id: UUID, at_period_end: bool, now: datetime) -> Subscription: ...

    @abstractmethod
    async def reactivate(self, tenant_id: UUID, now: datetime) -> Subscription: ...

    @abstractmethod
    async def suspend(self, tenant_id: UUID, reason: str, now: datetime) -> Subscription: ...

    @abstractmethod
    async def convert_to_free(self, tenant_id: UUID, now: datetime) -> Subscription: ...

    @abstractmethod
    async def renew(self, tenant_id: UUID, now: datetime) -> Subscription: ...

    @abstractmethod
    async def increment_usage(
        self, tenant_id: UUID, usage_type: UsageType, amount: int, now: datetime
    ) -> Subscription: ...

    @abstractmethod
    async def decrement_usage(
        self, tenant_id: UUID, usage_type: UsageType, amount: int, now: datetime
    ) -> Subscription: ...

    @abstractmethod
    async def reset_monthly_usage(self, tenant_id: UUID, now: datetime) -> Subscription: ...

    @abstractmethod
    async def record_payment(self, tenant_id: UUID, amount: Decimal, now: datetime) -> Subscription: ...

    @abstractmethod
    async def record_failed_payment(self, tenant_id: UUID, threshold: int, now: datetime) -> Subscription: ...


class SubscriptionRepository(BaseRepository[SubscriptionModel], ISubscriptionRepository):
    """
    SQLModel-backed subscription repository.

    Flushes but never commits: the session owner (request dependency or
    get_session_context) decides the transaction boundary.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionModel, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def _get_model(self, tenant_id: UUID) -> Optional[SubscriptionModel]:
        statement = select(SubscriptionModel).where(SubscriptionModel.tenant_id == tenant_id)
        result = await self._session.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_tenant_id(self, tenant_id: UUID) -> Optional[Subscription]:
        """
        Get subscription by tenant ID.

        Args:
            tenant_id: Owning tenant

        Returns:
            Subscription domain model or None
        """
        async with self._guard("get_by_tenant_id"):
            model = await self._get_model(tenant_id)
        return self._to_domain(model) if model else None

    async def find_by_filters(self, filters: SubscriptionFilter) -> Tuple[List[Subscription], int]:
        """
        Paginated search.

        Returns:
            (page of subscriptions, total matching rows)
        """
        conditions = []
        if filters.plans:
            conditions.append(SubscriptionModel.plan.in_([p.value for p in filters.plans]))
        if filters.statuses:
            conditions.append(SubscriptionModel.status.in_([s.value for s in filters.statuses]))
        if filters.billing_intervals:
            conditions.append(
                SubscriptionModel.billing_interval.in_([i.value for i in filters.billing_intervals])
            )
        if filters.min_amount is not None:
            conditions.append(SubscriptionModel.amount >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(SubscriptionModel.amount <= filters.max_amount)
        if filters.has_failed_payments is True:
            conditions.append(SubscriptionModel.failed_payments > 0)
        elif filters.has_failed_payments is False:
            conditions.append(SubscriptionModel.failed_payments == 0)
        if filters.created_after is not None:
            conditions.append(SubscriptionModel.created_at >= filters.created_after)
        if filters.created_before is not None:
            conditions.append(SubscriptionModel.created_at <= filters.created_before)

        async with self._guard("find_by_filters"):
            total_stmt = select(func.count()).select_from(SubscriptionModel).where(*conditions)
            total = (await self._session.execute(total_stmt)).scalar_one()

            page_stmt = (
                select(SubscriptionModel)
                .where(*conditions)
                .order_by(SubscriptionModel.created_at.desc())
                .offset((filters.page - 1) * filters.page_size)
                .limit(filters.page_size)
            )
            models = (await self._session.execute(page_stmt)).scalars().all()

        return [self._to_domain(m) for m in models], total

    async def get_stats(self, now: datetime) -> SubscriptionStats:
        """Aggregate counts, recurring revenue and 30-day churn."""
        async with self._guard("get_stats"):
            by_plan_rows = await self._session.execute(
                select(SubscriptionModel.plan, func.count(SubscriptionModel.id))
                .group_by(SubscriptionModel.plan)
            )
            by_plan = {row[0]: row[1] for row in by_plan_rows.all()}

            by_status_rows = await self._session.execute(
                select(SubscriptionModel.status, func.count(SubscriptionModel.id))
                .group_by(SubscriptionModel.status)
            )
            by_status = {row[0]: row[1] for row in by_status_rows.all()}

            recurring_rows = await self._session.execute(
                select(SubscriptionModel.billing_interval, func.coalesce(func.sum(SubscriptionModel.amount), 0))
                .where(SubscriptionModel.status.in_(RECURRING_STATUSES))
                .group_by(SubscriptionModel.billing_interval)
            )
            recurring = {row[0]: Decimal(row[1]) for row in recurring_rows.all()}

            revenue_rows = await self._session.execute(
                select(SubscriptionModel.plan, func.coalesce(func.sum(SubscriptionModel.last_payment_amount), 0))
                .where(SubscriptionModel.last_payment_date.is_not(None))
                .group_by(SubscriptionModel.plan)
            )
            revenue_by_plan = {row[0]: Decimal(row[1]) for row in revenue_rows.all()}

        window_start = now - CHURN_WINDOW
        churned = sum((await self.canceled_between(window_start, now)).values())
        base = await self.count_active_at(window_start)
        new_last = len(await self.created_between(window_start, now))
        new_previous = len(await self.created_between(window_start - CHURN_WINDOW, window_start))

        mrr = (
            recurring.get(BillingInterval.MONTHLY.value, Decimal("0"))
            + recurring.get(BillingInterval.YEARLY.value, Decimal("0")) / 12
        ).quantize(Decimal("0.01"))

        return SubscriptionStats(
            total_subscriptions=sum(by_plan.values()),
            active_subscriptions=by_status.get(SubscriptionStatus.ACTIVE.value, 0),
            trialing_subscriptions=by_status.get(SubscriptionStatus.TRIALING.value, 0),
            canceled_subscriptions=by_status.get(SubscriptionStatus.CANCELED.value, 0),
            by_plan=by_plan,
            by_status=by_status,
            mrr=mrr,
            arr=mrr * 12,
            churn_rate=round(churned / base * 100, 2) if base else 0.0,
            revenue_by_plan=revenue_by_plan,
            new_last_30_days=new_last,
            new_previous_30_days=new_previous,
        )

    async def _list(self, operation: str, statement) -> List[Subscription]:
        async with self._guard(operation):
            models = (await self._session.execute(statement)).scalars().all()
        return [self._to_domain(m) for m in models]

    async def get_expiring_trials(self, before: datetime, now: datetime, limit: int) -> List[Subscription]:
        """Trials that are still running but end before ``before``."""
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.status == SubscriptionStatus.TRIALING.value,
                SubscriptionModel.trial_ends_at.is_not(None),
                SubscriptionModel.trial_ends_at > now,
                SubscriptionModel.trial_ends_at <= before,
            )
            .order_by(SubscriptionModel.trial_ends_at)
            .limit(limit)
        )
        return await self._list("get_expiring_trials", statement)

    async def get_with_failed_payments(self, min_failures: int, limit: int) -> List[Subscription]:
        """Subscriptions with failed payments that are not already suspended or canceled."""
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.failed_payments >= min_failures,
                SubscriptionModel.status.not_in(
                    [SubscriptionStatus.SUSPENDED.value, SubscriptionStatus.CANCELED.value]
                ),
            )
            .order_by(SubscriptionModel.failed_payments.desc())
            .limit(limit)
        )
        return await self._list("get_with_failed_payments", statement)

    async def get_expired(self, now: datetime, limit: int) -> List[Subscription]:
        """
        Lapsed subscriptions whose current period has ended.

        Active rows the renewal sweep rolls over (recurring ones with a next
        billing date, and every Free one) are not expired.
        """
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.current_period_end < now,
                or_(
                    SubscriptionModel.status.in_([
                        SubscriptionStatus.TRIALING.value,
                        SubscriptionStatus.PAST_DUE.value,
                    ]),
                    and_(
                        SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                        SubscriptionModel.plan != SubscriptionPlan.FREE.value,
                        SubscriptionModel.next_billing_date.is_(None),
                    ),
                ),
            )
            .order_by(SubscriptionModel.current_period_end)
            .limit(limit)
        )
        return await self._list("get_expired", statement)

    async def get_due_for_renewal(self, now: datetime, limit: int) -> List[Subscription]:
        """
        Active subscriptions due to roll into a new period: recurring ones
        whose next billing date has passed, and Free ones whose yearly
        window has ended.
        """
        statement = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                or_(
                    and_(
                        SubscriptionModel.next_billing_date.is_not(None),
                        SubscriptionModel.next_billing_date <= now,
                        SubscriptionModel.billing_interval.in_(
                            [BillingInterval.MONTHLY.value, BillingInterval.YEARLY.value]
                        ),
                    ),
                    and_(
                        SubscriptionModel.plan == SubscriptionPlan.FREE.value,
                        SubscriptionModel.current_period_end <= now,
                    ),
                ),
            )
            .order_by(SubscriptionModel.current_period_end)
            .limit(limit)
        )
        return await self._list("get_due_for_renewal", statement)

    async def created_between(
        self,
        start: datetime,
        end: datetime,
        plans: Optional[List[SubscriptionPlan]] = None,
    ) -> List[datetime]:
        conditions = [SubscriptionModel.created_at >= start, SubscriptionModel.created_at < end]
        if plans:
            conditions.append(SubscriptionModel.plan.in_([p.value for p in plans]))
        async with self._guard("created_between"):
            result = await self._session.execute(
                select(SubscriptionModel.created_at).where(*conditions)
            )
            return list(result.scalars().all())

    async def canceled_between(
        self,
        start: datetime,
        end: datetime,
        plans: Optional[List[SubscriptionPlan]] = None,
    ) -> Dict[str, int]:
        """Cancellations in a window, counted per plan."""
        conditions = [
            SubscriptionModel.status == SubscriptionStatus.CANCELED.value,
            SubscriptionModel.canceled_at >= start,
            SubscriptionModel.canceled_at < end,
        ]
        if plans:
            conditions.append(SubscriptionModel.plan.in_([p.value for p in plans]))
        async with self._guard("canceled_between"):
            result = await self._session.execute(
                select(SubscriptionModel.plan, func.count(SubscriptionModel.id))
                .where(*conditions)
                .group_by(SubscriptionModel.plan)
            )
            return {row[0]: row[1] for row in result.all()}

    async def count_active_at(self, moment: datetime) -> int:
        """Subscriptions that existed and were not yet canceled at ``moment``."""
        async with self._guard("count_active_at"):
            result = await self._session.execute(
                select(func.count(SubscriptionModel.id)).where(
                    SubscriptionModel.created_at < moment,
                    or_(
                        SubscriptionModel.canceled_at.is_(None),
                        SubscriptionModel.canceled_at >= moment,
                    ),
                )
            )
            return result.scalar_one()

    async def revenue_between(
        self,
        start: datetime,
        end: datetime,
        plans: Optional[List[SubscriptionPlan]] = None,
    ) -> Dict[str, Decimal]:
        """Last recorded payments that fall inside a window, summed per plan."""
        conditions = [
            SubscriptionModel.last_payment_date >= start,
            SubscriptionModel.last_payment_date < end,
        ]
        if plans:
            conditions.append(SubscriptionModel.plan.in_([p.value for p in plans]))
        async with self._guard("revenue_between"):
            result = await self._session.execute(
                select(SubscriptionModel.plan, func.coalesce(func.sum(SubscriptionModel.last_payment_amount), 0))
                .where(*conditions)
                .group_by(SubscriptionModel.plan)
            )
            return {row[0]: Decimal(row[1]) for row in result.all()}

    async def ping(self) -> None:
        async with self._guard("ping"):
            await self._session.execute(text("SELECT 1"))

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create(self, subscription: Subscription) -> Subscription:
        """
        Create a new subscription.

        Raises:
            ConflictError: the tenant already has a subscription, or the
                Stripe subscription id is linked to another tenant
        """
        model = self._to_model(subscription)
        model.id = uuid4()
        async with self._guard("create"):
            self._session.add(model)
            try:
                await self._session.flush()
            except IntegrityError as e:
                if "stripe_subscription_id" in str(e.orig):
                    raise ConflictError(
                        f"Stripe subscription {subscription.stripe_subscription_id} is already linked to another tenant",
                        {"stripe_subscription_id": subscription.stripe_subscription_id},
                        original_error=e,
                    ) from e
                raise ConflictError(
                    f"Subscription already exists for tenant {subscription.tenant_id}",
                    {"tenant_id": str(subscription.tenant_id)},
                    original_error=e,
                ) from e
            await self._session.refresh(model)

        logger.info(f"Created subscription {model.id} for tenant {model.tenant_id}")
        return self._to_domain(model)

    async def update(self, subscription: Subscription) -> Subscription:
        """
        Write every mutable field of ``subscription`` back to its row.

        Runs in its own savepoint, so a failed write leaves earlier changes in
        the session transaction intact.
        """
        async with self._guard("update"):
            async with self._session.begin_nested():
                model = await self._get_model(subscription.tenant_id)
                if model is None:
                    raise self._not_found(subscription.tenant_id)
                self._apply_to_model(subscription, model)
                await self._session.flush()
        return self._to_domain(model)

    async def delete(self, tenant_id: UUID) -> bool:
        async with self._guard("delete"):
            result = await self._session.execute(
                delete(SubscriptionModel).where(SubscriptionModel.tenant_id == tenant_id)
            )
            await self._session.flush()
        return result.rowcount > 0

    async def _mutate(
        self,
        operation: str,
        tenant_id: UUID,
        now: datetime,
        mutation: Callable[[Subscription], None],
    ) -> Subscription:
        """Load, run a domain transition, write back."""
        async with self._guard(operation):
            # One savepoint per mutation: a failure rolls back only this tenant
            async with self._session.begin_nested():
                model = await self._get_model(tenant_id)
                if model is None:
                    raise self._not_found(tenant_id)
                subscription = self._to_domain(model)
                mutation(subscription)
                subscription.updated_at = now
                self._apply_to_model(subscription, model)
                await self._session.flush()
        return self._to_domain(model)

    def _apply_catalog_plan(self, subscription: Subscription, plan: SubscriptionPlan) -> None:
        subscription.apply_plan(
            plan,
            get_default_limits(plan),
            get_default_features(plan),
            get_plan_pricing(plan, subscription.billing_interval),
        )

    async def upgrade_plan(self, tenant_id: UUID, plan: SubscriptionPlan, now: datetime) -> Subscription:
        """Apply a plan immediately, with its limits, features and price."""
        return await self._mutate(
            "upgrade_plan", tenant_id, now,
            lambda sub: self._apply_catalog_plan(sub, plan),
        )

    async def downgrade_plan(
        self,
        tenant_id: UUID,
        plan: SubscriptionPlan,
        immediate: bool,
        now: datetime,
    ) -> Subscription:
        """Apply a lower plan now, or park it until the period rolls over."""
        if immediate:
            return await self.upgrade_plan(tenant_id, plan, now)
        return await self._mutate(
            "downgrade_plan", tenant_id, now,
            lambda sub: sub.schedule_plan(plan),
        )

    async def change_billing_interval(
        self,
        tenant_id: UUID,
        interval: BillingInterval,
        immediate: bool,
        now: datetime,
    ) -> Subscription:
        def mutation(sub: Subscription) -> None:
            sub.change_interval(interval, get_plan_pricing(sub.plan, interval), immediate, now)

        return await self._mutate("change_billing_interval", tenant_id, now, mutation)

    async def start_trial(self, tenant_id: UUID, trial_days: int, now: datetime) -> Subscription:
        return await self._mutate(
            "start_trial", tenant_id, now,
            lambda sub: sub.start_trial(trial_days, now),
        )

    async def end_trial(self, tenant_id: UUID, now: datetime) -> Subscription:
        return await self._mutate("end_trial", tenant_id, now, lambda sub: sub.end_trial())

    async def cancel(self, tenant_id: UUID, at_period_end: bool, now: datetime) -> Subscription:
        return await self._mutate(
            "cancel", tenant_id, now,
            lambda sub: sub.cancel(at_period_end, now),
        )

    async def reactivate(self, tenant_id: UUID, now: datetime) -> Subscription:
        return await self._mutate("reactivate", tenant_id, now, lambda sub: sub.reactivate(now))

    async def suspend(self, tenant_id: UUID, reason: str, now: datetime) -> Subscription:
        return await self._mutate(
            "suspend", tenant_id, now,
            lambda sub: sub.suspend(reason, now),
        )

    async def convert_to_free(self, tenant_id: UUID, now: datetime) -> Subscription:
        free = SubscriptionPlan.FREE
        return await self._mutate(
            "convert_to_free", tenant_id, now,
            lambda sub: sub.convert_to_free(get_default_limits(free), get_default_features(free), now),
        )

    async def renew(self, tenant_id: UUID, now: datetime) -> Subscription:
        """Roll the period over, applying a parked plan change first."""
        def mutation(sub: Subscription) -> None:
            pending = sub.pending_plan
            if pending is not None:
                self._apply_catalog_plan(sub, pending)
            sub.renew()

        return await self._mutate("renew", tenant_id, now, mutation)

    async def increment_usage(
        self,
        tenant_id: UUID,
        usage_type: UsageType,
        amount: int,
        now: datetime,
    ) -> Subscription:
        return await self._mutate(
            "increment_usage", tenant_id, now,
            lambda sub: sub.increment_usage(usage_type, amount),
        )

    async def decrement_usage(
        self,
        tenant_id: UUID,
        usage_type: UsageType,
        amount: int,
        now: datetime,
    ) -> Subscription:
        return await self._mutate(
            "decrement_usage", tenant_id, now,
            lambda sub: sub.decrement_usage(usage_type, amount),
        )

    async def reset_monthly_usage(self, tenant_id: UUID, now: datetime) -> Subscription:
        return await self._mutate(
            "reset_monthly_usage", tenant_id, now,
            lambda sub: sub.reset_monthly_usage(),
        )

    async def record_payment(self, tenant_id: UUID, amount: Decimal, now: datetime) -> Subscription:
        return await self._mutate(
            "record_payment", tenant_id, now,
            lambda sub: sub.record_payment(amount, now),
        )

    async def record_failed_payment(self, tenant_id: UUID, threshold: int, now: datetime) -> Subscription:
        return await self._mutate(
            "record_failed_payment", tenant_id, now,
            lambda sub: sub.record_failed_payment(threshold),
        )

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _not_found(self, tenant_id: UUID) -> NotFoundError:
        return NotFoundError(
            f"Subscription not found for tenant {tenant_id}",
            resource="subscription",
            key=str(tenant_id),
        )

    def _to_domain(self, model: SubscriptionModel) -> Subscription:
        """Convert database model to domain entity."""
        return Subscription(
            id=model.id,
            tenant_id=model.tenant_id,
            plan=SubscriptionPlan(model.plan),
            status=SubscriptionStatus(model.status),
            billing_interval=BillingInterval(model.billing_interval),
            amount=model.amount,
            currency=model.currency,
            discount_percent=model.discount_percent,
            current_period_start=model.current_period_start,
            current_period_end=model.current_period_end,
            next_billing_date=model.next_billing_date,
            trial_ends_at=model.trial_ends_at,
            canceled_at=model.canceled_at,
            cancel_at_period_end=model.cancel_at_period_end or False,
            max_customers=model.max_customers,
            max_projects=model.max_projects,
            max_storage_gb=model.max_storage_gb,
            max_team_members=model.max_team_members,
            max_services_listed=model.max_services_listed,
            max_bookings_per_month=model.max_bookings_per_month,
            current_customers=model.current_customers,
            current_projects=model.current_projects,
            current_storage_gb=model.current_storage_gb,
            current_team_members=model.current_team_members,
            current_services=model.current_services,
            current_bookings_month=model.current_bookings_month,
            features=SubscriptionFeatures(**(model.features or {})),
            failed_payments=model.failed_payments,
            last_payment_date=model.last_payment_date,
            last_payment_amount=model.last_payment_amount,
            payment_method_id=model.payment_method_id,
            stripe_customer_id=model.stripe_customer_id,
            stripe_subscription_id=model.stripe_subscription_id,
            metadata=dict(model.extra_data or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, domain: Subscription) -> SubscriptionModel:
        """Convert domain entity to database model."""
        model = SubscriptionModel(
            tenant_id=domain.tenant_id,
            current_period_start=domain.current_period_start,
            current_period_end=domain.current_period_end,
        )
        self._apply_to_model(domain, model)
        if domain.created_at is not None:
            model.created_at = domain.created_at
        return model

    def _apply_to_model(self, domain: Subscription, model: SubscriptionModel) -> None:
        """Copy every mutable field from the entity onto the row."""
        model.plan = domain.plan.value
        model.status = domain.status.value
        model.billing_interval = domain.billing_interval.value
        model.amount = domain.amount
        model.currency = domain.currency
        model.discount_percent = domain.discount_percent
        model.current_period_start = domain.current_period_start
        model.current_period_end = domain.current_period_end
        model.next_billing_date = domain.next_billing_date
        model.trial_ends_at = domain.trial_ends_at
        model.canceled_at = domain.canceled_at
        model.cancel_at_period_end = domain.cancel_at_period_end
        model.max_customers = domain.max_customers
        model.max_projects = domain.max_projects
        model.max_storage_gb = domain.max_storage_gb
        model.max_team_members = domain.max_team_members
        model.max_services_listed = domain.max_services_listed
        model.max_bookings_per_month = domain.max_bookings_per_month
        model.current_customers = domain.current_customers
        model.current_projects = domain.current_projects
        model.current_storage_gb = domain.current_storage_gb
        model.current_team_members = domain.current_team_members
        model.current_services = domain.current_services
        model.current_bookings_month = domain.current_bookings_month
        # Fresh containers so the JSON columns register as changed
        model.features = domain.features.model_dump()
        model.extra_data = dict(domain.metadata)
        model.failed_payments = domain.failed_payments
        model.last_payment_date = domain.last_payment_date
        model.last_payment_amount = domain.last_payment_amount
        model.payment_method_id = domain.payment_method_id
        model.stripe_customer_id = domain.stripe_customer_id
        model.stripe_subscription_id = domain.stripe_subscription_id
        if domain.updated_at is not None:
            model.updated_at = domain.updated_at
