"""
Test configuration and fixtures for Kraftivibe Subscriptions.

Provides shared fixtures for unit and integration tests.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

from fastapi.testclient import TestClient


# Fixed instant used as "now" throughout the suite
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from kraftivibe.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and any .env file."""
    from kraftivibe.config.settings import Settings
    return Settings(
        _env_file=None,
        default_currency="USD",
        max_trial_days=90,
        failed_payment_threshold=3,
        sweep_batch_size=100,
    )


@pytest.fixture
def mock_repo():
    """Mock for ISubscriptionRepository; every method is awaitable."""
    return AsyncMock()


@pytest.fixture
def service(mock_repo, test_settings):
    """SubscriptionService on a mocked repository with a frozen clock."""
    from kraftivibe.infrastructure.services.subscription_service import SubscriptionService
    return SubscriptionService(mock_repo, settings=test_settings, clock=lambda: NOW)


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def make_subscription():
    """
    Factory for Subscription entities with catalog-consistent defaults.

    The default is an active monthly Starter subscription ten days into a
    thirty-day period.
    """
    from kraftivibe.domain.plans import get_default_features, get_default_limits, get_plan_pricing
    from kraftivibe.domain.subscription import (
        BillingInterval,
        Subscription,
        SubscriptionPlan,
        SubscriptionStatus,
    )

    def _make(**overrides) -> Subscription:
        plan = overrides.pop("plan", SubscriptionPlan.STARTER)
        interval = overrides.pop("billing_interval", BillingInterval.MONTHLY)
        period_start = overrides.pop("current_period_start", NOW - timedelta(days=10))
        period_end = overrides.pop("current_period_end", NOW + timedelta(days=20))
        fields = dict(
            id=uuid4(),
            tenant_id=uuid4(),
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            billing_interval=interval,
            amount=get_plan_pricing(plan, interval),
            currency="USD",
            current_period_start=period_start,
            current_period_end=period_end,
            next_billing_date=period_end,
            features=get_default_features(plan),
            created_at=period_start,
            updated_at=period_start,
            **get_default_limits(plan).model_dump(),
        )
        fields.update(overrides)
        return Subscription(**fields)

    return _make


@pytest.fixture
def sample_subscription(make_subscription):
    return make_subscription()


@pytest.fixture
def sample_stats():
    from kraftivibe.domain.subscription_dto import SubscriptionStats
    return SubscriptionStats(
        total_subscriptions=12,
        active_subscriptions=8,
        trialing_subscriptions=2,
        canceled_subscriptions=2,
        by_plan={"starter": 6, "pro": 4, "free": 2},
        by_status={"active": 8, "trialing": 2, "canceled": 2},
        mrr=Decimal("1000.00"),
        arr=Decimal("12000.00"),
        churn_rate=5.0,
        revenue_by_plan={"starter": Decimal("179.94"), "pro": Decimal("319.96")},
        new_last_30_days=12,
        new_previous_30_days=10,
    )
