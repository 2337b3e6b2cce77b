"""
Admin Routes for Subscription Analytics and Maintenance

Aggregate statistics, analytics reports, service metrics and manual
triggers for the background sweeps. Protected by API key authentication.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from kraftivibe.api.dependencies import SubscriptionServiceDep, verify_admin_api_key
from kraftivibe.domain.subscription import as_utc
from kraftivibe.domain.subscription_dto import (
    AnalyticsFilter,
    AnalyticsResponse,
    ChurnAnalysisResponse,
    RevenueAnalysisResponse,
    ServiceMetrics,
    SubscriptionStatsResponse,
    SweepName,
    SweepResult,
)


logger = logging.getLogger(__name__)

CHURN_DEFAULT_WINDOW = timedelta(days=30)

router = APIRouter(
    prefix="/api/admin/subscriptions",
    tags=["admin"],
    dependencies=[Depends(verify_admin_api_key)],  # Protect ALL admin routes
)


@router.get("/stats", response_model=SubscriptionStatsResponse)
async def get_stats(service: SubscriptionServiceDep):
    """Totals, MRR/ARR, churn and derived revenue figures."""
    return await service.get_subscription_stats()


@router.post("/analytics", response_model=AnalyticsResponse)
async def get_analytics(filters: AnalyticsFilter, service: SubscriptionServiceDep):
    return await service.get_analytics(filters)


@router.get("/churn", response_model=ChurnAnalysisResponse)
async def get_churn(
    service: SubscriptionServiceDep,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    """Churn over a window; defaults to the last 30 days."""
    end = as_utc(end_date) if end_date else datetime.now(timezone.utc)
    start = as_utc(start_date) if start_date else end - CHURN_DEFAULT_WINDOW
    return await service.get_churn_analysis(start, end)


@router.post("/revenue", response_model=RevenueAnalysisResponse)
async def get_revenue(filters: AnalyticsFilter, service: SubscriptionServiceDep):
    return await service.get_revenue_analysis(filters)


@router.post("/sweeps/{sweep_name}", response_model=SweepResult)
async def run_sweep(sweep_name: SweepName, service: SubscriptionServiceDep):
    """
    Run one background sweep now. The scheduled runner calls the same
    service operation.
    """
    logger.info(f"Manual sweep requested: {sweep_name.value}")
    return await service.run_sweep(sweep_name)


@router.get("/metrics", response_model=ServiceMetrics)
async def get_metrics(service: SubscriptionServiceDep):
    return await service.get_service_metrics()
