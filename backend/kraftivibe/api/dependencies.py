"""
API Dependencies

FastAPI dependency injection for the subscription service and the admin
API key check.
"""

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from kraftivibe.config.settings import get_settings
from kraftivibe.infrastructure.db.dependencies import SubscriptionRepoDep
from kraftivibe.infrastructure.payments.stripe_service import get_stripe_service
from kraftivibe.infrastructure.services.subscription_service import (
    ISubscriptionService,
    SubscriptionService,
)


logger = logging.getLogger(__name__)


async def get_subscription_service(repo: SubscriptionRepoDep) -> ISubscriptionService:
    """Build the subscription service around the request-scoped repository."""
    return SubscriptionService(repo, payment_gateway=get_stripe_service())


SubscriptionServiceDep = Annotated[ISubscriptionService, Depends(get_subscription_service)]


async def verify_admin_api_key(
    x_admin_key: str = Header(..., description="Admin API key for protected operations"),
) -> bool:
    """
    Verify the admin API key from the X-Admin-Key header.

    Raises:
        HTTPException 503: ADMIN_API_KEY is not configured
        HTTPException 403: the key does not match
    """
    expected_key = get_settings().admin_api_key

    if not expected_key:
        logger.error("ADMIN_API_KEY environment variable not set")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured",
        )

    if not secrets.compare_digest(x_admin_key, expected_key):
        logger.warning("Invalid admin API key attempt")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key",
        )

    return True
