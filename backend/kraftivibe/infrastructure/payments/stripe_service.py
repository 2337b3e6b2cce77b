"""
Stripe Payment Service

Infrastructure wrapper around the Stripe API for the subscription service.
Only the calls the billing lifecycle needs are exposed; when no secret key
is configured every call is skipped and reported as such.
"""

import logging
from typing import Optional

import stripe
from stripe import StripeError

from kraftivibe.config.settings import get_settings


logger = logging.getLogger(__name__)


class StripeServiceError(Exception):
    """Base exception for Stripe service errors."""
    pass


class StripeService:
    """
    Stripe gateway operations.

    All methods are idempotent where Stripe allows it.
    """

    def __init__(self, api_key: Optional[str] = None):
        """Initialize Stripe with an explicit key or the one from settings."""
        self._api_key = api_key if api_key is not None else get_settings().stripe_secret_key

        if self._api_key:
            stripe.api_key = self._api_key

    @property
    def enabled(self) -> bool:
        """Whether calls will actually reach Stripe."""
        return bool(self._api_key)

    # =========================================================================
    # Subscription Commands
    # =========================================================================

    async def cancel_subscription(
        self,
        subscription_id: str,
    ) -> Optional[stripe.Subscription]:
        """
        Cancel a Stripe subscription immediately.

        Args:
            subscription_id: Stripe subscription ID

        Returns:
            Updated stripe.Subscription, or None when Stripe is disabled

        Raises:
            StripeServiceError: Stripe rejected the request
        """
        if not self.enabled:
            logger.info(f"Stripe disabled, skipping cancel of {subscription_id}")
            return None

        try:
            subscription = stripe.Subscription.cancel(subscription_id)
            logger.info(f"Cancelled Stripe subscription {subscription_id}")
            return subscription

        except StripeError as e:
            logger.error(f"Failed to cancel Stripe subscription {subscription_id}: {e}")
            raise StripeServiceError(f"Failed to cancel: {e.user_message}") from e


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_service_instance: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get or create Stripe service singleton."""
    global _stripe_service_instance

    if _stripe_service_instance is None:
        _stripe_service_instance = StripeService()

    return _stripe_service_instance
