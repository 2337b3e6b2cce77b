"""
Payments Infrastructure Module

Stripe gateway wrapper used by the subscription service.
"""

from kraftivibe.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)

__all__ = ["StripeService", "StripeServiceError", "get_stripe_service"]
