"""
Repository Layer for Kraftivibe Subscriptions

Exports all repository classes for dependency injection.
"""

from kraftivibe.infrastructure.db.repositories.base_repository import BaseRepository
from kraftivibe.infrastructure.db.repositories.subscription_repository import (
    ISubscriptionRepository,
    SubscriptionRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "ISubscriptionRepository",
    "SubscriptionRepository",
]
