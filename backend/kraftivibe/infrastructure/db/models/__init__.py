"""
SQLModel ORM Models for Kraftivibe Subscriptions

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from kraftivibe.infrastructure.db.models.subscription import SubscriptionModel


__all__ = [
    "SubscriptionModel",
]
