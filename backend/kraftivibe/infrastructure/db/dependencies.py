"""
Dependency Injection Providers for Kraftivibe Subscriptions

Provides FastAPI dependencies for database sessions and repositories.
High-level modules depend on the repository interface, not on SQLModel.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kraftivibe.infrastructure.db.database import get_session
from kraftivibe.infrastructure.db.repositories import (
    ISubscriptionRepository,
    SubscriptionRepository,
)


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_subscription_repository(
    session: SessionDep,
) -> AsyncGenerator[ISubscriptionRepository, None]:
    """
    Dependency provider for SubscriptionRepository.

    Usage:
        @router.get("/subscriptions/{tenant_id}")
        async def get_subscription(
            repo: ISubscriptionRepository = Depends(get_subscription_repository)
        ):
            ...
    """
    yield SubscriptionRepository(session)


# Type alias for repository dependency
SubscriptionRepoDep = Annotated[
    ISubscriptionRepository,
    Depends(get_subscription_repository)
]
