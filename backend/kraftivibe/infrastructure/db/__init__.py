"""
Database Infrastructure Package for Kraftivibe Subscriptions

Exports database utilities and dependencies.
"""

from kraftivibe.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
)

from kraftivibe.infrastructure.db.dependencies import (
    SessionDep,
    get_subscription_repository,
    SubscriptionRepoDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "SessionDep",
    "get_subscription_repository",
    "SubscriptionRepoDep",
]
