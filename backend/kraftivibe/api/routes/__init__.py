# API Routes Module
from kraftivibe.api.routes import (
    admin,
    subscriptions,
)

__all__ = [
    "admin",
    "subscriptions",
]
