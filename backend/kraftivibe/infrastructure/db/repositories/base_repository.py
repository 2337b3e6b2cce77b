"""
Base Repository for Kraftivibe Subscriptions

Generic async repository with the primitives every table repository needs:
translation of driver failures into DatabaseError with the failing
operation attached.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Generic, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from kraftivibe.infrastructure.exceptions import DatabaseError


# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """
    Generic async repository bound to one SQLModel table.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def table_name(self) -> str:
        return self._model.__tablename__

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        """
        Wrap driver failures in DatabaseError.

        Usage:
            async with self._guard("get_by_tenant_id"):
                result = await self._session.execute(stmt)
        """
        try:
            yield
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Database operation '{operation}' failed",
                operation=operation,
                table=self.table_name,
                original_error=e,
            ) from e
