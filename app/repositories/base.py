"""
Base repository with shared query helpers.
All repositories extend this class for database access.
"""
from typing import Generic, TypeVar, Type, Optional, Any

from sqlalchemy import select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository bound to one model and one session.

    Aggregate-specific queries live in the subclasses.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Async database session
        """
        self.model = model
        self.db = db

    def dialect_insert(self, model: Optional[Type[Base]] = None):
        """
        Build a dialect-specific INSERT supporting ``on_conflict_do_nothing``.

        PostgreSQL in production, SQLite in tests. Both dialects expose the
        same conflict API, which is what makes add-to-set writes atomic.

        Args:
            model: Model to insert into (defaults to the repository model)

        Returns:
            Dialect ``Insert`` construct
        """
        target = model or self.model
        if self.db.get_bind().dialect.name == "postgresql":
            return postgresql.insert(target)
        return sqlite.insert(target)

    async def get(self, id: Any) -> Optional[ModelType]:
        """
        Get a record by ID.

        Args:
            id: Record ID

        Returns:
            Model instance or None if not found

        Example:
            ```python
            conversation = await conversation_repo.get(conversation_id)
            if conversation is None:
                raise NotFound("Conversation not found")
            ```
        """
        result = await self.db.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    async def count(self, **filters) -> int:
        """
        Count records matching filters.

        Args:
            **filters: Filter conditions

        Returns:
            Number of matching records

        Example:
            ```python
            pending = await grace_repo.count(recipient_id=user_id)
            ```
        """
        query = select(func.count()).select_from(self.model)

        for key, value in filters.items():
            if hasattr(self.model, key):
                query = query.where(getattr(self.model, key) == value)

        result = await self.db.execute(query)
        return result.scalar()
