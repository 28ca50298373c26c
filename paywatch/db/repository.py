"""Base repository class with common CRUD operations."""

from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paywatch.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository providing common CRUD operations for all models.

    Repositories flush but never commit; the owning UnitOfWork decides when
    a change becomes visible.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        """Get a record by primary key."""
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)  # type: ignore[attr-defined]
        )
        return result.scalar_one_or_none()

    async def get_by_field(self, field_name: str, value: Any) -> Optional[ModelType]:
        """
        Get a record by a specific field value.

        Args:
            field_name: Name of the field to search
            value: Value to search for

        Returns:
            Model instance or None if not found
        """
        field = getattr(self.model, field_name)
        result = await self.session.execute(select(self.model).where(field == value))
        return result.scalar_one_or_none()

    async def filter(self, **filters) -> List[ModelType]:
        """
        Filter records by field values.

        Supports comparison operators using double underscore syntax:
        - field__lt / field__lte / field__gt / field__gte / field__ne
        - field (no suffix): equal

        Examples:
            await repo.filter(company_id=cid, status=TransactionStatus.NEW)
            await repo.filter(created_at__gte=cutoff)
        """
        query = self._apply_filters(select(self.model), filters)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _apply_filters(self, query, filters: dict):
        for filter_key, value in filters.items():
            if "__" in filter_key:
                field_name, operator = filter_key.rsplit("__", 1)
            else:
                field_name, operator = filter_key, "eq"

            field = getattr(self.model, field_name)

            if operator == "ne":
                query = query.where(field != value)
            elif operator == "lt":
                query = query.where(field < value)
            elif operator == "lte":
                query = query.where(field <= value)
            elif operator == "gt":
                query = query.where(field > value)
            elif operator == "gte":
                query = query.where(field >= value)
            elif operator == "eq":
                query = query.where(field == value)
            else:
                raise ValueError(f"Unknown filter operator: {operator}")

        return query

    async def update(self, id: str, **kwargs) -> Optional[ModelType]:
        """
        Update a record by ID.

        Args:
            id: Record ID
            **kwargs: Fields to update with their new values

        Returns:
            Updated model instance or None if not found
        """
        instance = await self.get_by_id(id)
        if instance is None:
            return None
        for key, value in kwargs.items():
            setattr(instance, key, value)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def count(self, **filters) -> int:
        """Count records matching the given filters."""
        query = select(func.count(self.model.id))  # type: ignore[attr-defined]
        query = self._apply_filters(query, filters)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def exists(self, **filters) -> bool:
        """Check if any records exist matching the given filters."""
        return await self.count(**filters) > 0

    async def update_where(self, values: dict, **filters) -> int:
        """
        Bulk update rows matching filters.

        Returns:
            Number of rows changed
        """
        query = self._apply_filters(update(self.model), filters).values(**values)
        result = await self.session.execute(query.execution_options(synchronize_session=False))
        await self.session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]
