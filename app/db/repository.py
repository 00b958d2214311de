"""Base repository class with common persistence operations."""

import operator
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "in": lambda field, value: field.in_(value),
    "notin": lambda field, value: field.notin_(value),
    "isnull": lambda field, value: field.is_(None) if value else field.isnot(None),
}


class BaseRepository(Generic[ModelType]):
    """
    Base repository providing common operations for all models.

    Records in this service are append-or-update only; there is no
    generic delete.
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
        Create a new record and flush it so database defaults are populated.

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

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)  # type: ignore
        )
        return result.scalar_one_or_none()

    async def get_by_field(self, field_name: str, value: Any) -> Optional[ModelType]:
        """
        Get a record by a unique field value.

        Args:
            field_name: Name of the field to search
            value: Value to search for

        Returns:
            Model instance or None if not found
        """
        field = getattr(self.model, field_name)
        result = await self.session.execute(select(self.model).where(field == value))
        return result.scalar_one_or_none()

    async def filter(self, limit: Optional[int] = None, **filters) -> List[ModelType]:
        """
        Filter records by field values.

        Supports comparison operators using double underscore syntax:
        `field__lt`, `field__lte`, `field__gt`, `field__gte`, `field__ne`,
        `field__in`, `field__notin`, `field__isnull`; a bare field name
        means equality.

        Examples:
            await repo.filter(status__in=["PAID", "COMPLETED"])
            await repo.filter(processed=False, received_at__lt=cutoff)
        """
        query = self._apply_filters(select(self.model), filters)
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _apply_filters(self, query, filters: dict):
        for filter_key, value in filters.items():
            if "__" in filter_key:
                field_name, op_name = filter_key.rsplit("__", 1)
            else:
                field_name, op_name = filter_key, "eq"

            field = getattr(self.model, field_name)
            op = _OPERATORS.get(op_name, operator.eq)
            query = query.where(op(field, value))

        return query

    async def update(self, id: int, **kwargs) -> Optional[ModelType]:
        """
        Update a record by ID.

        Args:
            id: Record ID
            **kwargs: Fields to update with their new values

        Returns:
            Updated model instance or None if not found
        """
        await self.session.execute(
            update(self.model).where(self.model.id == id).values(**kwargs)  # type: ignore
        )
        await self.session.flush()
        return await self.get_by_id(id)

    async def update_where(self, values: Dict[str, Any], **filters) -> int:
        """
        Conditionally update every record matching the filters.

        This is a single UPDATE ... WHERE statement, so the filter doubles as
        a compare-and-set guard when two writers race on the same row.

        Args:
            values: Columns to set
            **filters: Filter expressions (same syntax as `filter`)

        Returns:
            Number of rows updated
        """
        query = self._apply_filters(update(self.model), filters).values(**values)
        query = query.execution_options(synchronize_session=False)
        result = await self.session.execute(query)
        await self.session.flush()
        return result.rowcount or 0  # type: ignore

    async def count(self, **filters) -> int:
        query = select(func.count(self.model.id))  # type: ignore
        query = self._apply_filters(query, filters)

        result = await self.session.execute(query)
        return result.scalar() or 0

    async def exists(self, **filters) -> bool:
        return await self.count(**filters) > 0
