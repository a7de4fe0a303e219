"""
Base repository class for aggregates stored as JSON documents.

Provides a foundation for the aggregate repositories with:
- Record <-> aggregate mapping through `to_dict()` / `from_dict()`
- Optimistic concurrency on versioned aggregates
- Explicit unit of work (`save_changes` commits)
"""
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from stackgo.core.database import Base
from stackgo.core.exceptions import ConcurrencyError, NotFoundError

A = TypeVar("A")


class BaseRepository(Generic[A]):
    """
    Generic base repository over a document record table.

    Subclasses set `model` (the SQLAlchemy record), `entity` (the aggregate
    class) and `not_found_error`, and implement `_columns` for the indexed
    columns that sit next to the document.
    """

    model: Type[Base]
    entity: Type[A]
    entity_name: str = "entity"
    not_found_error: Type[NotFoundError] = NotFoundError
    versioned: bool = True

    def __init__(self, db: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy async session
        """
        self.db = db

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    def _columns(self, entity: A) -> Dict[str, Any]:
        raise NotImplementedError

    def _to_entity(self, record) -> A:
        entity = self.entity.from_dict(record.document)
        if self.versioned:
            entity.persisted_version = record.version
        return entity

    def _to_entities(self, records) -> List[A]:
        return [self._to_entity(r) for r in records]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, id: UUID) -> Optional[A]:
        """
        Get a single aggregate by ID.

        Args:
            id: Aggregate UUID

        Returns:
            Aggregate if found, None otherwise
        """
        record = await self.db.get(self.model, id)
        return self._to_entity(record) if record else None

    async def get_or_raise(self, id: UUID) -> A:
        """Get an aggregate by ID, raising the not-found error if missing."""
        entity = await self.get(id)
        if entity is None:
            raise self.not_found_error(str(id))
        return entity

    async def get_by_environment(self, environment_id: str) -> List[A]:
        """All aggregates of an environment, newest first."""
        result = await self.db.execute(
            select(self.model)
            .where(self.model.environment_id == environment_id)
            .order_by(desc(self._order_column()), self.model.id)
        )
        return self._to_entities(result.scalars().all())

    def _order_column(self):
        return self.model.created_at

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add(self, entity: A) -> None:
        """Stage a new aggregate. Persisted on `save_changes`."""
        record = self.model(id=entity.id, document=entity.to_dict(), **self._columns(entity))
        if self.versioned:
            record.version = entity.version
            entity.persisted_version = entity.version
        self.db.add(record)

    async def update(self, entity: A, expected_version: Optional[int] = None) -> None:
        """
        Stage the new state of an aggregate.

        Versioned records are flushed right away: the UPDATE only matches the
        row while it still holds the expected version, so a writer that lost
        the race gets a ConcurrencyError here instead of overwriting.

        Args:
            entity: Aggregate with updated values
            expected_version: Version the caller based its changes on

        Raises:
            NotFoundError: If the aggregate was never added
            ConcurrencyError: If the stored version moved on since it was loaded
        """
        record = await self.db.get(self.model, entity.id)
        if record is None:
            raise self.not_found_error(str(entity.id))

        if self.versioned:
            expected = expected_version if expected_version is not None else entity.persisted_version
            if expected is None:
                expected = record.version
            if record.version != expected:
                raise ConcurrencyError(self.entity_name, str(entity.id), expected, record.version)
            record.version = entity.version

        record.document = entity.to_dict()
        for column, value in self._columns(entity).items():
            setattr(record, column, value)

        if self.versioned:
            try:
                await self.db.flush()
            except StaleDataError:
                await self.db.rollback()
                actual = await self.db.scalar(select(self.model.version).where(self.model.id == entity.id))
                raise ConcurrencyError(self.entity_name, str(entity.id), expected, actual)
            entity.persisted_version = entity.version

    async def remove(self, entity: A) -> None:
        """Stage the deletion of an aggregate."""
        await self.db.execute(delete(self.model).where(self.model.id == entity.id))

    async def save_changes(self) -> None:
        """Commit the unit of work."""
        await self.db.commit()
