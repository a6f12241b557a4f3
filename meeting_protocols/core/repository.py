"""Generic async repository over one mapped table."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from meeting_protocols.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """CRUD verbs shared by all repositories."""

    model_class: type[ModelT]

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, entity_id: uuid.UUID | str) -> ModelT | None:
        """Fetch one row by primary key, ``None`` for unknown or malformed ids."""
        try:
            key = entity_id if isinstance(entity_id, uuid.UUID) else uuid.UUID(str(entity_id))
        except ValueError:
            return None
        return await self.db.get(self.model_class, key)

    async def add(self, entity: ModelT) -> ModelT:
        """Insert a row and flush so defaults are populated."""
        self.db.add(entity)
        await self.db.flush()
        return entity

    async def save(self, entity: ModelT) -> ModelT:
        """Flush pending changes of a loaded row."""
        await self.db.flush()
        return entity

    async def delete(self, entity: ModelT) -> None:
        await self.db.delete(entity)
        await self.db.flush()

    async def find(self, *criteria: Any, order_by: Sequence[Any] = ()) -> list[ModelT]:
        """Run a filtered select on the table."""
        query = select(self.model_class)
        if criteria:
            query = query.where(*criteria)
        if order_by:
            query = query.order_by(*order_by)
        result = await self.db.execute(query)
        return list(result.scalars().all())
