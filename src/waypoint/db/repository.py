"""Persistence adapter — one Repository per model.

Learn: Services talk to the database through this thin wrapper so the
two persistence guarantees live in one place:
- a uniqueness violation on flush surfaces as Conflict
- a lookup for a missing row surfaces as NotFound

There are no multi-row transactions to rely on. Services check
references with a read (get_or_404) before they write.
"""

import uuid
from typing import Any, Generic, Optional, Sequence, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waypoint.db.models import Base
from waypoint.errors import Conflict, NotFound

ModelT = TypeVar("ModelT", bound=Base)


class Repository(Generic[ModelT]):
    """CRUD + query helpers for a single model class."""

    def __init__(self, db: AsyncSession, model: type[ModelT], label: Optional[str] = None):
        self.db = db
        self.model = model
        self.label = label or model.__name__

    async def add(self, obj: ModelT, conflict_detail: Optional[str] = None) -> ModelT:
        """Stage and flush a new row. Unique violations become Conflict."""
        self.db.add(obj)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict(conflict_detail or f"{self.label} already exists")
        return obj

    async def get(self, obj_id: uuid.UUID) -> Optional[ModelT]:
        return await self.db.get(self.model, obj_id)

    async def get_or_404(self, obj_id: uuid.UUID) -> ModelT:
        obj = await self.get(obj_id)
        if obj is None:
            raise NotFound(f"{self.label} not found")
        return obj

    async def find_one(self, **filters: Any) -> Optional[ModelT]:
        q = select(self.model).filter_by(**filters).limit(1)
        result = await self.db.execute(q)
        return result.scalars().first()

    async def update(self, obj: ModelT, values: dict[str, Any]) -> ModelT:
        for key, value in values.items():
            setattr(obj, key, value)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict(f"{self.label} already exists")
        return obj

    async def delete(self, obj: ModelT) -> None:
        await self.db.delete(obj)
        await self.db.flush()

    async def query(self, stmt: Select) -> list[ModelT]:
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, stmt: Select) -> int:
        """Count rows matched by a select (filters kept, ordering/paging dropped)."""
        inner = stmt.order_by(None).limit(None).offset(None).subquery()
        result = await self.db.execute(select(func.count()).select_from(inner))
        return int(result.scalar_one())

    async def rows(self, stmt: Select) -> Sequence[Any]:
        """Execute a non-entity select (aggregates) and return its rows."""
        result = await self.db.execute(stmt)
        return result.all()
