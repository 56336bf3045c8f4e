"""Base repository: generic lookups and create."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sellerops.infrastructure.persistence.database import Base


class BaseRepository[ModelType: Base]:
    """Base repository with get_by_id, get_all and create.

    Repositories share the caller's session and never commit; the caller
    owns the transaction (see database.session_scope).
    """

    def __init__(self, db: AsyncSession, model: type[ModelType]) -> None:
        self.db = db
        self.model = model

    async def get_by_id(self, entity_id: Any, *, refresh: bool = False) -> ModelType | None:
        """Return a single record by primary key, or None.

        refresh=True bypasses the identity map (after bulk UPDATE statements).
        """
        model: Any = self.model
        stmt = select(self.model).where(model.id == entity_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all(self, skip: int = 0, limit: int = 100) -> list[ModelType]:
        result = await self.db.execute(select(self.model).offset(skip).limit(limit))
        return list(result.scalars().all())

    async def create(self, obj: ModelType) -> ModelType:
        """Persist a new record and flush so generated keys are populated."""
        self.db.add(obj)
        await self.db.flush()
        await self.db.refresh(obj)
        return obj
