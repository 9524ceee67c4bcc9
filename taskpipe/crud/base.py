from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


TModel = TypeVar("TModel")


class BaseCRUD(Generic[TModel]):
    """Generic store helper for SQLAlchemy (async).

    Notes:
    - Methods intentionally do NOT commit. Callers control transaction boundaries.
    - Lookups are by identifier list only; ``load_options`` lets subclasses
      eager-load the relationships their read models need.
    """

    load_options: tuple[Any, ...] = ()

    def __init__(self, model: type[TModel]) -> None:
        self.model = model

    def _select(self):
        return select(self.model).options(*self.load_options)

    async def get_by_ids(self, session: AsyncSession, ids: list[int]) -> list[TModel]:
        if not ids:
            return []

        q = self._select().where(getattr(self.model, "id").in_(ids))
        r = await session.execute(q)
        return list(r.scalars().unique().all())

    async def get_all(self, session: AsyncSession) -> list[TModel]:
        q = self._select().order_by(getattr(self.model, "id"))
        r = await session.execute(q)
        return list(r.scalars().unique().all())

    async def add(self, session: AsyncSession, obj: TModel) -> TModel:
        session.add(obj)
        await session.flush()  # store-assigned id is available after flush
        return obj

    async def update(self, session: AsyncSession, obj: TModel) -> TModel:
        session.add(obj)  # no-op for persistent objects, re-attaches detached ones
        await session.flush()
        return obj

    async def delete(self, session: AsyncSession, obj: TModel) -> None:
        await session.delete(obj)
        await session.flush()

    def detach(self, session: AsyncSession, obj: TModel) -> None:
        """Stop tracking an entity so another unit of work can load its own copy."""

        if obj in session:
            session.expunge(obj)
