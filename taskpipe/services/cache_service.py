from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from taskpipe.crud.base import BaseCRUD
from taskpipe.crud.person import person_crud
from taskpipe.crud.task import task_crud
from taskpipe.schemas.task import PersonTasksRead, TaskRead

logger = logging.getLogger(__name__)

TSchema = TypeVar("TSchema", bound=BaseModel)

DEFAULT_TTL_SECONDS = 600


def task_key(task_id: int) -> str:
    return f"task:{task_id}"


def person_key(person_id: int) -> str:
    return f"person:{person_id}"


class CacheService:
    """Cache-aside reads and write-time invalidation in front of the store.

    Redis is a derived projection of the database, never the source of truth:
    a hit skips the store for that id, a miss (or an evicted/invalidated key)
    always falls through to the store. Lookups are one round trip per id.
    Misses on the store are not cached.

    Redis errors are not handled here; they propagate to the caller like any
    other store failure.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        tasks: BaseCRUD[Any] = task_crud,
        persons: BaseCRUD[Any] = person_crud,
    ) -> None:
        self._redis = redis
        self._ttl_seconds = ttl_seconds
        self._tasks = tasks
        self._persons = persons

    async def get_tasks(self, session: AsyncSession, ids: list[int]) -> list[TaskRead]:
        return await self._read_through(session, ids, key=task_key, store=self._tasks, schema=TaskRead)

    async def get_persons(self, session: AsyncSession, ids: list[int]) -> list[PersonTasksRead]:
        return await self._read_through(
            session, ids, key=person_key, store=self._persons, schema=PersonTasksRead
        )

    async def invalidate(self, *keys: str) -> None:
        """Delete the given keys if present. Absent keys are not an error."""

        unique = list(dict.fromkeys(keys))
        if not unique:
            return
        await self._redis.delete(*unique)
        logger.debug("cache invalidated keys=%s", ",".join(unique))

    async def _read_through(
        self,
        session: AsyncSession,
        ids: list[int],
        *,
        key,
        store: BaseCRUD[Any],
        schema: type[TSchema],
    ) -> list[TSchema]:
        results: list[TSchema] = []

        for entity_id in ids:
            cache_key = key(entity_id)

            cached = await self._redis.get(cache_key)
            if cached is not None:
                try:
                    results.append(schema.model_validate_json(cached))
                    continue
                except ValidationError:
                    logger.warning("cache entry unreadable key=%s; falling back to store", cache_key)

            found = await store.get_by_ids(session, [entity_id])
            if not found:
                continue

            entity = found[0]
            item = schema.model_validate(entity)
            await self._redis.set(cache_key, item.model_dump_json(by_alias=True), ex=self._ttl_seconds)

            # The read projection is cached; release the ORM rows so a later
            # write in this session loads its own tracked copy.
            store.detach(session, entity)

            logger.debug("cache miss key=%s repopulated ttl=%s", cache_key, self._ttl_seconds)
            results.append(item)

        return results
