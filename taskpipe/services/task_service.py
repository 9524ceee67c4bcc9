from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from taskpipe.crud.person import PersonCRUD, person_crud
from taskpipe.crud.task import TaskCRUD, apply_task_fields, task_crud
from taskpipe.schemas.person import PersonRead
from taskpipe.schemas.task import PersonTasksRead, TaskRead, TaskSeverity, TaskWrite
from taskpipe.services.cache_service import CacheService, person_key, task_key

logger = logging.getLogger(__name__)


class TaskValidationError(ValueError):
    """A write or lookup was rejected before touching the queue or the store."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class Publisher(Protocol):
    def publish(self, command: TaskWrite) -> None: ...


class TaskService:
    """Task reads and writes.

    Creates are *accepted*, not persisted: ``insert_task`` returns once the
    command is on the queue and the consumer writes it later. Edits and
    deletes go to the store directly.

    Cache contract: every mutation deletes the keys whose data it affects. A
    create invalidates before the consumer has written the row, so a read in
    between can re-cache the pre-create person; callers must not expect a
    just-created task to be visible immediately. Entries expire after the
    cache TTL in any case.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        cache: CacheService,
        publisher: Publisher,
        tasks: TaskCRUD = task_crud,
        persons: PersonCRUD = person_crud,
    ) -> None:
        self._session = session
        self._cache = cache
        self._publisher = publisher
        self._tasks = tasks
        self._persons = persons

    # -- reads --------------------------------------------------------------

    async def get_tasks_by_ids(self, ids: list[int]) -> list[TaskRead]:
        _require_positive_ids(ids, what="task")

        if not ids:
            rows = await self._tasks.get_all(self._session)
            return [TaskRead.model_validate(row) for row in rows]

        return await self._cache.get_tasks(self._session, ids)

    async def get_tasks_by_person_ids(self, ids: list[int]) -> list[PersonTasksRead]:
        _require_positive_ids(ids, what="person")

        if not ids:
            rows = await self._persons.get_all(self._session)
            return [PersonTasksRead.model_validate(row) for row in rows]

        return await self._cache.get_persons(self._session, ids)

    # -- writes -------------------------------------------------------------

    async def insert_task(self, command: TaskWrite) -> None:
        await self.validate_task(command)

        await self._cache.invalidate(person_key(command.person_id))

        # kombu is blocking; keep it off the event loop. Errors propagate.
        await run_in_threadpool(self._publisher.publish, command)
        logger.info("task accepted for processing person_id=%s", command.person_id)

    async def edit_task(self, command: TaskWrite) -> TaskRead:
        person = await self.validate_task(command)

        task = await self._get_task(command.id)
        old_person_id = task.person_id

        apply_task_fields(task, command)
        await self._tasks.update(self._session, task)
        await self._session.commit()

        await self._cache.invalidate(
            task_key(task.id),
            person_key(old_person_id),
            person_key(command.person_id),
        )

        logger.info(
            "task updated id=%s person_id=%s->%s", task.id, old_person_id, command.person_id
        )
        return TaskRead(
            **command.model_dump(exclude={"id"}),
            id=task.id,
            person=PersonRead(id=person.id, name=person.name),
        )

    async def delete_task(self, task_id: int) -> TaskRead:
        if task_id <= 0:
            raise TaskValidationError("Task ID must be greater than zero.", field="id")

        task = await self._get_task(task_id)
        deleted = TaskRead.model_validate(task)

        await self._tasks.delete(self._session, task)
        await self._session.commit()

        await self._cache.invalidate(task_key(deleted.id), person_key(deleted.person_id))

        logger.info("task deleted id=%s person_id=%s", deleted.id, deleted.person_id)
        return deleted

    # -- validation ---------------------------------------------------------

    async def validate_task(self, command: TaskWrite) -> PersonTasksRead:
        """Check a write command against the store and the clock.

        Returns the owning person. Runs before any queue or store write.
        """

        persons = await self._cache.get_persons(self._session, [command.person_id])
        if not persons:
            raise TaskValidationError(
                f"No person found with ID {command.person_id}.", field="personId"
            )

        if not command.title or not command.title.strip():
            raise TaskValidationError("Title cannot be null or empty.", field="title")

        try:
            TaskSeverity(command.severity)
        except ValueError:
            raise TaskValidationError(
                f"Severity '{command.severity}' is not a valid value.", field="severity"
            ) from None

        if command.start_date < datetime.now(timezone.utc):
            raise TaskValidationError("Start date cannot be in the past.", field="startDate")

        return persons[0]

    async def _get_task(self, task_id: int):
        found = await self._tasks.get_by_ids(self._session, [task_id])
        if not found:
            raise TaskValidationError(f"No task found with ID {task_id}.", field="id")
        return found[0]


def _require_positive_ids(ids: list[int], *, what: str) -> None:
    if any(i <= 0 for i in ids):
        raise TaskValidationError(f"All {what} IDs must be greater than zero.", field="id")
