from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, selectinload

from taskpipe.crud.base import BaseCRUD
from taskpipe.models.task import Task
from taskpipe.schemas.task import TaskWrite


class TaskCRUD(BaseCRUD[Task]):
    load_options = (selectinload(Task.person),)

    def __init__(self) -> None:
        super().__init__(Task)

    def detach(self, session: AsyncSession, obj: Task) -> None:
        if obj.person is not None and obj.person in session:
            session.expunge(obj.person)
        super().detach(session, obj)


def apply_task_fields(task: Task, obj_in: TaskWrite) -> Task:
    task.person_id = obj_in.person_id
    task.title = obj_in.title
    task.description = obj_in.description
    task.location = obj_in.location
    task.severity = int(obj_in.severity)
    task.start_date = obj_in.start_date
    task.end_date = obj_in.end_date
    return task


def save_task(session: Session, obj_in: TaskWrite) -> Task:
    """Insert a queued task command (blocking; used by the consumer).

    The command's ``id`` is ignored so the store always assigns a fresh one.
    """

    task = apply_task_fields(Task(), obj_in)
    session.add(task)
    session.commit()
    return task


task_crud = TaskCRUD()
