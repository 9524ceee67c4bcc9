from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from taskpipe.api.deps import get_task_service
from taskpipe.schemas.task import PersonTasksRead, TaskRead, TaskWrite
from taskpipe.services.task_service import TaskService


logger = logging.getLogger("taskpipe.api")

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskRead])
async def get_tasks_endpoint(
    id: list[int] = Query(default=[], description="Task ids; empty returns every task"),
    service: TaskService = Depends(get_task_service),
) -> list[TaskRead]:
    tasks = await service.get_tasks_by_ids(id)
    logger.info("GET tasks retrieved %s tasks", len(tasks))
    return tasks


@router.get("/by-person", response_model=list[PersonTasksRead])
async def get_tasks_by_person_endpoint(
    id: list[int] = Query(default=[], description="Person ids; empty returns every person"),
    service: TaskService = Depends(get_task_service),
) -> list[PersonTasksRead]:
    persons = await service.get_tasks_by_person_ids(id)
    logger.info(
        "GET tasks/by-person retrieved %s persons and %s tasks",
        len(persons),
        sum(len(p.tasks) for p in persons),
    )
    return persons


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def create_task_endpoint(
    payload: TaskWrite,
    service: TaskService = Depends(get_task_service),
) -> dict:
    """Queue a task for creation.

    202 means the command was accepted for processing, not that it is stored.
    """

    await service.insert_task(payload)
    return {"detail": "Task accepted for processing"}


@router.put("", response_model=TaskRead)
async def update_task_endpoint(
    payload: TaskWrite,
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    return await service.edit_task(payload)


@router.delete("/{task_id}", response_model=TaskRead)
async def delete_task_endpoint(
    task_id: int,
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    return await service.delete_task(task_id)
