from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskpipe.database import get_db
from taskpipe.services.cache_service import CacheService
from taskpipe.services.task_service import Publisher, TaskService


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_publisher(request: Request) -> Publisher:
    return request.app.state.publisher


def get_task_service(
    session: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    publisher: Publisher = Depends(get_publisher),
) -> TaskService:
    return TaskService(session, cache=cache, publisher=publisher)
