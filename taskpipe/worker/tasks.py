from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from taskpipe.crud.task import save_task
from taskpipe.schemas.task import TaskWrite


logger = logging.getLogger(__name__)


class SaveTask:
    """Persist a queued task command; one session (unit of work) per message.

    Raises whatever the database raises so the consumer can requeue.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def __call__(self, command: TaskWrite) -> int:
        with self._session_factory() as session:
            task = save_task(session, command)
            logger.debug("task persisted id=%s person_id=%s", task.id, task.person_id)
            return task.id
