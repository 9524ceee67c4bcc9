from __future__ import annotations

import logging
import uuid

from kombu import Connection, Queue
from kombu.pools import producers

from taskpipe.config import settings
from taskpipe.schemas.task import TaskWrite

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/json"


def encode_task(command: TaskWrite) -> bytes:
    """Self-contained camelCase JSON, no envelope."""

    return command.model_dump_json(by_alias=True).encode("utf-8")


class TaskPublisher:
    """Hands validated task commands to the broker's task queue.

    ``publish`` returns as soon as the broker accepted the bytes; it does not
    wait for the consumer. Exactly one message per call, no deduplication.
    Transport errors propagate to the caller once the retry policy is spent.
    """

    def __init__(
        self,
        connection: Connection,
        queue: Queue,
        *,
        max_retries: int | None = None,
    ) -> None:
        self._connection = connection
        self._queue = queue
        self._max_retries = settings.broker_publish_max_retries if max_retries is None else max_retries

    def publish(self, command: TaskWrite) -> None:
        body = encode_task(command)

        # Producer pools are safe to share between request threads; a bare
        # channel is not.
        with producers[self._connection].acquire(block=True) as producer:
            producer.publish(
                body,
                exchange="",
                routing_key=self._queue.name,
                content_type=CONTENT_TYPE,
                content_encoding="utf-8",
                message_id=str(uuid.uuid4()),
                declare=[self._queue],
                retry=self._max_retries > 0,
                retry_policy={
                    "max_retries": self._max_retries,
                    "interval_start": 0,
                    "interval_step": 1,
                    "interval_max": 2,
                },
            )

        logger.info(
            "task published queue=%s person_id=%s title=%r",
            self._queue.name,
            command.person_id,
            command.title,
        )
