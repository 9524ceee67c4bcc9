from __future__ import annotations

import enum
import hashlib
import json
import logging
import socket
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from kombu import Connection, Consumer, Producer, Queue
from kombu.message import Message
from pydantic import ValidationError

from taskpipe.schemas.task import TaskWrite
from taskpipe.worker.dispatch import CONTENT_TYPE

logger = logging.getLogger("taskpipe.worker")

# Bound on the per-instance redelivery bookkeeping.
_MAX_TRACKED_MESSAGES = 10_000


class ConsumerState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPED = "stopped"


class Outcome(str, enum.Enum):
    ACKED = "acked"
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


@dataclass
class ConsumerStats:
    received: int = 0
    acked: int = 0
    requeued: int = 0
    dead_lettered: int = 0
    dropped: int = 0
    connect_attempts: int = 0
    last_error: str | None = None
    state_changed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class TaskConsumer:
    """Long-running task queue consumer with manual acknowledgement.

    One connection and one channel per instance; deliveries are handled one
    at a time (prefetch 1). Several instances may compete on the same queue,
    so ordering across the task stream is not guaranteed.

    Per delivery:

    - decoded and persisted -> ack;
    - malformed payload -> dead-letter (when a sink is configured) and reject
      without requeue; retrying cannot fix it;
    - persistence failed -> reject with requeue so any consumer may retry it.
      Once this instance has requeued the same payload ``max_redeliveries``
      times it is dead-lettered instead. ``None`` keeps requeueing forever.
      The count is per instance: N competing consumers allow up to
      N * max_redeliveries attempts. Deliveries are told apart by their
      ``message_id`` property; messages published without one fall back to
      a hash of the body, so identical bodies then share one counter.

    ``persist`` receives the decoded command and raises on failure.
    """

    def __init__(
        self,
        connection: Connection,
        persist: Callable[[TaskWrite], Any],
        *,
        queue: Queue,
        dead_letter_queue: Queue | None = None,
        max_redeliveries: int | None = None,
        retry_interval: float = 5.0,
        retry_interval_max: float | None = None,
        max_connect_retries: int | None = None,
        health_file: str | Path | None = None,
    ) -> None:
        self._connection = connection
        self._persist = persist
        self._queue = queue
        self._dead_letter_queue = dead_letter_queue
        self._max_redeliveries = max_redeliveries
        self._retry_interval = retry_interval
        self._retry_interval_max = retry_interval if retry_interval_max is None else retry_interval_max
        self._max_connect_retries = max_connect_retries
        self._health_file = Path(health_file) if health_file else None
        if self._health_file is not None:
            self._health_file.parent.mkdir(parents=True, exist_ok=True)

        self._consumer: Consumer | None = None
        self._producer: Producer | None = None
        self._failures: OrderedDict[str, int] = OrderedDict()
        self._stop_requested = False

        self.stats = ConsumerStats()
        self._state = ConsumerState.DISCONNECTED
        self._write_health()

    # -- state --------------------------------------------------------------

    @property
    def state(self) -> ConsumerState:
        return self._state

    def _set_state(self, state: ConsumerState) -> None:
        if state is self._state:
            return
        logger.debug("consumer state %s -> %s", self._state.value, state.value)
        self._state = state
        self.stats.state_changed_at = datetime.now(timezone.utc).isoformat()
        self._write_health()

    def health(self) -> dict[str, Any]:
        payload = asdict(self.stats)
        payload["state"] = self._state.value
        payload["queue"] = self._queue.name
        return payload

    def _write_health(self) -> None:
        if self._health_file is None:
            return
        tmp = self._health_file.with_suffix(self._health_file.suffix + ".tmp")
        tmp.write_text(json.dumps(self.health()))
        tmp.replace(self._health_file)

    # -- connection ---------------------------------------------------------

    def connect(self) -> None:
        """Block until the broker is reachable, then declare and subscribe.

        Retries every ``retry_interval`` seconds (growing up to
        ``retry_interval_max``). Gives up only if ``max_connect_retries`` is
        set, re-raising the last connection error.
        """

        self._set_state(ConsumerState.CONNECTING)
        step = max(self._retry_interval_max - self._retry_interval, 0)

        self._connection.ensure_connection(
            errback=self._on_connection_error,
            max_retries=self._max_connect_retries,
            interval_start=self._retry_interval,
            interval_step=step,
            interval_max=self._retry_interval_max,
        )

        channel = self._connection.channel()
        self._consumer = Consumer(
            channel,
            queues=[self._queue],
            on_message=self.handle_message,
            accept=[CONTENT_TYPE],
            prefetch_count=1,
            no_ack=False,
        )
        self._producer = Producer(channel)
        if self._dead_letter_queue is not None:
            self._dead_letter_queue.bind(channel).declare()

        self._consumer.consume()
        self.stats.last_error = None
        logger.info("Successfully connected to broker; consuming queue=%s", self._queue.name)
        self._set_state(ConsumerState.IDLE)

    def _on_connection_error(self, exc: Exception, interval: float) -> None:
        self.stats.connect_attempts += 1
        self.stats.last_error = str(exc)
        logger.warning(
            "Error connecting to broker: %s. Trying again in %s seconds...",
            exc,
            interval,
        )
        self._write_health()

    def close(self) -> None:
        if self._consumer is not None:
            try:
                self._consumer.cancel()
            except self._connection.connection_errors:
                pass
            self._consumer = None
        self._producer = None
        self._connection.release()

    # -- loop ---------------------------------------------------------------

    def consume(self, *, limit: int | None = None, timeout: float | None = None) -> int:
        """Handle deliveries until ``limit`` messages were processed or none
        arrived within ``timeout`` seconds. Returns the number handled."""

        if self._consumer is None:
            self.connect()

        start = self.stats.received
        while not self._stop_requested:
            if limit is not None and self.stats.received - start >= limit:
                break
            try:
                self._connection.drain_events(timeout=timeout)
            except socket.timeout:
                break
        return self.stats.received - start

    def run_forever(self, *, poll_interval: float = 1.0) -> None:
        """Consume until ``stop()``; reconnect whenever the connection drops."""

        self._stop_requested = False
        while not self._stop_requested:
            # A spent connect retry cap is fatal and propagates.
            if self._consumer is None:
                self.connect()
            try:
                self.consume(timeout=poll_interval)
            except self._connection.recoverable_connection_errors as exc:
                self.stats.last_error = str(exc)
                logger.warning("Lost broker connection: %s. Reconnecting...", exc)
                self._consumer = None
                self._producer = None
                self._set_state(ConsumerState.DISCONNECTED)
                self._connection.collect()

        self.close()
        self._set_state(ConsumerState.STOPPED)

    def stop(self) -> None:
        self._stop_requested = True

    # -- message handling ---------------------------------------------------

    def handle_message(self, message: Message) -> Outcome:
        self.stats.received += 1
        self._set_state(ConsumerState.PROCESSING)
        try:
            return self._handle(message)
        finally:
            self._set_state(ConsumerState.IDLE)

    def _handle(self, message: Message) -> Outcome:
        body = message.body
        logger.info("Received message: %s", _preview(body))

        try:
            command = TaskWrite.model_validate_json(body)
        except ValidationError as exc:
            logger.error("Failed to deserialize message: %s", exc.errors(include_url=False))
            return self._reject_permanently(message, reason="malformed", error=str(exc))

        try:
            self._persist(command)
        except Exception as exc:
            return self._on_persist_failure(message, exc)

        message.ack()
        self._failures.pop(_delivery_key(message), None)
        self.stats.acked += 1
        logger.info("Task saved successfully. person_id=%s title=%r", command.person_id, command.title)
        return Outcome.ACKED

    def _on_persist_failure(self, message: Message, exc: Exception) -> Outcome:
        key = _delivery_key(message)
        failures = self._failures.pop(key, 0) + 1

        if self._max_redeliveries is not None and failures > self._max_redeliveries:
            logger.error(
                "Error processing message, giving up after %s attempts: %s", failures, exc
            )
            return self._reject_permanently(message, reason="max-redeliveries", error=str(exc))

        self._failures[key] = failures
        while len(self._failures) > _MAX_TRACKED_MESSAGES:
            self._failures.popitem(last=False)

        logger.warning("Error processing message (attempt %s), requeueing: %s", failures, exc)
        self.stats.last_error = str(exc)
        message.requeue()
        self.stats.requeued += 1
        return Outcome.REQUEUED

    def _reject_permanently(self, message: Message, *, reason: str, error: str) -> Outcome:
        outcome = Outcome.DROPPED
        if self._dead_letter_queue is not None and self._producer is not None:
            self._producer.publish(
                message.body,
                exchange="",
                routing_key=self._dead_letter_queue.name,
                content_type=message.content_type or CONTENT_TYPE,
                content_encoding=message.content_encoding or "utf-8",
                headers={
                    "x-death-reason": reason,
                    "x-error": error[:1000],
                    "x-source-queue": self._queue.name,
                },
            )
            outcome = Outcome.DEAD_LETTERED
            self.stats.dead_lettered += 1
        else:
            self.stats.dropped += 1

        message.reject(requeue=False)
        logger.warning("Message removed from queue=%s reason=%s outcome=%s", self._queue.name, reason, outcome.value)
        return outcome


def _delivery_key(message: Message) -> str:
    message_id = (message.properties or {}).get("message_id")
    if message_id:
        return f"id:{message_id}"
    return _fingerprint(message.body)


def _fingerprint(body: bytes | str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def _preview(body: bytes | str, limit: int = 500) -> str:
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    return text if len(text) <= limit else text[:limit] + "..."
