from __future__ import annotations

from kombu import Connection, Exchange, Queue

from taskpipe.config import settings


def make_queue(name: str | None = None) -> Queue:
    """Declare-able task queue bound to the default exchange.

    Every declarer must use the same parameters or the broker refuses the
    declaration: non-durable, non-exclusive, no auto-delete, no arguments.
    """

    name = name or settings.task_queue_name
    return Queue(
        name,
        exchange=Exchange(""),
        routing_key=name,
        durable=False,
        exclusive=False,
        auto_delete=False,
    )


def make_dead_letter_queue(name: str | None = None) -> Queue | None:
    name = settings.dead_letter_queue_name if name is None else name
    if not name:
        return None
    return make_queue(name)


def make_connection(url: str | None = None) -> Connection:
    """Create a (lazy) broker connection.

    Note: kombu connects on first use, so building one at import/startup time
    never blocks on an unreachable broker.
    """

    return Connection(
        url or settings.broker_url,
        connect_timeout=settings.broker_connect_timeout,
    )
