from __future__ import annotations

from datetime import datetime, timedelta, timezone

from kombu import Connection, Queue


def queue_size(conn: Connection, queue: Queue) -> int:
    return queue.bind(conn.channel()).queue_declare(passive=True).message_count


def future(days: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def task_payload(person_id: int, **overrides) -> dict:
    payload = {
        "id": 0,
        "personId": person_id,
        "title": "New Task",
        "description": None,
        "location": None,
        "severity": 1,
        "startDate": future().isoformat(),
        "endDate": None,
    }
    payload.update(overrides)
    return payload
