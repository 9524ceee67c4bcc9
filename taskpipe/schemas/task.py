from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from taskpipe.schemas.person import PersonRead


class TaskSeverity(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class TaskBase(BaseModel):
    """Fields shared by the write command, the queue message and read models.

    Wire names are camelCase (``personId``, ``startDate``); Python code uses
    snake_case. Naive datetimes are taken to be UTC.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    person_id: int = Field(gt=0)
    title: str = Field(min_length=1, max_length=30)
    description: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=100)
    severity: TaskSeverity
    start_date: datetime
    end_date: datetime | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class TaskWrite(TaskBase):
    """Create/edit command. Also the JSON body of a queued task message.

    ``id`` is ignored on create (the store assigns it) and selects the row on
    edit.
    """

    id: int = Field(default=0, ge=0)


class TaskItem(TaskBase):
    id: int


class TaskRead(TaskItem):
    person: PersonRead | None = None


class PersonTasksRead(PersonRead):
    tasks: list[TaskItem] = Field(default_factory=list)
