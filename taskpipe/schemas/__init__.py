from .person import PersonRead
from .task import PersonTasksRead, TaskItem, TaskRead, TaskSeverity, TaskWrite

__all__ = [
    "PersonRead",
    "PersonTasksRead",
    "TaskItem",
    "TaskRead",
    "TaskSeverity",
    "TaskWrite",
]
